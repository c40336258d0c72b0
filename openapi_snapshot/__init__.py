"""openapi-snapshot: fetch an OpenAPI document and keep reduced snapshots of it on disk."""

__version__ = "0.1.0"
