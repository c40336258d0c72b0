"""Shared helpers: configuration, logging, schemas and errors."""
