"""
Snapshot App - Fetch, Project and Persist an OpenAPI Document

Responsibilities:
- Fetch the document over HTTP with bounded exponential backoff (tenacity)
- Project it to a reduced view (paths/components) or a compact outline
- Write each projection atomically (temp file + rename) or stream to stdout
- Watch mode: repeat on an interval with failure backoff, a one-time
  interactive URL prompt and graceful SIGINT/SIGTERM shutdown

Output:
- openapi/backend_openapi.json (full or reduced document)
- openapi/backend_openapi.outline.json (outline, watch mode default)
"""
