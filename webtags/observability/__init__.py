"""HTTP request observability.

Request IDs + structlog contextvars, tagged request timings (method, status,
outcome, uri, exception) and an in-memory recorder that the metrics endpoint
snapshots for local development.
"""
