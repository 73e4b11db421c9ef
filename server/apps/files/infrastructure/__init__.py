"""Infrastructure layer for files app.

This package contains integrations with external systems:
- Content stores (S3/MinIO, database-embedded, in-memory)
- Relational metadata access for files and directories
- Path and MIME type helpers

Keep infrastructure concerns separate from business logic.
"""
