"""Business logic layer for files app.

This package contains all business logic for the file namespace:
- Upload, download, rename, move and delete of files and directories
- Directory listings built from metadata rows or content listings
- Reconciliation and migration between content and metadata stores

All business logic should be implemented here, separate from
models (data layer) and infrastructure (external systems).

Reference: https://github.com/dry-python
for decoupling business logic from Django views.
"""
