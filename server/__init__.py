"""Hearth server package.

Modules:
- catalog / repository / models: SQLite catalog of albums and media items
- blobstore: local and S3 object storage
- ingest: batch upload pipeline
- deletion: image and album deletion
- api: FastAPI app and routing
- config: INI parsing and config object
"""
