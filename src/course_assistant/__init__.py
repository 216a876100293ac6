"""Course material ingestion and grounded chat streaming service."""

__version__ = "0.1.0"
