"""Video ingestion and import coordination core."""

__version__ = "0.1.0"
