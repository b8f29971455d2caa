"""clipvault: media ingestion and near-duplicate detection service."""

__version__ = "0.1.0"
