"""Storage layer for package download events."""
from .duckdb_store import DownloadStore, HitFilter, StoreError
from .async_ingestion import IngestionWorker, SubmissionError, SubmissionHandle

__all__ = [
    "DownloadStore",
    "HitFilter",
    "StoreError",
    "IngestionWorker",
    "SubmissionError",
    "SubmissionHandle",
]
