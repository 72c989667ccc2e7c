"""Download statistics recorder for a package caching proxy."""
from .collector import StatCollector
from .models import DownloadObservation, Package, Statistics
from .reporter import DEFAULT_WINDOW, StatisticsReporter
from .storage import (
    DownloadStore,
    HitFilter,
    IngestionWorker,
    StoreError,
    SubmissionError,
    SubmissionHandle,
)

__all__ = [
    "StatCollector",
    "DownloadObservation",
    "Package",
    "Statistics",
    "DEFAULT_WINDOW",
    "StatisticsReporter",
    "DownloadStore",
    "HitFilter",
    "IngestionWorker",
    "StoreError",
    "SubmissionError",
    "SubmissionHandle",
]
