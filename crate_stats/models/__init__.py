"""Download observation and statistics data models."""
from .download import DownloadObservation, Package
from .statistics import Statistics

__all__ = [
    "DownloadObservation",
    "Package",
    "Statistics",
]
