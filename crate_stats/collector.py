"""Wires the download store, the ingestion worker and the reporter together."""
import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from crate_stats import config
from crate_stats.models import Package, Statistics
from crate_stats.reporter import DEFAULT_WINDOW, StatisticsReporter
from crate_stats.storage import DownloadStore, IngestionWorker, SubmissionHandle


logger = logging.getLogger(__name__)


class StatCollector:
    """Download statistics subsystem for the caching proxy.

    The worker records through its own connection; the reporter reads through
    another. Construction fails with StoreError if the store cannot be opened,
    so callers never run without ingestion.
    """

    def __init__(
        self,
        database: Optional[str] = None,
        capacity: int = config.QUEUE_CAPACITY,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = DownloadStore(database, clock=clock)
        try:
            self._writer = self.store.duplicate()
        except Exception:
            self.store.close()
            raise
        self.worker = IngestionWorker(self._writer.record_observation, capacity=capacity)
        self.worker.start()
        self._root = SubmissionHandle(self.worker)
        self.reporter = StatisticsReporter(self.store)
        self._closed = False
        logger.info("stat_collector_started", extra={
            "database": self.store.database, "capacity": capacity,
        })

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def handle(self) -> SubmissionHandle:
        """A new producer handle; ingestion stops once every handle is closed."""
        return self._root.clone()

    def submit(self, package_name: str, version: str, hit: bool, size: int) -> None:
        self._root.submit(package_name, version, hit, size)

    def flush(self, timeout: float = 10.0) -> bool:
        return self.worker.flush(timeout=timeout)

    def ingestion_status(self) -> dict:
        return self.worker.get_status()

    # ------------------------------------------------------------------
    # Reporting side
    # ------------------------------------------------------------------

    def snapshot(
        self,
        window: timedelta = DEFAULT_WINDOW,
        as_of: Optional[datetime] = None,
    ) -> Statistics:
        return self.reporter.snapshot(window, as_of=as_of)

    def list_packages(self) -> List[Package]:
        return self.reporter.list_packages()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self, timeout: float = 5.0) -> None:
        """Release the root handle, let the worker drain, then close connections."""
        if self._closed:
            return
        self._root.close()
        if not self.worker.join(timeout=timeout):
            logger.warning("ingestion_worker_still_draining", extra={
                "queue_depth": self.worker.get_status()["queue_depth"],
            })
            return
        self._closed = True
        self._writer.close()
        self.store.close()

    def __enter__(self) -> "StatCollector":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
