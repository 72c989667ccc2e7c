"""Read-only statistics over the download store."""
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from crate_stats.models import Package, Statistics
from crate_stats.storage import DownloadStore, HitFilter


logger = logging.getLogger(__name__)

DEFAULT_WINDOW = timedelta(hours=24)


class StatisticsReporter:
    """Produces Statistics snapshots for a trailing window."""

    def __init__(self, store: DownloadStore):
        self.store = store

    def snapshot(
        self,
        window: timedelta = DEFAULT_WINDOW,
        as_of: Optional[datetime] = None,
    ) -> Statistics:
        """
        Aggregate downloads in ``(as_of - window, as_of]``.

        All three queries read one snapshot of the store, so a concurrent
        append can never make hits exceed downloads. Misses are derived,
        never queried.

        Raises:
            StoreError: if the store cannot be queried
            ValueError: if window is negative
        """
        if as_of is None:
            as_of = self.store.now()
        with self.store.read_transaction() as store:
            downloads = store.query_count(window, HitFilter.ANY, as_of=as_of)
            hits = store.query_count(window, HitFilter.HITS_ONLY, as_of=as_of)
            bandwidth_saved = store.query_bandwidth_saved(window, as_of=as_of)
        stats = Statistics.from_counts(downloads, hits, bandwidth_saved)
        logger.debug("statistics_snapshot", extra={
            "window_seconds": window.total_seconds(), **stats.as_dict(),
        })
        return stats

    def list_packages(self) -> List[Package]:
        return self.store.list_packages()
