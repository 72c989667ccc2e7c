"""FastMCP tools for reporting and recording package download statistics."""
import logging
from datetime import timedelta
from typing import Any, Dict

from crate_stats.collector import StatCollector
from crate_stats.storage import StoreError, SubmissionError


logger = logging.getLogger(__name__)


class StatisticsTools:
    """FastMCP-compatible tools over a StatCollector."""

    def __init__(self, collector: StatCollector):
        """
        Initialize tools with a StatCollector instance.

        Args:
            collector: StatCollector used for all submissions and queries
        """
        self.collector = collector

    def download_statistics(self, window_hours: float = 24.0) -> Dict[str, Any]:
        """
        Status tool: download, hit and miss counts plus bytes saved by caching.

        A window with no traffic is a success with all-zero statistics; a store
        fault is an error. The two are never conflated.

        Args:
            window_hours: Length of the trailing window, in hours

        Returns:
            Dictionary with:
                - 'status': 'success' or 'error'
                - 'window_hours': Window the statistics cover
                - 'as_of': End of the window (ISO-8601, UTC)
                - 'statistics': downloads, hits, misses, bandwidth_saved
        """
        try:
            as_of = self.collector.store.now()
            stats = self.collector.snapshot(timedelta(hours=window_hours), as_of=as_of)
        except (StoreError, ValueError, OverflowError) as e:
            logger.error(
                f"Failed to compute download statistics: {str(e)}",
                extra={"window_hours": window_hours, "error": str(e)},
            )
            return {
                "status": "error",
                "window_hours": window_hours,
                "error": str(e),
            }

        return {
            "status": "success",
            "window_hours": window_hours,
            "as_of": as_of.isoformat(),
            "statistics": stats.as_dict(),
        }

    def list_packages(self) -> Dict[str, Any]:
        """Every package the proxy has served at least once."""
        try:
            packages = self.collector.list_packages()
        except StoreError as e:
            logger.error(
                f"Failed to list packages: {str(e)}",
                extra={"error": str(e)},
            )
            return {"status": "error", "error": str(e)}

        return {
            "status": "success",
            "packages": [p.model_dump() for p in packages],
            "total_count": len(packages),
        }

    def record_download(
        self,
        package_name: str,
        version: str,
        hit: bool,
        size: int,
    ) -> Dict[str, Any]:
        """
        Mutation tool: queue one download observation for recording.

        The observation is persisted asynchronously by the ingestion worker.
        """
        try:
            self.collector.submit(package_name, version, hit, size)
        except (SubmissionError, ValueError) as e:
            logger.warning(
                f"Rejected download of {package_name} {version}: {str(e)}",
                extra={"package_name": package_name, "version": version, "error": str(e)},
            )
            return {
                "status": "error",
                "package_name": package_name,
                "version": version,
                "error": str(e),
            }

        return {"status": "queued", "package_name": package_name, "version": version}

    def ingestion_status(self) -> Dict[str, Any]:
        """Health of the background ingestion worker."""
        status = self.collector.ingestion_status()
        last = status.get("last_recorded_at")
        if last is not None:
            status["last_recorded_at"] = last.isoformat()
        return {"status": "success", **status}
