"""FastMCP server adapter for the download statistics tools.

API notes (mcp>=1.0.0 / FastMCP):
- Tools are registered via the @app.tool() decorator.
- app._tool_manager._tools is a dict[str, Tool] of registered tools.
- app.run() is the synchronous stdio transport entry-point used by mcp dev.
"""
import logging
from typing import Optional

from mcp.server.fastmcp import FastMCP

from crate_stats import config
from crate_stats.collector import StatCollector
from crate_stats.mcp_tools import StatisticsTools

logger = logging.getLogger(__name__)


def create_mcp_server(
    collector: Optional[StatCollector] = None,
) -> tuple[FastMCP, StatCollector]:
    """Factory: build and wire a FastMCP app with the statistics tools.

    Args:
        collector: Optional pre-existing StatCollector; a new one is opened on
            the configured database if None.

    Returns:
        Tuple of (FastMCP app, StatCollector). The collector is exposed so
        callers can submit downloads or close it without extra indirection.
    """
    if collector is None:
        collector = StatCollector(config.DB_PATH, capacity=config.QUEUE_CAPACITY)

    tools = StatisticsTools(collector)

    app = FastMCP("crate-stats")

    @app.tool()
    def download_statistics(window_hours: float = config.STATS_WINDOW_HOURS) -> dict:
        """Downloads, cache hits, misses and bandwidth saved over a trailing window."""
        return tools.download_statistics(window_hours=window_hours)

    @app.tool()
    def list_packages() -> dict:
        """All packages that have been downloaded through the proxy."""
        return tools.list_packages()

    @app.tool()
    def record_download(package_name: str, version: str, hit: bool, size: int) -> dict:
        """Queue one download observation (package, version, cache hit, bytes)."""
        return tools.record_download(
            package_name=package_name,
            version=version,
            hit=hit,
            size=size,
        )

    @app.tool()
    def ingestion_status() -> dict:
        """Queue depth and recorded/failed counters of the ingestion worker."""
        return tools.ingestion_status()

    logger.info(
        "MCP server created",
        extra={"tools": list(app._tool_manager._tools.keys())},
    )

    return app, collector


def run_server() -> None:
    """Entry-point for the `crate-stats-mcp` console script."""
    logging.basicConfig(level=config.LOG_LEVEL, format="%(levelname)s %(name)s: %(message)s")
    app, collector = create_mcp_server()
    try:
        app.run()
    finally:
        collector.close()


if __name__ == "__main__":
    run_server()
