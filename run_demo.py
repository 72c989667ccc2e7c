#!/usr/bin/env python3
"""
Demo: download statistics for a caching package proxy

This script demonstrates the complete workflow:
1. Start the collector (store + background ingestion worker)
2. Report a burst of downloads from several producer handles
3. Wait for the worker to drain the queue
4. Print the 24h statistics snapshot and the known packages
5. Show that an empty window is a valid all-zero snapshot
6. Close the producers and let ingestion shut down
"""
import logging
import threading
from datetime import timedelta

from crate_stats import config
from crate_stats.collector import StatCollector


# Setup logging
logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(levelname)s: %(message)s'
)
logger = logging.getLogger(__name__)


TRAFFIC = [
    ("serde", "1.0.0", False, 2048),
    ("serde", "1.0.0", True, 2048),
    ("serde", "1.0.1", False, 2100),
    ("rand", "0.8.5", False, 8192),
    ("rand", "0.8.5", True, 8192),
    ("rand", "0.8.5", True, 8192),
    ("tokio", "1.37.0", False, 65536),
    ("tokio", "1.37.0", True, 65536),
]


def replay(handle, downloads):
    """Submit downloads the way a request handler would, one per response."""
    with handle:
        for name, version, hit, size in downloads:
            handle.submit(name, version, hit, size)


def main():
    """Run the demo workflow."""
    print("\n" + "="*80)
    print("DOWNLOAD STATISTICS FOR A CACHING PACKAGE PROXY")
    print("="*80)

    collector = StatCollector(config.DB_PATH, capacity=config.QUEUE_CAPACITY)

    print("\n" + "-"*80)
    print("STEP 1: Two request handlers report downloads concurrently")
    print("-"*80)

    mid = len(TRAFFIC) // 2
    producers = [
        threading.Thread(target=replay, args=(collector.handle(), TRAFFIC[:mid])),
        threading.Thread(target=replay, args=(collector.handle(), TRAFFIC[mid:])),
    ]
    for p in producers:
        p.start()
    for p in producers:
        p.join()

    drained = collector.flush(timeout=10.0)
    status = collector.ingestion_status()
    print(f"Queue drained: {drained}")
    print(f"  Recorded: {status['observations_recorded']}")
    print(f"  Failed:   {status['observations_failed']}")

    print("\n" + "-"*80)
    print("STEP 2: Statistics for the trailing window")
    print("-"*80)

    stats = collector.snapshot(timedelta(hours=config.STATS_WINDOW_HOURS))
    print(stats.as_json())

    print("\nKnown packages:")
    for package in collector.list_packages():
        print(f"  - {package.id}: {package.name}")

    print("\n" + "-"*80)
    print("STEP 3: A window that ends before any traffic")
    print("-"*80)

    earlier = collector.store.now() - timedelta(days=7)
    print(collector.snapshot(timedelta(hours=24), as_of=earlier).as_json())

    print("\n" + "-"*80)
    print("STEP 4: Shut down ingestion")
    print("-"*80)

    collector.close()
    print(f"Worker running after close: {collector.worker.is_running}")

    print("\n" + "="*80)
    print("DEMO COMPLETE")
    print("="*80)


if __name__ == "__main__":
    main()
