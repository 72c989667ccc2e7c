"""DuckDB event store for package download statistics.

Write path: dimension upserts (packages, package_versions) plus an append-only
download log, one transaction per observation.
Read path:  windowed aggregates over the download log, evaluated as of an
explicit timestamp rather than the database clock.
"""
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Iterator, List, Optional

import duckdb

from crate_stats.models import DownloadObservation, Package


logger = logging.getLogger(__name__)

MEMORY_DATABASE = ":memory:"


class StoreError(RuntimeError):
    """Raised when the download store cannot be opened, written or queried."""


class HitFilter(Enum):
    ANY = "any"
    HITS_ONLY = "hits_only"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class DownloadStore:
    """Packages, package versions and download events backed by DuckDB."""

    def __init__(
        self,
        database: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
        connection: Optional[duckdb.DuckDBPyConnection] = None,
    ):
        self.database = database or MEMORY_DATABASE
        self._clock = clock or utc_now
        self._db_lock = threading.RLock()
        self._closed = False
        try:
            self.conn = connection if connection is not None else duckdb.connect(self.database)
        except duckdb.Error as exc:
            raise StoreError(f"cannot open download store {self.database!r}: {exc}") from exc
        try:
            self._initialize_schema()
        except duckdb.Error as exc:
            self.conn.close()
            raise StoreError(f"cannot create download schema: {exc}") from exc
        logger.info("download_store_opened", extra={"database": self.database})

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _initialize_schema(self) -> None:
        stmts = [
            "CREATE SEQUENCE IF NOT EXISTS package_id_seq START 1",
            "CREATE SEQUENCE IF NOT EXISTS package_version_id_seq START 1",
            """
            CREATE TABLE IF NOT EXISTS packages (
                id INTEGER PRIMARY KEY DEFAULT nextval('package_id_seq'),
                name VARCHAR NOT NULL
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS package_versions (
                id INTEGER PRIMARY KEY DEFAULT nextval('package_version_id_seq'),
                package_id INTEGER NOT NULL,
                version VARCHAR NOT NULL
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS downloads (
                version_id INTEGER NOT NULL,
                "time" TIMESTAMP NOT NULL,
                hit BOOLEAN NOT NULL,
                size BIGINT NOT NULL
            )
            """,
            "CREATE UNIQUE INDEX IF NOT EXISTS unique_package_names ON packages (name)",
            """
            CREATE UNIQUE INDEX IF NOT EXISTS unique_package_versions
            ON package_versions (package_id, version)
            """,
        ]
        with self._db_lock:
            for s in stmts:
                self.conn.execute(s.strip())

    # ------------------------------------------------------------------
    # Clock
    # ------------------------------------------------------------------

    def now(self) -> datetime:
        """Current store time as naive UTC, the form download times are kept in."""
        return _as_naive_utc(self._clock())

    def _window_bounds(self, window: timedelta, as_of: Optional[datetime]):
        if window < timedelta(0):
            raise ValueError(f"window must not be negative, got {window}")
        end = self.now() if as_of is None else _as_naive_utc(as_of)
        try:
            start = end - window
        except OverflowError:
            # Window reaches back past the earliest representable time.
            start = datetime.min
        return start, end

    # ------------------------------------------------------------------
    # Dimension upserts (single writer only)
    # ------------------------------------------------------------------

    def _package_id(self, name: str) -> Optional[int]:
        row = self.conn.execute("SELECT id FROM packages WHERE name = ?", [name]).fetchone()
        return row[0] if row else None

    def _version_id(self, package_id: int, version: str) -> Optional[int]:
        row = self.conn.execute(
            "SELECT id FROM package_versions WHERE package_id = ? AND version = ?",
            [package_id, version],
        ).fetchone()
        return row[0] if row else None

    def resolve_or_create_package(self, name: str) -> int:
        package_id = self._package_id(name)
        if package_id is None:
            self.conn.execute("INSERT INTO packages (name) VALUES (?)", [name])
            package_id = self._package_id(name)
            logger.info("package_created", extra={"package_id": package_id, "package_name": name})
        return package_id

    def resolve_or_create_version(self, package_id: int, version: str) -> int:
        version_id = self._version_id(package_id, version)
        if version_id is None:
            self.conn.execute(
                "INSERT INTO package_versions (package_id, version) VALUES (?, ?)",
                [package_id, version],
            )
            version_id = self._version_id(package_id, version)
        return version_id

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def record_event(
        self,
        package_name: str,
        version: str,
        hit: bool,
        size: int,
        at: Optional[datetime] = None,
    ) -> None:
        """Upsert the package and version, then append one download row.

        The three steps commit together; on failure nothing is kept and
        StoreError is raised.
        """
        when = self.now() if at is None else _as_naive_utc(at)
        with self._db_lock:
            try:
                self.conn.begin()
                package_id = self.resolve_or_create_package(package_name)
                version_id = self.resolve_or_create_version(package_id, version)
                self.conn.execute(
                    'INSERT INTO downloads (version_id, "time", hit, size) VALUES (?, ?, ?, ?)',
                    [version_id, when, bool(hit), int(size)],
                )
                self.conn.commit()
            except duckdb.Error as exc:
                self._rollback_quietly()
                raise StoreError(
                    f"cannot record download of {package_name} {version}: {exc}"
                ) from exc
        logger.debug("download_recorded", extra={
            "package_name": package_name, "version": version,
            "version_id": version_id, "hit": hit, "size": size,
        })

    def record_observation(self, observation: DownloadObservation) -> None:
        self.record_event(
            observation.package_name,
            observation.version,
            observation.hit,
            observation.size,
        )

    def _rollback_quietly(self) -> None:
        try:
            self.conn.rollback()
        except duckdb.Error:
            # No transaction was open, or the connection is gone.
            pass

    # ------------------------------------------------------------------
    # Queries (read path)
    # ------------------------------------------------------------------

    @contextmanager
    def read_transaction(self) -> Iterator["DownloadStore"]:
        """Run several queries against one consistent snapshot."""
        with self._db_lock:
            try:
                self.conn.begin()
            except duckdb.Error as exc:
                raise StoreError(f"cannot start read transaction: {exc}") from exc
            try:
                yield self
            except BaseException:
                self._rollback_quietly()
                raise
            try:
                self.conn.commit()
            except duckdb.Error as exc:
                raise StoreError(f"cannot finish read transaction: {exc}") from exc

    def _scalar(self, query: str, params: list) -> int:
        with self._db_lock:
            try:
                row = self.conn.execute(query, params).fetchone()
            except duckdb.Error as exc:
                raise StoreError(f"download query failed: {exc}") from exc
        return int(row[0])

    def query_count(
        self,
        window: timedelta,
        hit_filter: HitFilter = HitFilter.ANY,
        as_of: Optional[datetime] = None,
    ) -> int:
        """Number of downloads with ``as_of - window < time <= as_of``."""
        start, end = self._window_bounds(window, as_of)
        query = 'SELECT count(*) FROM downloads WHERE "time" > ? AND "time" <= ?'
        if hit_filter is HitFilter.HITS_ONLY:
            query += " AND hit"
        return self._scalar(query, [start, end])

    def query_bandwidth_saved(self, window: timedelta, as_of: Optional[datetime] = None) -> int:
        """Bytes served from cache in the window; 0 when there were no hits."""
        start, end = self._window_bounds(window, as_of)
        return self._scalar(
            'SELECT COALESCE(sum(size), 0) FROM downloads WHERE "time" > ? AND "time" <= ? AND hit',
            [start, end],
        )

    def list_packages(self) -> List[Package]:
        with self._db_lock:
            try:
                rows = self.conn.execute("SELECT id, name FROM packages ORDER BY id").fetchall()
            except duckdb.Error as exc:
                raise StoreError(f"cannot list packages: {exc}") from exc
        return [Package(id=r[0], name=r[1]) for r in rows]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def duplicate(self) -> "DownloadStore":
        """Open a second connection on the same database with its own lock."""
        with self._db_lock:
            try:
                cursor = self.conn.cursor()
            except duckdb.Error as exc:
                raise StoreError(f"cannot duplicate store connection: {exc}") from exc
        return DownloadStore(self.database, clock=self._clock, connection=cursor)

    def close(self) -> None:
        with self._db_lock:
            if not self._closed:
                self._closed = True
                self.conn.close()
                logger.info("download_store_closed", extra={"database": self.database})
