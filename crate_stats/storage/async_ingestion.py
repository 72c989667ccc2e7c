"""Background ingestion worker and producer handles, using stdlib threading primitives."""
import logging
import queue
import threading
from datetime import datetime, timezone
from typing import Callable, Optional

from crate_stats.models import DownloadObservation


logger = logging.getLogger(__name__)

_SENTINEL = object()
_PUT_POLL_SECONDS = 0.1


class SubmissionError(RuntimeError):
    """Raised to a producer once ingestion has permanently shut down."""


class IngestionWorker:
    """Daemon worker thread that records DownloadObservation items from a bounded queue.

    - A single daemon Thread is the only caller of *record_fn*.
    - A full queue blocks the producer; it is never an error.
    - Per-item exceptions are caught and counted; the worker keeps running.
    - The worker stops after draining the queue once it has been closed.
    """

    def __init__(
        self,
        record_fn: Callable[[DownloadObservation], None],
        capacity: int = 10,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._record_fn = record_fn
        self._capacity = capacity
        self._queue: queue.Queue = queue.Queue(maxsize=capacity)
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        # Signalled by the worker whenever it frees a queue slot.
        self._space = threading.Condition(self._lock)
        self._closed = False
        self._producers = 0

        # Stats
        self._submitted: int = 0
        self._recorded: int = 0
        self._failed: int = 0
        self._last_error: Optional[str] = None
        self._last_recorded_at: Optional[datetime] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the worker thread. Idempotent; a closed worker cannot be restarted."""
        with self._lock:
            if self._closed:
                raise SubmissionError("ingestion worker has been closed")
            if self._thread is not None and self._thread.is_alive():
                return
            self._thread = threading.Thread(
                target=self._run, daemon=True, name="IngestionWorker"
            )
            self._thread.start()

    @property
    def is_running(self) -> bool:
        """True if the worker thread is alive."""
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    @property
    def is_closed(self) -> bool:
        with self._lock:
            return self._closed

    def submit(self, observation: DownloadObservation) -> None:
        """Enqueue an observation, blocking while the queue is full.

        Raises SubmissionError if the queue is closed or nothing is consuming it.
        """
        with self._space:
            while True:
                if self._closed:
                    raise SubmissionError("ingestion has shut down; queue is closed")
                if self._thread is None or not self._thread.is_alive():
                    raise SubmissionError("ingestion worker is not running")
                try:
                    self._queue.put_nowait(observation)
                    self._submitted += 1
                    return
                except queue.Full:
                    # Timed so a dead worker is noticed instead of waited on forever.
                    self._space.wait(timeout=_PUT_POLL_SECONDS)

    def close(self) -> None:
        """Close the queue; the worker exits once everything before this is recorded."""
        with self._space:
            if self._closed:
                return
            self._closed = True
            thread = self._thread
            self._space.notify_all()
        if thread is None:
            return
        while thread.is_alive():
            try:
                self._queue.put(_SENTINEL, timeout=_PUT_POLL_SECONDS)
                break
            except queue.Full:
                continue
        logger.info("ingestion_queue_closed", extra={"queue_depth": self._queue.qsize()})

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the worker thread to exit. Returns True if it has."""
        with self._lock:
            thread = self._thread
        if thread is None:
            return True
        thread.join(timeout=timeout)
        return not thread.is_alive()

    def flush(self, timeout: float = 10.0) -> bool:
        """Block until the queue is drained or *timeout* seconds pass.

        Returns True if fully drained, False if timed out.
        """
        # queue.join() blocks indefinitely; we wrap it with a timer.
        result = {"done": False}

        def _join():
            self._queue.join()
            result["done"] = True

        joiner = threading.Thread(target=_join, daemon=True)
        joiner.start()
        joiner.join(timeout=timeout)
        return result["done"]

    def get_status(self) -> dict:
        """Return a thread-safe snapshot of worker health."""
        with self._lock:
            return {
                "worker_running": self._thread is not None and self._thread.is_alive(),
                "closed": self._closed,
                "queue_depth": self._queue.qsize(),
                "capacity": self._capacity,
                "observations_submitted": self._submitted,
                "observations_recorded": self._recorded,
                "observations_failed": self._failed,
                "last_error": self._last_error,
                "last_recorded_at": self._last_recorded_at,
            }

    # ------------------------------------------------------------------
    # Producer accounting
    # ------------------------------------------------------------------

    def _acquire_producer(self) -> None:
        with self._lock:
            if self._closed:
                raise SubmissionError("ingestion has shut down; queue is closed")
            self._producers += 1

    def _release_producer(self) -> None:
        with self._lock:
            self._producers -= 1
            last = self._producers == 0
        if last:
            self.close()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _run(self) -> None:
        """Main worker loop; runs on the worker thread."""
        thread_name = threading.current_thread().name
        logger.info(
            "ingestion_worker_started",
            extra={"thread_name": thread_name, "capacity": self._capacity},
        )
        while True:
            item = self._queue.get()
            with self._space:
                self._space.notify_all()

            # Sentinel => queue closed and drained
            if item is _SENTINEL:
                self._queue.task_done()
                with self._lock:
                    recorded = self._recorded
                    failed = self._failed
                logger.info(
                    "ingestion_worker_stopped",
                    extra={"observations_recorded": recorded, "observations_failed": failed},
                )
                break

            try:
                self._record_fn(item)
                with self._lock:
                    self._recorded += 1
                    self._last_recorded_at = datetime.now(timezone.utc)
            except Exception as exc:
                with self._lock:
                    self._failed += 1
                    self._last_error = str(exc)
                logger.error(
                    "download_record_failed",
                    extra={
                        "package_name": item.package_name,
                        "version": item.version,
                        "error": str(exc),
                    },
                )
            finally:
                self._queue.task_done()


class SubmissionHandle:
    """Producer endpoint for an IngestionWorker.

    Every open handle keeps the queue open; closing the last one closes it.
    """

    def __init__(self, worker: IngestionWorker) -> None:
        worker._acquire_producer()
        self._worker = worker
        self._closed = False
        self._lock = threading.Lock()

    def submit(self, package_name: str, version: str, hit: bool, size: int) -> None:
        """Report one completed download. Blocks under backpressure."""
        if self._closed:
            raise SubmissionError("submission handle is closed")
        observation = DownloadObservation(
            package_name=package_name, version=version, hit=hit, size=size
        )
        self._worker.submit(observation)

    def clone(self) -> "SubmissionHandle":
        if self._closed:
            raise SubmissionError("submission handle is closed")
        return SubmissionHandle(self._worker)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._worker._release_producer()

    def __enter__(self) -> "SubmissionHandle":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
