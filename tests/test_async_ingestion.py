"""Tests for the bounded ingestion queue, its worker thread and producer handles."""
import threading
import time

import pytest
from crate_stats.models import DownloadObservation
from crate_stats.storage import IngestionWorker, SubmissionError, SubmissionHandle


def _obs(name="serde", version="1.0.0", hit=False, size=1):
    return DownloadObservation(package_name=name, version=version, hit=hit, size=size)


class RecordingSink:
    """Stand-in write callback; fails on the package named 'broken'."""

    def __init__(self, gate=None):
        self.items = []
        self.started = threading.Event()
        self._gate = gate

    def __call__(self, observation):
        self.started.set()
        if self._gate is not None:
            self._gate.wait(timeout=5)
        if observation.package_name == "broken":
            raise RuntimeError("disk full")
        self.items.append(observation)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def worker(sink):
    w = IngestionWorker(sink, capacity=10)
    w.start()
    yield w
    w.close()
    w.join(timeout=5)


class TestWorkerLoop:

    def test_records_in_submission_order(self, worker, sink):
        for i in range(5):
            worker.submit(_obs(name=f"crate-{i}"))
        worker.close()
        assert worker.join(timeout=5)
        assert [o.package_name for o in sink.items] == [f"crate-{i}" for i in range(5)]

    def test_failed_item_does_not_halt_ingestion(self, worker, sink):
        worker.submit(_obs(name="serde"))
        worker.submit(_obs(name="broken"))
        worker.submit(_obs(name="rand"))
        assert worker.flush(timeout=5)

        assert [o.package_name for o in sink.items] == ["serde", "rand"]
        status = worker.get_status()
        assert status["observations_submitted"] == 3
        assert status["observations_recorded"] == 2
        assert status["observations_failed"] == 1
        assert status["last_error"] == "disk full"
        assert status["worker_running"] is True

    def test_status_exposes_health_fields(self, worker):
        status = worker.get_status()
        for key in ("worker_running", "closed", "queue_depth", "capacity",
                    "observations_submitted", "observations_recorded",
                    "observations_failed", "last_error", "last_recorded_at"):
            assert key in status, f"Missing status key: {key}"
        assert status["capacity"] == 10

    def test_start_is_idempotent(self, worker):
        worker.start()
        assert worker.is_running

    def test_capacity_must_be_positive(self, sink):
        with pytest.raises(ValueError):
            IngestionWorker(sink, capacity=0)


class TestBackpressure:

    def test_submit_blocks_while_full_and_resumes_when_drained(self):
        gate = threading.Event()
        sink = RecordingSink(gate=gate)
        worker = IngestionWorker(sink, capacity=1)
        worker.start()
        try:
            worker.submit(_obs(name="first"))
            assert sink.started.wait(timeout=5)  # worker holds "first"
            worker.submit(_obs(name="second"))   # fills the single slot

            errors = []

            def _blocked_submit():
                try:
                    worker.submit(_obs(name="third"))
                except Exception as exc:
                    errors.append(exc)

            producer = threading.Thread(target=_blocked_submit)
            producer.start()
            producer.join(timeout=0.3)
            assert producer.is_alive(), "submit should block while the queue is full"
            assert errors == []

            gate.set()
            producer.join(timeout=5)
            assert not producer.is_alive()
            assert errors == []
        finally:
            gate.set()
            worker.close()
            worker.join(timeout=5)

        assert [o.package_name for o in sink.items] == ["first", "second", "third"]

    def test_close_drains_everything_already_queued(self):
        gate = threading.Event()
        sink = RecordingSink(gate=gate)
        worker = IngestionWorker(sink, capacity=3)
        worker.start()
        worker.submit(_obs(name="a"))
        assert sink.started.wait(timeout=5)
        for name in ("b", "c", "d"):
            worker.submit(_obs(name=name))

        closer = threading.Thread(target=worker.close)
        closer.start()
        time.sleep(0.05)
        gate.set()
        closer.join(timeout=5)

        assert worker.join(timeout=5)
        assert [o.package_name for o in sink.items] == ["a", "b", "c", "d"]


class TestShutdown:

    def test_submit_after_close_raises(self, worker):
        worker.close()
        assert worker.join(timeout=5)
        assert not worker.is_running
        with pytest.raises(SubmissionError, match="queue is closed"):
            worker.submit(_obs())

    def test_submit_before_start_raises(self, sink):
        worker = IngestionWorker(sink)
        with pytest.raises(SubmissionError, match="not running"):
            worker.submit(_obs())

    @pytest.mark.filterwarnings("ignore::pytest.PytestUnhandledThreadExceptionWarning")
    def test_blocked_submit_fails_when_worker_thread_dies(self):
        class WorkerKilled(BaseException):
            pass

        gate = threading.Event()
        started = threading.Event()

        def fatal_sink(observation):
            started.set()
            gate.wait(timeout=5)
            raise WorkerKilled()

        worker = IngestionWorker(fatal_sink, capacity=1)
        worker.start()
        errors = []
        try:
            worker.submit(_obs(name="first"))
            assert started.wait(timeout=5)
            worker.submit(_obs(name="second"))

            def _blocked_submit():
                try:
                    worker.submit(_obs(name="third"))
                except Exception as exc:
                    errors.append(exc)

            producer = threading.Thread(target=_blocked_submit)
            producer.start()
            producer.join(timeout=0.3)
            assert producer.is_alive(), "submit should block while the queue is full"

            gate.set()
            producer.join(timeout=5)
            assert not producer.is_alive()
        finally:
            gate.set()
            worker.close()
            worker.join(timeout=5)

        assert len(errors) == 1
        assert isinstance(errors[0], SubmissionError)
        assert "not running" in str(errors[0])
        assert not worker.is_running

    def test_closed_worker_cannot_restart(self, worker):
        worker.close()
        worker.join(timeout=5)
        with pytest.raises(SubmissionError):
            worker.start()

    def test_close_is_idempotent(self, worker):
        worker.close()
        worker.close()
        assert worker.join(timeout=5)


class TestSubmissionHandle:

    def test_submit_builds_observation(self, worker, sink):
        handle = SubmissionHandle(worker)
        handle.submit("serde", "1.0.0", True, 2048)
        handle.close()
        assert worker.join(timeout=5)
        assert sink.items == [_obs(hit=True, size=2048)]

    def test_queue_stays_open_until_last_handle_closes(self, worker, sink):
        first = SubmissionHandle(worker)
        second = first.clone()

        first.close()
        assert not worker.is_closed
        second.submit("rand", "0.8.5", False, 10)

        second.close()
        assert worker.is_closed
        assert worker.join(timeout=5)
        assert [o.package_name for o in sink.items] == ["rand"]

    def test_closed_handle_rejects_submit_and_clone(self, worker):
        handle = SubmissionHandle(worker)
        keep_open = handle.clone()
        handle.close()
        with pytest.raises(SubmissionError, match="handle is closed"):
            handle.submit("serde", "1.0.0", True, 1)
        with pytest.raises(SubmissionError):
            handle.clone()
        keep_open.close()

    def test_no_new_handles_after_shutdown(self, worker):
        with SubmissionHandle(worker) as handle:
            handle.submit("serde", "1.0.0", True, 1)
        assert handle.closed
        assert worker.join(timeout=5)
        with pytest.raises(SubmissionError):
            SubmissionHandle(worker)

    def test_invalid_observation_is_rejected_at_submit(self, worker, sink):
        with SubmissionHandle(worker) as handle:
            with pytest.raises(ValueError):
                handle.submit("serde", "1.0.0", True, -5)
        assert worker.join(timeout=5)
        assert sink.items == []
