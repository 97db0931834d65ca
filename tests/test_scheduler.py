import threading

import pytest
from conftest import ScriptedRunner, wait_until
from PySide6.QtCore import Qt

from mouthq.models.job import EventJob, JobStatus
from mouthq.models.job_store import JobStore
from mouthq.models.source_file import SourceFileModel
from mouthq.workers.runner import JobError, JobErrorKind
from mouthq.workers.scheduler import JobScheduler, ShutdownMode

RUNNING = (JobStatus.ANIMATING, JobStatus.CANCELING)


class Recorder:
    """Collects every published snapshot and checks the single-worker invariant on each one."""

    def __init__(self, store: JobStore):
        self.store = store
        self.events: list[tuple[str, JobStatus, float | None]] = []
        self.violations: list[tuple] = []
        self._lock = threading.Lock()
        store.job_changed.connect(self.on_job, Qt.ConnectionType.DirectConnection)

    def on_job(self, job: EventJob):
        running = [j.job_id for j in self.store.snapshot() if j.status in RUNNING]
        with self._lock:
            self.events.append((job.job_id, job.status, job.progress))
            if len(running) > 1:
                self.violations.append(tuple(running))

    def statuses(self, job_id):
        return [s for jid, s, _ in self.events if jid == job_id]

    def progress(self, job_id):
        return [p for jid, s, p in self.events if jid == job_id and s is JobStatus.ANIMATING]

    def index(self, job_id, status, nth=0):
        hits = [i for i, (jid, s, _) in enumerate(self.events) if jid == job_id and s is status]
        return hits[nth]


@pytest.fixture
def jobs(tmp_path):
    result = []
    for name in "abc":
        audio = tmp_path / f"{name}.wav"
        audio.write_bytes(b"")
        result.append(EventJob(name, f"say_{name}", audio))
    return result


@pytest.fixture
def setup(jobs, runner):
    store = JobStore()
    store.reset(jobs)
    recorder = Recorder(store)
    scheduler = JobScheduler(store, runner, lambda: SourceFileModel(), idle_poll=0.05)
    scheduler.start()
    yield scheduler, store, recorder
    scheduler.shutdown(ShutdownMode.CANCEL_ALL, timeout=5.0)
    assert recorder.violations == []


def _status(store, job_id):
    return store.get(job_id).status


def test_jobs_run_in_submission_order(setup, runner):
    scheduler, store, rec = setup
    for name in "abc":
        assert scheduler.submit(name)
    assert scheduler.wait_idle(5)

    assert runner.started == ["a", "b", "c"]
    assert all(_status(store, n) is JobStatus.DONE for n in "abc")
    assert rec.index("a", JobStatus.DONE) < rec.index("b", JobStatus.ANIMATING)
    assert rec.index("b", JobStatus.DONE) < rec.index("c", JobStatus.ANIMATING)
    for name in "abc":
        assert rec.progress(name) == sorted(rec.progress(name))
        assert rec.progress(name)[-1] == 1.0


def test_resubmitting_in_flight_job_is_a_noop(setup, runner):
    scheduler, store, rec = setup
    gate = runner.hold("a")
    assert scheduler.submit("a")
    assert wait_until(lambda: _status(store, "a") is JobStatus.ANIMATING)
    assert not scheduler.submit("a")
    assert scheduler.queue == ()
    assert scheduler.active_job_id == "a"
    gate.set()
    assert scheduler.wait_idle(5)
    assert runner.started == ["a"]


def test_cancel_pending_job_skips_animating(setup, runner):
    scheduler, store, rec = setup
    gate = runner.hold("a")
    scheduler.submit("a")
    scheduler.submit("b")
    assert wait_until(lambda: _status(store, "a") is JobStatus.ANIMATING)
    assert _status(store, "b") is JobStatus.PENDING

    assert scheduler.cancel("b")
    assert _status(store, "b") is JobStatus.NOT_ANIMATED
    gate.set()
    assert scheduler.wait_idle(5)

    assert rec.statuses("b") == [JobStatus.PENDING, JobStatus.NOT_ANIMATED]
    assert runner.started == ["a"]


def test_cancel_running_job(setup, runner):
    scheduler, store, rec = setup
    runner.hold("a")
    scheduler.submit("a")
    assert wait_until(lambda: _status(store, "a") is JobStatus.ANIMATING)

    assert scheduler.cancel("a")
    assert _status(store, "a") in (JobStatus.CANCELING, JobStatus.NOT_ANIMATED)
    assert scheduler.wait_idle(5)

    final = store.get("a")
    assert final.status is JobStatus.NOT_ANIMATED
    assert final.error is None
    statuses = rec.statuses("a")
    assert JobStatus.DONE not in statuses
    canceling = rec.index("a", JobStatus.CANCELING)
    assert all(s is not JobStatus.ANIMATING for _, s, _ in
               [e for e in rec.events[canceling:] if e[0] == "a"])


def test_done_job_can_run_again(setup, runner):
    scheduler, store, rec = setup
    scheduler.submit("a")
    assert scheduler.wait_idle(5)
    assert _status(store, "a") is JobStatus.DONE

    first_run = store.get("a").run_id
    assert scheduler.submit("a")
    assert scheduler.wait_idle(5)
    assert store.get("a").run_id == first_run + 1

    second = rec.statuses("a")[rec.statuses("a").index(JobStatus.DONE) + 1:]
    assert second[0] is JobStatus.PENDING
    assert second[1] is JobStatus.ANIMATING
    assert second[-1] is JobStatus.DONE
    assert runner.started == ["a", "a"]


def test_failures_do_not_stop_the_worker(setup, runner):
    scheduler, store, rec = setup
    runner.fail = {
        "a": JobError(JobErrorKind.COMPUTATION_FAILED, "bad audio"),
        "b": RuntimeError("kaboom"),
    }
    for name in "abc":
        scheduler.submit(name)
    assert scheduler.wait_idle(5)

    a, b, c = (store.get(n) for n in "abc")
    assert (a.status, a.error) == (JobStatus.NOT_ANIMATED, "bad audio")
    assert (b.status, b.error) == (JobStatus.NOT_ANIMATED, "RuntimeError: kaboom")
    assert c.status is JobStatus.DONE

    runner.fail = {}
    assert scheduler.submit("a")
    assert scheduler.wait_idle(5)
    assert store.get("a").status is JobStatus.DONE
    assert store.get("a").error is None


def test_shutdown_cancels_everything(jobs):
    runner = ScriptedRunner()
    store = JobStore()
    store.reset(jobs)
    scheduler = JobScheduler(store, runner, lambda: SourceFileModel(), idle_poll=0.05)
    runner.hold("a")
    scheduler.start()
    scheduler.submit("a")
    scheduler.submit("b")
    assert wait_until(lambda: _status(store, "a") is JobStatus.ANIMATING)

    assert scheduler.shutdown(ShutdownMode.CANCEL_ALL, timeout=5.0)
    assert _status(store, "a") is JobStatus.NOT_ANIMATED
    assert _status(store, "b") is JobStatus.NOT_ANIMATED
    assert not scheduler.busy


def test_shutdown_drain_finishes_queue(jobs):
    runner = ScriptedRunner()
    store = JobStore()
    store.reset(jobs)
    scheduler = JobScheduler(store, runner, lambda: SourceFileModel(), idle_poll=0.05)
    scheduler.start()
    for name in "abc":
        scheduler.submit(name)

    assert scheduler.shutdown(ShutdownMode.DRAIN, timeout=5.0)
    assert [j.status for j in store.snapshot()] == [JobStatus.DONE] * 3


def test_submit_before_start_waits_for_worker(jobs):
    runner = ScriptedRunner()
    store = JobStore()
    store.reset(jobs)
    scheduler = JobScheduler(store, runner, lambda: SourceFileModel(), idle_poll=0.05)
    assert scheduler.submit("a")
    assert _status(store, "a") is JobStatus.PENDING
    scheduler.start()
    try:
        assert scheduler.wait_idle(5)
        assert _status(store, "a") is JobStatus.DONE
    finally:
        scheduler.shutdown(timeout=5.0)
