# mouthq/models/job_store.py
"""Thread-safe home of every job snapshot plus the scheduler's queue bookkeeping.

All mutation happens under one lock so that a job's status always agrees with
its queue membership. Observers get immutable ``EventJob`` snapshots through
Qt signals; notifications are queued while the lock is held and emitted
afterwards, strictly in mutation order.
"""
import dataclasses
import logging
import threading
from collections import deque
from typing import Iterable

from PySide6.QtCore import QObject, Signal

from .job import IN_FLIGHT, EventJob, JobStatus

logger = logging.getLogger(__name__)


class SchedulerBusyError(RuntimeError):
    """Raised when the job set is replaced while jobs are queued or running."""


class JobStore(QObject):
    job_changed = Signal(object)   # EventJob
    busy_changed = Signal(bool)
    jobs_reset = Signal(object)    # tuple[EventJob, ...]

    def __init__(self, progress_step: float = 0.0):
        super().__init__()
        self.progress_step = max(0.0, float(progress_step))
        self._lock = threading.RLock()
        self._emit_lock = threading.RLock()
        self._jobs: dict[str, EventJob] = {}
        self._queue: deque[str] = deque()
        self._active: str | None = None
        self._cancel_token: threading.Event | None = None
        self._busy = False
        self._idle = threading.Event()
        self._idle.set()
        self._outbox: deque[tuple[Signal, object]] = deque()

    # --- reads -----------------------------------------------------------

    def get(self, job_id: str) -> EventJob | None:
        with self._lock:
            return self._jobs.get(job_id)

    def snapshot(self) -> tuple[EventJob, ...]:
        with self._lock:
            return tuple(self._jobs.values())

    @property
    def queue(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(self._queue)

    @property
    def active_job_id(self) -> str | None:
        with self._lock:
            return self._active

    @property
    def busy(self) -> bool:
        with self._lock:
            return self._busy

    def wait_idle(self, timeout: float | None = None) -> bool:
        return self._idle.wait(timeout)

    # --- mutation ----------------------------------------------------------

    def reset(self, jobs: Iterable[EventJob]) -> None:
        with self._lock:
            if self._busy:
                raise SchedulerBusyError("jobs are still queued or running")
            self._jobs = {j.job_id: j for j in jobs}
            self._post(self.jobs_reset, tuple(self._jobs.values()))
        self._publish()

    def enqueue(self, job_id: str) -> bool:
        """Queue a job. False when it is unknown, already in flight or has no audio file."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status in IN_FLIGHT:
                return False
            if not job.audio_available:
                logger.warning("Not queuing %s: audio file %s is missing", job_id, job.audio_file_path)
                return False
            self._queue.append(job_id)
            self._set(job, status=JobStatus.PENDING, progress=None, error=None)
        self._publish()
        return True

    def take_next(self) -> tuple[EventJob, threading.Event] | None:
        """Move the head of the queue to ANIMATING. Called by the worker only."""
        with self._lock:
            if self._active is not None:
                return None
            while self._queue:
                job = self._jobs.get(self._queue.popleft())
                if job is None or job.status is not JobStatus.PENDING:
                    continue
                self._active = job.job_id
                self._cancel_token = threading.Event()
                job = self._set(job, status=JobStatus.ANIMATING, progress=0.0, error=None, run_id=job.run_id + 1)
                token = self._cancel_token
                break
            else:
                self._update_busy()
                job = None
        self._publish()
        return (job, token) if job is not None else None

    def request_cancel(self, job_id: str) -> bool:
        with self._lock:
            canceled = self._cancel_locked(job_id)
        self._publish()
        return canceled

    def cancel_all(self) -> None:
        with self._lock:
            for job_id in list(self._queue):
                self._cancel_locked(job_id)
            if self._active is not None:
                self._cancel_locked(self._active)
        self._publish()

    def report_progress(self, job_id: str, run_id: int, value: float) -> bool:
        """Record progress for the running job. Late, stale or backwards values are dropped."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.run_id != run_id or job.status is not JobStatus.ANIMATING:
                return False
            value = min(1.0, max(0.0, float(value)))
            last = job.progress or 0.0
            if value <= last:
                return False
            if value < 1.0 and value - last < self.progress_step:
                return False
            self._set(job, progress=value)
        self._publish()
        return True

    def finish(self, job_id: str, run_id: int, succeeded: bool, error: str | None = None) -> EventJob | None:
        """Final transition for a run. A job that was canceling never ends up DONE."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.run_id != run_id or job.status not in (JobStatus.ANIMATING, JobStatus.CANCELING):
                return None
            if self._active == job_id:
                self._active = None
                self._cancel_token = None
            if job.status is JobStatus.CANCELING:
                result = self._set(job, status=JobStatus.NOT_ANIMATED, progress=None, error=None)
            elif succeeded:
                result = self._set(job, status=JobStatus.DONE, progress=None, error=None)
            else:
                result = self._set(job, status=JobStatus.NOT_ANIMATED, progress=None, error=error)
        self._publish()
        return result

    # --- internals -----------------------------------------------------------

    def _cancel_locked(self, job_id: str) -> bool:
        # caller holds _lock and publishes after releasing it
        job = self._jobs.get(job_id)
        if job is None:
            return False
        if job.status is JobStatus.PENDING:
            self._queue.remove(job_id)
            self._set(job, status=JobStatus.NOT_ANIMATED, progress=None)
        elif job.status is JobStatus.ANIMATING and self._active == job_id:
            self._cancel_token.set()
            self._set(job, status=JobStatus.CANCELING, progress=None)
        else:
            return False
        return True

    def _set(self, job: EventJob, **changes) -> EventJob:
        job = dataclasses.replace(job, **changes)
        self._jobs[job.job_id] = job
        self._post(self.job_changed, job)
        self._update_busy()
        return job

    def _update_busy(self) -> None:
        busy = self._active is not None or bool(self._queue)
        if busy != self._busy:
            self._busy = busy
            if busy:
                self._idle.clear()
            else:
                self._idle.set()
            self._post(self.busy_changed, busy)

    def _post(self, signal, payload) -> None:
        self._outbox.append((signal, payload))

    def _publish(self) -> None:
        with self._emit_lock:
            while True:
                with self._lock:
                    if not self._outbox:
                        return
                    signal, payload = self._outbox.popleft()
                signal.emit(payload)
