# mouthq/workers/scheduler.py
import logging
import threading
from enum import Enum
from typing import Callable

from PySide6.QtCore import QObject, QThread, Slot

from ..models.job import EventJob
from ..models.job_store import JobStore
from ..models.source_file import SourceFileModel
from .runner import AnimationRunner, JobError, JobErrorKind

logger = logging.getLogger(__name__)


class ShutdownMode(str, Enum):
    DRAIN = "drain"
    CANCEL_ALL = "cancel_all"


class AnimationWorker(QObject):
    """Runs queued jobs one after another on the scheduler's QThread."""

    def __init__(self, store: JobStore, runner: AnimationRunner,
                 source_provider: Callable[[], SourceFileModel], idle_poll: float = 0.5):
        super().__init__()
        self.store = store
        self.runner = runner
        self.source_provider = source_provider
        self.idle_poll = idle_poll
        self._wake = threading.Condition()
        self._stop = False
        self._stop_when_idle = False

    def wake(self):
        with self._wake:
            self._wake.notify_all()

    def stop(self, when_idle: bool = False):
        with self._wake:
            if when_idle:
                self._stop_when_idle = True
            else:
                self._stop = True
            self._wake.notify_all()

    @Slot()
    def run(self):
        logger.debug("Animation worker started")
        while not self._stop:
            if (nxt := self.store.take_next()) is None:
                if self._stop_when_idle:
                    break
                with self._wake:
                    if not self._stop and not self.store.queue:
                        self._wake.wait(self.idle_poll)
                continue
            self._execute(*nxt)
        logger.debug("Animation worker stopped")

    def _execute(self, job: EventJob, cancel_token: threading.Event):
        job_id, run_id = job.job_id, job.run_id
        logger.info("Animating %s -> %s", job.event_name, job.animation_name)

        def on_progress(value: float) -> None:
            self.store.report_progress(job_id, run_id, value)

        try:
            self.runner(self.source_provider(), job, on_progress, cancel_token)
        except JobError as e:
            if e.kind is JobErrorKind.CANCELLED or cancel_token.is_set():
                logger.info("Canceled %s", job.event_name)
                self.store.finish(job_id, run_id, succeeded=False)
            else:
                logger.warning("Animating %s failed: %s", job.event_name, e.message)
                self.store.finish(job_id, run_id, succeeded=False, error=e.message)
        except Exception as e:
            logger.exception("Unexpected error while animating %s", job.event_name)
            self.store.finish(job_id, run_id, succeeded=False, error=f"{type(e).__name__}: {e}")
        else:
            final = self.store.finish(job_id, run_id, succeeded=True)
            if final is not None:
                logger.info("Finished %s: %s", job.event_name, final.status.value)


class JobScheduler(QObject):
    """Owns the single background worker. Jobs start strictly in submission order."""

    def __init__(self, store: JobStore, runner: AnimationRunner,
                 source_provider: Callable[[], SourceFileModel], idle_poll: float = 0.5, parent=None):
        super().__init__(parent)
        self.store = store
        self.worker = AnimationWorker(store, runner, source_provider, idle_poll)
        self.work_thread = QThread(self)
        self.worker.moveToThread(self.work_thread)
        self.work_thread.started.connect(self.worker.run)
        self._started = False

    @property
    def busy(self) -> bool:
        return self.store.busy

    @property
    def queue(self) -> tuple[str, ...]:
        return self.store.queue

    @property
    def active_job_id(self) -> str | None:
        return self.store.active_job_id

    def start(self):
        if self._started:
            return
        self._started = True
        self.work_thread.start()

    def submit(self, job_id: str) -> bool:
        if not self.store.enqueue(job_id):
            return False
        self.worker.wake()
        return True

    def cancel(self, job_id: str) -> bool:
        return self.store.request_cancel(job_id)

    def cancel_all(self):
        self.store.cancel_all()

    def wait_idle(self, timeout: float | None = None) -> bool:
        return self.store.wait_idle(timeout)

    def shutdown(self, mode: ShutdownMode = ShutdownMode.CANCEL_ALL, timeout: float = 3.0) -> bool:
        """Stop the worker thread. Returns False if it did not finish within `timeout` seconds."""
        if mode is ShutdownMode.DRAIN:
            self.worker.stop(when_idle=True)
            if not self.store.wait_idle(timeout):
                logger.warning("Queue did not drain within %.1fs; canceling the rest", timeout)
        self.store.cancel_all()
        self.worker.stop()
        if not self._started:
            return True
        self.work_thread.quit()
        finished = self.work_thread.wait(int(timeout * 1000))
        if not finished:
            logger.warning("Animation worker did not stop within %.1fs", timeout)
        return finished
