# mouthq/controller.py
"""Composition root: one character file, its jobs, and the scheduler that runs them.

Front ends (the CLI, a Qt window, tests) talk to ``MainModel`` only: they read
``file_model`` and ``store`` and call the command methods. Everything a view
needs to redraw is announced through Qt signals.
"""
import logging

from PySide6.QtCore import QObject, Signal

from .models.job import EventJob, JobAction, JobStatus, animation_name_for, available_action
from .models.job_store import JobStore, SchedulerBusyError
from .models.source_file import LoadError, SourceFileModel, load_source_file
from .utils.settings import load_settings
from .workers.rhubarb import RhubarbRunner
from .workers.runner import AnimationRunner
from .workers.scheduler import JobScheduler, ShutdownMode

logger = logging.getLogger(__name__)


class MainModel(QObject):
    file_model_changed = Signal(object)       # SourceFileModel
    file_path_error_changed = Signal(object)  # str | None

    def __init__(self, settings: dict | None = None, runner: AnimationRunner | None = None, parent=None):
        super().__init__(parent)
        self.settings = settings if settings is not None else load_settings()
        self.animation_prefix = self.settings.get("animation_prefix", "say_")
        self.animation_suffix = self.settings.get("animation_suffix", "")
        self.file_path_error: str | None = None
        self._file_model = SourceFileModel()

        self.store = JobStore(progress_step=float(self.settings.get("progress_step", 0.01)))
        self.scheduler = JobScheduler(
            self.store,
            runner if runner is not None else RhubarbRunner(self.settings),
            lambda: self._file_model,
            idle_poll=float(self.settings.get("idle_poll", 0.5)),
            parent=self,
        )

    # --- lifecycle ---------------------------------------------------------

    def start(self):
        self.scheduler.start()

    def shutdown(self, mode: ShutdownMode = ShutdownMode.CANCEL_ALL) -> bool:
        return self.scheduler.shutdown(mode, timeout=float(self.settings.get("shutdown_timeout", 3.0)))

    # --- observable state --------------------------------------------------

    @property
    def file_model(self) -> SourceFileModel:
        return self._file_model

    @property
    def busy(self) -> bool:
        return self.store.busy

    @property
    def jobs(self) -> tuple[EventJob, ...]:
        return self.store.snapshot()

    def action_for_job(self, job_id: str) -> JobAction | None:
        job = self.store.get(job_id)
        return available_action(job, self._file_model.valid) if job is not None else None

    # --- commands ----------------------------------------------------------

    def load_file(self, path: str) -> LoadError | None:
        """Replace the file model. On failure the previous model and its jobs stay untouched."""
        try:
            model = load_source_file(path)
            if self._await_quiescence():
                # jobs that were still running may have saved into the file meanwhile
                model = load_source_file(path)
        except LoadError as e:
            logger.warning("Could not load %s: %s", path, e.message)
            self._set_file_path_error(e.message)
            return e
        self._set_file_path_error(None)
        self._file_model = model
        self._rebuild_jobs()
        self.file_model_changed.emit(model)
        return None

    def select_slot(self, name: str | None) -> SourceFileModel:
        self._ensure_idle("change the mouth slot")
        self._file_model = self._file_model.select_slot(name)
        if self._file_model.slot_error:
            logger.info("Slot selection rejected: %s", self._file_model.slot_error)
        self.file_model_changed.emit(self._file_model)
        return self._file_model

    def set_naming(self, prefix: str, suffix: str):
        self._ensure_idle("rename animations")
        self.animation_prefix, self.animation_suffix = prefix, suffix
        self._rebuild_jobs()

    def submit_job(self, job_id: str) -> bool:
        if not self._file_model.valid:
            logger.info("Not submitting %s: the character file is not valid", job_id)
            return False
        return self.scheduler.submit(job_id)

    def cancel_job(self, job_id: str) -> bool:
        return self.scheduler.cancel(job_id)

    def cancel_all(self):
        self.scheduler.cancel_all()

    def perform_action(self, job_id: str) -> JobAction | None:
        """What a per-row button does: submit or cancel depending on the job's status."""
        action = self.action_for_job(job_id)
        match action:
            case JobAction.SUBMIT:
                self.submit_job(job_id)
            case JobAction.CANCEL:
                self.cancel_job(job_id)
            case None:
                pass
        return action

    # --- internals ---------------------------------------------------------

    def _ensure_idle(self, what: str):
        if self.store.busy:
            raise SchedulerBusyError(f"Cannot {what} while animations are queued or running.")

    def _await_quiescence(self) -> bool:
        """Cancel everything and wait for the worker to settle. True if there was anything to stop."""
        if not self.store.busy:
            return False
        logger.info("Canceling all jobs before reloading")
        self.scheduler.cancel_all()
        timeout = float(self.settings.get("reload_timeout", 10.0))
        if not self.scheduler.wait_idle(timeout):
            raise SchedulerBusyError(f"Jobs did not stop within {timeout:.1f}s.")
        return True

    def _set_file_path_error(self, error: str | None):
        if error != self.file_path_error:
            self.file_path_error = error
            self.file_path_error_changed.emit(error)

    def _rebuild_jobs(self):
        model = self._file_model
        jobs = []
        for event in model.events:
            if event.audio_file_path is None:
                continue
            name = animation_name_for(event.name, self.animation_prefix, self.animation_suffix)
            jobs.append(EventJob(
                event_name=event.name,
                animation_name=name,
                audio_file_path=event.audio_file_path,
                dialog=event.dialog,
                status=JobStatus.DONE if model.document.has_animation(name) else JobStatus.NOT_ANIMATED,
            ))
        self.store.reset(jobs)
