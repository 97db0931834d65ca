# mouthq/models/job.py
from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class JobStatus(str, Enum):
    NOT_ANIMATED = "Not animated"
    PENDING = "Pending"
    ANIMATING = "Animating"
    CANCELING = "Canceling"
    DONE = "Done"


class JobAction(str, Enum):
    SUBMIT = "Animate"
    CANCEL = "Cancel"


IN_FLIGHT = frozenset({JobStatus.PENDING, JobStatus.ANIMATING, JobStatus.CANCELING})


def animation_name_for(event_name: str, prefix: str, suffix: str) -> str:
    return f"{prefix}{event_name}{suffix}"


@dataclass(frozen=True)
class EventJob:
    event_name: str
    animation_name: str
    audio_file_path: Path | None = None
    dialog: str | None = None
    status: JobStatus = JobStatus.NOT_ANIMATED
    progress: float | None = None   # only while ANIMATING
    error: str | None = None
    run_id: int = 0                 # bumped every time the job is picked up

    @property
    def job_id(self) -> str:
        return self.event_name

    @property
    def audio_available(self) -> bool:
        return self.audio_file_path is not None and Path(self.audio_file_path).is_file()

    @property
    def in_flight(self) -> bool:
        return self.status in IN_FLIGHT

    @property
    def display_file_path(self) -> str:
        return self.audio_file_path.name if self.audio_file_path is not None else ""

    @property
    def action_label(self) -> str:
        if self.status is JobStatus.DONE:
            return "Animate again"
        action = action_for(self.status)
        return action.value


def action_for(status: JobStatus) -> JobAction:
    match status:
        case JobStatus.NOT_ANIMATED | JobStatus.DONE:
            return JobAction.SUBMIT
        case JobStatus.PENDING | JobStatus.ANIMATING | JobStatus.CANCELING:
            return JobAction.CANCEL
    raise ValueError(f"unknown job status {status!r}")


def available_action(job: EventJob, file_valid: bool) -> JobAction | None:
    """What the per-job button does right now, or None when there is no button."""
    if not file_valid:
        return None
    action = action_for(job.status)
    if action is JobAction.SUBMIT and not job.audio_available:
        return None
    return action


def status_text(job: EventJob) -> str:
    match job.status:
        case JobStatus.NOT_ANIMATED:
            return f"Failed: {job.error}" if job.error else "Not animated"
        case JobStatus.PENDING:
            return "Pending"
        case JobStatus.ANIMATING:
            return f"{int((job.progress or 0.0) * 100)}%"
        case JobStatus.CANCELING:
            return "Canceling"
        case JobStatus.DONE:
            return "Done"
    raise ValueError(f"unknown job status {job.status!r}")
