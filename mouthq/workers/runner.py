# mouthq/workers/runner.py
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Protocol

from ..models.job import EventJob
from ..models.source_file import SourceFileModel
from ..parsers.rhubarb_output import MouthCue


class JobErrorKind(str, Enum):
    COMPUTATION_FAILED = "computation_failed"
    CANCELLED = "cancelled"


class JobError(Exception):
    def __init__(self, kind: JobErrorKind, message: str = ""):
        super().__init__(message or kind.value)
        self.kind = kind
        self.message = message or kind.value


@dataclass
class AnimationOutput:
    animation_name: str
    mouth_cues: list[MouthCue] = field(default_factory=list)


ProgressCallback = Callable[[float], None]


class AnimationRunner(Protocol):
    """The long-running computation behind one job.

    Implementations must call ``on_progress`` with values in [0, 1] and poll
    ``cancel_token`` often; once it is set they should stop and raise
    ``JobError(JobErrorKind.CANCELLED)``.
    """

    def __call__(
        self,
        source_file: SourceFileModel,
        job: EventJob,
        on_progress: ProgressCallback,
        cancel_token: threading.Event,
    ) -> AnimationOutput: ...
