# mouthq/models/source_file.py
import dataclasses
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from ..parsers.spine_json import AudioEvent, SpineJson, SpineSchemaError
from .mouth import BASIC_SHAPES, MouthNaming, MouthShape

logger = logging.getLogger(__name__)


class LoadErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    PARSE_ERROR = "parse_error"
    SCHEMA_ERROR = "schema_error"


class LoadError(Exception):
    def __init__(self, kind: LoadErrorKind, path: str, message: str):
        super().__init__(message)
        self.kind = kind
        self.path = path
        self.message = message


def guess_mouth_slot(slots: tuple[str, ...]) -> str | None:
    return next((s for s in slots if "mouth" in s.lower()), None)


@dataclass(frozen=True)
class SourceFileModel:
    """A loaded character file. Never mutated; every change produces a new instance."""

    path: str = ""
    document: SpineJson | None = None
    slots: tuple[str, ...] = ()
    selected_slot: str | None = None
    mouth_naming: MouthNaming = MouthNaming()
    mouth_shapes: tuple[MouthShape, ...] = ()

    @property
    def events(self) -> tuple[AudioEvent, ...]:
        return tuple(self.document.audio_events) if self.document is not None else ()

    @property
    def slot_error(self) -> str | None:
        if self.selected_slot is None:
            return "No slot selected." if self.slots else "The file contains no slots."
        if self.selected_slot not in self.slots:
            return f"Slot '{self.selected_slot}' does not exist."
        return None

    @property
    def mouth_shapes_error(self) -> str | None:
        if self.slot_error is not None:
            return None
        missing = [s.value for s in BASIC_SHAPES if s not in self.mouth_shapes]
        if not missing:
            return None
        if len(missing) == 1:
            return f"Mouth shape {missing[0]} is missing."
        return f"Mouth shapes {', '.join(missing)} are missing."

    @property
    def extended_shapes(self) -> tuple[MouthShape, ...]:
        return tuple(s for s in self.mouth_shapes if s.is_extended)

    @property
    def valid(self) -> bool:
        return (
            bool(self.path)
            and Path(self.path).is_file()
            and self.document is not None
            and bool(self.slots)
            and self.slot_error is None
            and bool(self.mouth_shapes)
            and self.mouth_shapes_error is None
        )

    def select_slot(self, name: str | None) -> "SourceFileModel":
        """Return a copy with `name` selected; an unknown name yields an invalid model, not an exception."""
        names = self.document.slot_attachment_names(name) if self.document is not None and name in self.slots else []
        naming = MouthNaming.guess(names)
        return dataclasses.replace(
            self,
            selected_slot=name,
            mouth_naming=naming,
            mouth_shapes=naming.shapes_in(names),
        )


def load_source_file(path: str) -> SourceFileModel:
    """Parse a Spine JSON file into a model. Raises LoadError."""
    p = Path(path) if path else None
    if p is None or not p.is_file():
        raise LoadError(LoadErrorKind.NOT_FOUND, path, "File does not exist.")
    try:
        document = SpineJson.load(p)
    except OSError as e:
        raise LoadError(LoadErrorKind.NOT_FOUND, path, f"File cannot be read: {e}") from e
    except ValueError as e:
        raise LoadError(LoadErrorKind.PARSE_ERROR, path, f"File is not valid JSON: {e}") from e
    except SpineSchemaError as e:
        raise LoadError(LoadErrorKind.SCHEMA_ERROR, path, str(e)) from e

    try:
        document.audio_events
    except SpineSchemaError as e:
        raise LoadError(LoadErrorKind.SCHEMA_ERROR, path, str(e)) from e

    slots = tuple(document.slots)
    model = SourceFileModel(path=str(p), document=document, slots=slots)
    model = model.select_slot(guess_mouth_slot(slots))
    logger.info("Loaded %s: %d slot(s), mouth slot %s, shapes %s",
                p, len(slots), model.selected_slot, "".join(s.value for s in model.mouth_shapes) or "none")
    return model
