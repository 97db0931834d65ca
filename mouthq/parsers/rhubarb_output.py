# mouthq/parsers/rhubarb_output.py
import json
import math
from dataclasses import dataclass

from ..models.mouth import MouthShape


@dataclass(frozen=True)
class MouthCue:
    start: float
    shape: MouthShape


@dataclass(frozen=True)
class StatusLine:
    kind: str                   # "start", "progress", "success", "failure", "log"
    value: float | None = None  # progress only
    reason: str | None = None   # failure only
    message: str | None = None  # log only


def _clamp01(v: float) -> float:
    if not math.isfinite(v):
        return 0.0
    if v < 0:
        return 0.0
    if v > 1:
        return 1.0
    return v


def parse_status_line(line: str) -> StatusLine | None:
    """Parse one line of rhubarb's --machineReadable stderr stream; None for anything else."""
    line = line.strip()
    if not line.startswith("{"):
        return None
    try:
        obj = json.loads(line)
    except ValueError:
        return None
    if not isinstance(obj, dict) or not isinstance(obj.get("type"), str):
        return None
    kind = obj["type"]
    if kind == "progress":
        try:
            return StatusLine(kind, value=_clamp01(float(obj.get("value", 0.0))))
        except (TypeError, ValueError):
            return None
    if kind == "failure":
        return StatusLine(kind, reason=str(obj.get("reason") or "Unknown error"))
    if kind == "log":
        return StatusLine(kind, message=str(obj.get("message", "")))
    return StatusLine(kind)


def parse_mouth_cues(output: str) -> list[MouthCue]:
    """Extract mouth cues from rhubarb's JSON export. Raises ValueError on malformed output."""
    data = json.loads(output)
    cues = data.get("mouthCues") if isinstance(data, dict) else None
    if not isinstance(cues, list):
        raise ValueError("rhubarb output has no 'mouthCues' list")
    result = []
    for cue in cues:
        try:
            result.append(MouthCue(start=float(cue["start"]), shape=MouthShape(cue["value"])))
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"malformed mouth cue {cue!r}") from e
    return result
