# mouthq/parsers/spine_json.py
import json
import threading
from dataclasses import dataclass
from pathlib import Path


class SpineSchemaError(Exception):
    """The document is valid JSON but lacks elements a Spine export must have."""


@dataclass(frozen=True)
class AudioEvent:
    name: str
    audio_file_path: Path | None
    dialog: str | None


def _attachment_names(skin_slots: dict, slot_name: str) -> list[str]:
    attachments = skin_slots.get(slot_name) or {}
    return list(attachments.keys()) if isinstance(attachments, dict) else []


class SpineJson:
    def __init__(self, file_path: Path, data: dict):
        self.file_path = Path(file_path)
        self._data = data
        # animations are written by the worker thread while the foreground may read them
        self._lock = threading.Lock()

        if not isinstance(data, dict):
            raise SpineSchemaError("JSON file does not contain an object at the top level.")
        skeleton = data.get("skeleton")
        if not isinstance(skeleton, dict):
            raise SpineSchemaError("JSON file is corrupted: 'skeleton' section is missing.")

        audio = skeleton.get("audio")
        if not isinstance(audio, str):
            raise SpineSchemaError(
                "JSON file is incomplete: audio path is missing. "
                "Make sure to check 'Nonessential data' when exporting."
            )
        self.audio_directory = (self.file_path.parent / audio).resolve()

        fps = skeleton.get("fps", 30)
        self.frame_rate = float(fps) if isinstance(fps, (int, float)) and fps > 0 else 30.0

        slots = data.get("slots", [])
        if not isinstance(slots, list):
            raise SpineSchemaError("JSON file is corrupted: 'slots' is not a list.")
        self._slots = slots

    @classmethod
    def load(cls, file_path: str | Path) -> "SpineJson":
        """Read and parse a file. Raises FileNotFoundError, ValueError or SpineSchemaError."""
        p = Path(file_path)
        text = p.read_text(encoding="utf-8")
        return cls(p, json.loads(text))

    @property
    def slots(self) -> list[str]:
        return [s["name"] for s in self._slots if isinstance(s, dict) and isinstance(s.get("name"), str)]

    def _skin_slot_maps(self) -> list[dict]:
        skins = self._data.get("skins")
        if isinstance(skins, dict):
            # Spine < 3.8: {skinName: {slotName: {attachmentName: {...}}}}
            return [v for v in skins.values() if isinstance(v, dict)]
        if isinstance(skins, list):
            # Spine 3.8+: [{"name": ..., "attachments": {slotName: {...}}}]
            return [s["attachments"] for s in skins if isinstance(s, dict) and isinstance(s.get("attachments"), dict)]
        return []

    def slot_attachment_names(self, slot_name: str) -> list[str]:
        names: list[str] = []
        for skin_slots in self._skin_slot_maps():
            for name in _attachment_names(skin_slots, slot_name):
                if name not in names:
                    names.append(name)
        return names

    @property
    def audio_events(self) -> list[AudioEvent]:
        events = self._data.get("events") or {}
        if not isinstance(events, dict):
            raise SpineSchemaError("JSON file is corrupted: 'events' is not an object.")
        result = []
        for name, ev in events.items():
            ev = ev if isinstance(ev, dict) else {}
            audio = ev.get("audio")
            dialog = ev.get("string")
            result.append(AudioEvent(
                name=name,
                audio_file_path=(self.audio_directory / audio) if isinstance(audio, str) and audio else None,
                dialog=dialog if isinstance(dialog, str) and dialog.strip() else None,
            ))
        return result

    def has_animation(self, animation_name: str) -> bool:
        with self._lock:
            animations = self._data.get("animations")
            return isinstance(animations, dict) and animation_name in animations

    def create_or_update_animation(self, mouth_cues, event_name: str, animation_name: str, mouth_slot: str, mouth_naming) -> None:
        """Write a mouth-slot attachment timeline plus a start event under `animations`.

        Cue times are snapped down to whole frames; when several cues land on
        the same frame the latest one wins.
        """
        keyframes = {}
        for cue in mouth_cues:
            keyframes[int(cue.start * self.frame_rate + 1e-9)] = cue.shape
        animation = {
            "slots": {
                mouth_slot: {
                    "attachment": [
                        {"time": frame / self.frame_rate, "name": mouth_naming.name_for(shape)}
                        for frame, shape in sorted(keyframes.items())
                    ]
                }
            },
            "events": [{"time": 0.0, "name": event_name, "string": ""}],
        }
        with self._lock:
            animations = self._data.get("animations")
            if not isinstance(animations, dict):
                animations = self._data["animations"] = {}
            animations[animation_name] = animation

    def save(self) -> None:
        with self._lock:
            text = json.dumps(self._data, indent=2)
        self.file_path.write_text(text, encoding="utf-8")
