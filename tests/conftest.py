import json
import sys
import textwrap
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import pytest
from PySide6.QtCore import QCoreApplication

from mouthq.workers.runner import AnimationOutput, JobError, JobErrorKind

BASIC_MOUTHS = ("mouth_A", "mouth_B", "mouth_C", "mouth_D", "mouth_E", "mouth_F")


@pytest.fixture(scope="session", autouse=True)
def qapp():
    return QCoreApplication.instance() or QCoreApplication([])


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def spine_file(tmp_path: Path) -> Callable[..., Path]:
    """Write a minimal Spine JSON export plus its audio files.

    Usage:
        path = spine_file(events={"hi": {"audio": "hi.wav"}})
    """

    def writer(
        slots=("body", "mouth"),
        mouth_slot="mouth",
        mouth_names=BASIC_MOUTHS + ("mouth_X",),
        events=None,
        audio_files=None,
        animations=None,
        legacy_skins=False,
        name="character.json",
        skeleton=None,
    ) -> Path:
        if events is None:
            events = {
                "hello": {"audio": "hello.wav", "string": "Hello there"},
                "bye": {"audio": "bye.wav"},
                "footstep": {"int": 3},
            }
        if audio_files is None:
            audio_files = [e["audio"] for e in events.values() if "audio" in e]
        audio_dir = tmp_path / "audio"
        audio_dir.mkdir(exist_ok=True)
        for f in audio_files:
            (audio_dir / f).write_bytes(b"RIFF")

        attachments = {mouth_slot: {n: {"width": 10, "height": 10} for n in mouth_names}}
        if legacy_skins:
            skins = {"default": attachments}
        else:
            skins = [{"name": "default", "attachments": attachments}]
        data = {
            "skeleton": skeleton if skeleton is not None else {"spine": "4.1", "fps": 30, "audio": "./audio"},
            "bones": [{"name": "root"}],
            "slots": [{"name": s, "bone": "root"} for s in slots],
            "skins": skins,
            "events": events,
        }
        if animations is not None:
            data["animations"] = animations
        path = tmp_path / name
        path.write_text(json.dumps(data), encoding="utf-8")
        return path

    return writer


class ScriptedRunner:
    """Stand-in for rhubarb: emits `steps` progress values, optionally held at a gate."""

    def __init__(self, steps: int = 4, delay: float = 0.005, fail: dict | None = None):
        self.steps = steps
        self.delay = delay
        self.fail = fail or {}
        self.gates: dict[str, threading.Event] = {}
        self.started: list[str] = []
        self.finished: list[str] = []
        self._lock = threading.Lock()

    def hold(self, job_id: str) -> threading.Event:
        gate = self.gates[job_id] = threading.Event()
        return gate

    def __call__(self, source_file, job, on_progress, cancel_token):
        with self._lock:
            self.started.append(job.job_id)
        gate = self.gates.get(job.job_id)
        for i in range(1, self.steps + 1):
            if cancel_token.is_set():
                raise JobError(JobErrorKind.CANCELLED)
            if gate is not None and i == 2:
                while not gate.wait(0.01):
                    if cancel_token.is_set():
                        raise JobError(JobErrorKind.CANCELLED)
            on_progress(i / self.steps)
            time.sleep(self.delay)
        if job.job_id in self.fail:
            raise self.fail[job.job_id]
        with self._lock:
            self.finished.append(job.job_id)
        return AnimationOutput(job.animation_name)


@pytest.fixture
def runner() -> ScriptedRunner:
    return ScriptedRunner()


FAKE_RHUBARB = """\
    import json, os, sys, time

    if sys.argv[1:] == ["--version"]:
        print("Rhubarb Lip Sync version 1.13.0")
        sys.exit(0)
    with open(os.environ["FAKE_RHUBARB_ARGS"], "w") as f:
        json.dump(sys.argv[1:], f)
    mode = os.environ.get("FAKE_RHUBARB_MODE", "ok")

    def status(**kw):
        sys.stderr.write(json.dumps(kw) + "\\n")
        sys.stderr.flush()

    status(type="start", file=sys.argv[-1])
    if mode == "slow":
        v = 0.0
        while True:
            v = min(v + 0.01, 0.9)
            status(type="progress", value=v)
            time.sleep(0.02)
    status(type="log", level="Info", message="recognizing")
    status(type="progress", value=0.5)
    if mode == "fail":
        status(type="failure", reason="Error processing file: unsupported format")
        sys.exit(1)
    status(type="progress", value=1.0)
    print(json.dumps({"metadata": {"duration": 0.5}, "mouthCues": [
        {"start": 0.0, "end": 0.1, "value": "X"},
        {"start": 0.1, "end": 0.3, "value": "B"},
        {"start": 0.3, "end": 0.5, "value": "X"},
    ]}))
    status(type="success", file=sys.argv[-1])
"""


@dataclass
class FakeRhubarb:
    path: Path
    args_file: Path

    def last_args(self) -> list[str]:
        return json.loads(self.args_file.read_text(encoding="utf-8"))


@pytest.fixture
def fake_rhubarb(tmp_path, monkeypatch) -> FakeRhubarb:
    """An executable stand-in for rhubarb; FAKE_RHUBARB_MODE selects ok, fail or slow."""
    script = tmp_path / "bin" / "rhubarb"
    script.parent.mkdir()
    script.write_text(f"#!{sys.executable}\n" + textwrap.dedent(FAKE_RHUBARB), encoding="utf-8")
    script.chmod(0o755)
    args_file = tmp_path / "rhubarb_args.json"
    monkeypatch.setenv("FAKE_RHUBARB_ARGS", str(args_file))
    return FakeRhubarb(script, args_file)
