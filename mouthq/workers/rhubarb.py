# mouthq/workers/rhubarb.py
import logging
import queue
import shlex
import subprocess
import tempfile
import threading
from pathlib import Path

from ..models.job import EventJob
from ..models.source_file import SourceFileModel
from ..parsers.rhubarb_output import parse_mouth_cues, parse_status_line
from .runner import AnimationOutput, JobError, JobErrorKind, ProgressCallback

logger = logging.getLogger(__name__)


def _pump_lines(stream, sink: queue.Queue):
    try:
        for line in iter(stream.readline, ""):
            sink.put(line)
    except ValueError:
        # stream closed under us after the process was terminated
        logger.debug("rhubarb stderr closed while reading")
    finally:
        sink.put(None)


class RhubarbRunner:
    """Runs the rhubarb CLI for one event and writes the result into the Spine file."""

    def __init__(self, settings: dict):
        self.settings = settings

    def build_command(self, source_file: SourceFileModel, job: EventJob, dialog_file: Path | None) -> list[str]:
        cmd = [
            self.settings.get("rhubarb_path", "rhubarb"),
            "--machineReadable",
            "--exportFormat", "json",
            "--extendedShapes", "".join(s.value for s in source_file.extended_shapes),
        ]
        if recognizer := self.settings.get("recognizer", "").strip():
            cmd.extend(["--recognizer", recognizer])
        if dialog_file is not None:
            cmd.extend(["--dialogFile", str(dialog_file)])
        if extra := self.settings.get("extra_args", "").strip():
            cmd.extend(shlex.split(extra))
        cmd.append(str(job.audio_file_path))
        return cmd

    def __call__(self, source_file: SourceFileModel, job: EventJob, on_progress: ProgressCallback,
                 cancel_token: threading.Event) -> AnimationOutput:
        if not source_file.valid:
            raise JobError(JobErrorKind.COMPUTATION_FAILED, "Character file is not valid.")
        if not job.audio_available:
            raise JobError(JobErrorKind.COMPUTATION_FAILED, f"Audio file {job.audio_file_path} does not exist.")
        if cancel_token.is_set():
            raise JobError(JobErrorKind.CANCELLED)

        with tempfile.TemporaryDirectory(prefix="mouthq_") as tmp:
            dialog_file = None
            if job.dialog:
                dialog_file = Path(tmp) / "dialog.txt"
                dialog_file.write_text(job.dialog, encoding="utf-8")
            out_path = Path(tmp) / "cues.json"
            cmd = self.build_command(source_file, job, dialog_file)
            logger.debug("$ %s", " ".join(shlex.quote(c) for c in cmd))
            self._run_process(cmd, out_path, on_progress, cancel_token)
            output = out_path.read_text(encoding="utf-8")

        try:
            cues = parse_mouth_cues(output)
        except ValueError as e:
            raise JobError(JobErrorKind.COMPUTATION_FAILED, f"Unexpected rhubarb output: {e}") from e

        if cancel_token.is_set():
            raise JobError(JobErrorKind.CANCELLED)

        document = source_file.document
        document.create_or_update_animation(
            cues, job.event_name, job.animation_name, source_file.selected_slot, source_file.mouth_naming
        )
        try:
            document.save()
        except OSError as e:
            raise JobError(JobErrorKind.COMPUTATION_FAILED, f"Could not save {document.file_path}: {e}") from e
        on_progress(1.0)
        return AnimationOutput(job.animation_name, cues)

    def _run_process(self, cmd: list[str], out_path: Path, on_progress: ProgressCallback,
                     cancel_token: threading.Event) -> None:
        failure = None
        lines: queue.Queue = queue.Queue()
        try:
            with open(out_path, "w", encoding="utf-8") as out, subprocess.Popen(
                cmd,
                stdout=out,
                stderr=subprocess.PIPE,
                text=True,
                bufsize=1,
            ) as proc:
                reader = threading.Thread(target=_pump_lines, args=(proc.stderr, lines), daemon=True)
                reader.start()
                eof = False
                while True:
                    if cancel_token.is_set():
                        proc.terminate()
                        try:
                            proc.wait(timeout=5)
                        except subprocess.TimeoutExpired:
                            proc.kill()
                        raise JobError(JobErrorKind.CANCELLED)
                    try:
                        line = lines.get(timeout=0.1)
                    except queue.Empty:
                        if eof and proc.poll() is not None:
                            break
                        continue
                    if line is None:
                        eof = True
                        continue
                    if (status := parse_status_line(line)) is None:
                        continue
                    if status.kind == "progress":
                        # never report 100% until the animation is written
                        on_progress(min(status.value, 0.99))
                    elif status.kind == "failure":
                        failure = status.reason
                    elif status.kind == "log" and status.message:
                        logger.debug("rhubarb: %s", status.message)
                returncode = proc.wait()
        except FileNotFoundError as e:
            raise JobError(JobErrorKind.COMPUTATION_FAILED, "rhubarb not found. Check the settings file.") from e

        if failure or returncode != 0:
            raise JobError(JobErrorKind.COMPUTATION_FAILED, failure or f"rhubarb exited with code {returncode}")


def rhubarb_version(settings: dict) -> str | None:
    try:
        out = subprocess.check_output(
            [settings.get("rhubarb_path", "rhubarb"), "--version"],
            stderr=subprocess.STDOUT,
            text=True,
            timeout=10,
        )
    except (OSError, subprocess.SubprocessError):
        return None
    return out.strip() or None
