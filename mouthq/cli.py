# mouthq/cli.py
from pathlib import Path
from typing import List, Optional

import typer
from PySide6.QtCore import QCoreApplication
from rich.console import Console
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table

from .controller import MainModel
from .models.job import JobStatus, status_text
from .utils.log import setup_logging
from .utils.settings import load_settings
from .workers.rhubarb import rhubarb_version

app = typer.Typer(
    add_completion=False,
    help="Batch lip-sync animation for the audio events of a Spine skeleton.",
)
console = Console()


def _qt_app() -> QCoreApplication:
    return QCoreApplication.instance() or QCoreApplication([])


def _settings(settings_file: Optional[Path], rhubarb: Optional[str]) -> dict:
    settings = load_settings(settings_file)
    if rhubarb:
        settings["rhubarb_path"] = rhubarb
    setup_logging(settings.get("log_level", "INFO"), settings.get("log_file") or None)
    return settings


def _load(model: MainModel, file: Path, slot: Optional[str]) -> None:
    if (err := model.load_file(str(file))) is not None:
        console.print(f"[bold red]{err.kind.value}:[/] {err.message}")
        raise typer.Exit(1)
    if slot is not None:
        model.select_slot(slot)


def _describe(model: MainModel) -> None:
    fm = model.file_model
    info = Table(show_header=False, box=None)
    info.add_row("Spine JSON file", fm.path)
    info.add_row("Slots", ", ".join(fm.slots) or "none")
    info.add_row("Mouth slot", fm.selected_slot or "none", f"[red]{fm.slot_error}[/]" if fm.slot_error else "")
    info.add_row("Mouth naming", fm.mouth_naming.display_string)
    shapes = ", ".join(s.value for s in fm.mouth_shapes) or "none"
    info.add_row("Mouth shapes", shapes, f"[red]{fm.mouth_shapes_error}[/]" if fm.mouth_shapes_error else "")
    console.print(info)

    events = Table("Event", "Animation name", "Audio file", "Dialog", "Status")
    for job in model.jobs:
        audio = job.display_file_path if job.audio_available else f"[red]{job.display_file_path} (missing)[/]"
        events.add_row(job.event_name, job.animation_name, audio, job.dialog or "", status_text(job))
    if not model.jobs:
        console.print("There are no events with associated audio files.")
    else:
        console.print(events)


@app.command("inspect")
def cmd_inspect(
    file: Path = typer.Argument(..., help="Spine JSON file"),
    slot: Optional[str] = typer.Option(None, "--slot", help="Mouth slot (guessed when omitted)"),
    prefix: Optional[str] = typer.Option(None, "--prefix"),
    suffix: Optional[str] = typer.Option(None, "--suffix"),
    settings_file: Optional[Path] = typer.Option(None, "--settings", help="Settings JSON file"),
):
    """Show what the file offers: slots, mouth naming, shapes and audio events."""
    settings = _settings(settings_file, None)
    _qt_app()
    model = MainModel(settings)
    _load(model, file, slot)
    if prefix is not None or suffix is not None:
        model.set_naming(
            prefix if prefix is not None else model.animation_prefix,
            suffix if suffix is not None else model.animation_suffix,
        )
    _describe(model)
    if not model.file_model.valid:
        raise typer.Exit(2)


@app.command("animate")
def cmd_animate(
    file: Path = typer.Argument(..., help="Spine JSON file"),
    events: Optional[List[str]] = typer.Option(None, "--event", "-e", help="Only these events (repeatable)"),
    slot: Optional[str] = typer.Option(None, "--slot", help="Mouth slot (guessed when omitted)"),
    prefix: Optional[str] = typer.Option(None, "--prefix"),
    suffix: Optional[str] = typer.Option(None, "--suffix"),
    skip_done: bool = typer.Option(False, "--skip-done", help="Do not re-animate events that already have an animation"),
    rhubarb: Optional[str] = typer.Option(None, "--rhubarb", help="Path to the rhubarb executable"),
    settings_file: Optional[Path] = typer.Option(None, "--settings", help="Settings JSON file"),
):
    """Animate audio events one at a time and write the results into the Spine file."""
    settings = _settings(settings_file, rhubarb)
    _qt_app()
    model = MainModel(settings)
    _load(model, file, slot)
    if prefix is not None or suffix is not None:
        model.set_naming(
            prefix if prefix is not None else model.animation_prefix,
            suffix if suffix is not None else model.animation_suffix,
        )
    fm = model.file_model
    if not fm.valid:
        console.print(f"[bold red]Cannot animate:[/] {fm.slot_error or fm.mouth_shapes_error or 'invalid file'}")
        raise typer.Exit(2)

    jobs = {j.job_id: j for j in model.jobs}
    if unknown := sorted(set(events or []) - set(jobs)):
        console.print(f"[bold red]Unknown event(s):[/] {', '.join(unknown)}")
        raise typer.Exit(2)
    targets = [j for j in jobs.values() if not events or j.job_id in events]
    if skip_done:
        targets = [j for j in targets if j.status is not JobStatus.DONE]
    if version := rhubarb_version(settings):
        console.print(f"Using {version}")

    model.start()
    submitted = [j.job_id for j in targets if model.submit_job(j.job_id)]
    for j in targets:
        if j.job_id not in submitted:
            console.print(f"[yellow]Skipping {j.event_name}: audio file {j.audio_file_path} is missing[/]")

    try:
        with Progress(TextColumn("{task.description}"), BarColumn(), TextColumn("{task.fields[state]}"),
                      console=console) as progress:
            tasks = {jid: progress.add_task(jid, total=1.0, state="Pending") for jid in submitted}

            def refresh():
                for jid, task in tasks.items():
                    job = model.store.get(jid)
                    done = 1.0 if job.status is JobStatus.DONE else (job.progress or 0.0)
                    progress.update(task, completed=done, state=status_text(job))

            try:
                while not model.store.wait_idle(0.1):
                    refresh()
            except KeyboardInterrupt:
                console.print("Canceling…")
                model.cancel_all()
                model.store.wait_idle(float(settings.get("reload_timeout", 10.0)))
            refresh()
    finally:
        model.shutdown()

    final = [model.store.get(jid) for jid in submitted]
    failed = [j for j in final if j.status is not JobStatus.DONE]
    for job in failed:
        console.print(f"[red]{job.event_name}:[/] {job.error or 'canceled'}")
    console.print(f"{len(final) - len(failed)}/{len(final)} animation(s) written to {fm.path}")
    if failed:
        raise typer.Exit(1)


def main():
    app()


if __name__ == "__main__":
    main()
