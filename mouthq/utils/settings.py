# mouthq/utils/settings.py
import json
import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


# Top directory = folder that contains the `mouthq/` package
def _top_dir() -> Path:
    # This file is mouthq/utils/settings.py → parents[2] is the folder above mouthq/
    return Path(__file__).resolve().parents[2]


APP_SETTINGS_FILE = _top_dir() / "mouthq_settings.json"

DEFAULT_SETTINGS = {
    "rhubarb_path": "rhubarb",
    "recognizer": "pocketSphinx",      # "pocketSphinx" (English) or "phonetic"
    "extra_args": "",

    # Animation naming: <prefix><event name><suffix>
    "animation_prefix": "say_",
    "animation_suffix": "",

    # Scheduling / progress
    "progress_step": 0.01,             # smaller progress increments are coalesced
    "idle_poll": 0.5,                  # seconds the idle worker sleeps between queue checks
    "reload_timeout": 10.0,            # max wait for running jobs to cancel before a reload
    "shutdown_timeout": 3.0,

    # Logging
    "log_level": "INFO",
    "log_file": "",                    # empty => console only
}


def settings_path() -> Path:
    if override := os.getenv("MOUTHQ_SETTINGS", "").strip():
        return Path(override).expanduser()
    return APP_SETTINGS_FILE


def load_settings(path: str | Path | None = None) -> dict:
    p = Path(path) if path else settings_path()
    if p.exists():
        try:
            data = json.loads(p.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable settings file %s: %s", p, e)
        else:
            if isinstance(data, dict):
                return {**DEFAULT_SETTINGS, **data}
            logger.warning("Ignoring settings file %s: top level is not an object", p)
    return DEFAULT_SETTINGS.copy()
