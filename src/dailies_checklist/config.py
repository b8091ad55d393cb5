# src/dailies_checklist/config.py

"""Checklist settings, read once from DAILIES_* environment variables.

A `.env` in the working directory is loaded first (existing env wins).
Blank or malformed values fall back to the defaults below; numbers are clamped
to their minimum instead of failing.
"""

from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

from dotenv import load_dotenv

ENV_PREFIX = "DAILIES_"
DEFAULT_DATA_DIR = Path(".local/dailies")
STATE_FILE_NAME = "checklist.json"

_TRUTHY = frozenset({"1", "true", "yes", "y", "on"})
_FALSY = frozenset({"0", "false", "no", "n", "off"})

N = TypeVar("N", int, float)

load_dotenv(override=False)


def _raw(key: str) -> str | None:
    """Stripped value of DAILIES_<key>, or None when unset/blank."""
    value = os.getenv(ENV_PREFIX + key)
    if value is None or not value.strip():
        return None
    return value.strip()


def _text(key: str, default: str) -> str:
    return _raw(key) or default


def _flag(key: str, default: bool) -> bool:
    value = _raw(key)
    if value is None:
        return default
    lowered = value.lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    return default


def _number(key: str, default: N, cast: Callable[[str], N], minimum: N) -> N:
    value = _raw(key)
    if value is None:
        return default
    try:
        parsed = cast(value)
    except ValueError:
        return default
    return max(minimum, parsed)


def _path(key: str, default: Path) -> Path:
    value = _raw(key)
    return default if value is None else Path(value).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    app_name: str
    log_level: str

    # checklist.json and the log file live under data_dir
    data_dir: Path
    state_path: Path

    save_debounce_seconds: float
    reset_check_interval_seconds: float
    tick_interval_seconds: float
    max_tasks: int

    dedupe_window_seconds: float
    roulette_detection: bool
    cactpot_detection: bool
    beast_tribe_detection: bool

    # CLI replays JSON-lines session events from stdin
    stdin_feed: bool

    @staticmethod
    def from_env() -> Settings:
        data_dir = _path("DATA_DIR", DEFAULT_DATA_DIR)
        return Settings(
            app_name=_text("APP_NAME", "dailies"),
            log_level=_text("LOG_LEVEL", "INFO"),
            data_dir=data_dir,
            state_path=_path("STATE_PATH", data_dir / STATE_FILE_NAME),
            save_debounce_seconds=_number("SAVE_DEBOUNCE_SECONDS", 2.0, float, 0.0),
            reset_check_interval_seconds=_number("RESET_CHECK_INTERVAL_SECONDS", 1.0, float, 0.0),
            tick_interval_seconds=_number("TICK_INTERVAL_SECONDS", 1.0, float, 0.05),
            max_tasks=_number("MAX_TASKS", 256, int, 1),
            dedupe_window_seconds=_number("DEDUPE_WINDOW_SECONDS", 5.0, float, 0.0),
            roulette_detection=_flag("ROULETTE_DETECTION", True),
            cactpot_detection=_flag("CACTPOT_DETECTION", True),
            beast_tribe_detection=_flag("BEAST_TRIBE_DETECTION", True),
            stdin_feed=_flag("STDIN_FEED", True),
        )


_settings: Settings | None = None


def get_settings() -> Settings:
    """Process-wide settings, built on first use."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
