# src/dailies_checklist/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path

PACKAGE = "dailies_checklist"

# Console floor per logger prefix; longest match wins. Anything else is ERROR+.
_CONSOLE_FLOORS: dict[str, int] = {
    PACKAGE: logging.NOTSET,
    f"{PACKAGE}.detectors": logging.INFO,
    f"{PACKAGE}.connectors.jsonl_feed": logging.INFO,
}


class _ChecklistConsoleFilter(logging.Filter):
    """Drops per-event chatter and third-party noise from the console only."""

    def filter(self, record: logging.LogRecord) -> bool:
        floor = logging.ERROR
        matched = ""
        for prefix, level in _CONSOLE_FLOORS.items():
            hit = record.name == prefix or record.name.startswith(prefix + ".")
            if hit and len(prefix) > len(matched):
                matched, floor = prefix, level
        return record.levelno >= floor


def level_from_name(name: str | None, default: int = logging.INFO) -> int:
    """'debug' / 'WARNING' / '10' -> logging level; unknown -> default."""
    raw = (name or "").strip().upper()
    if raw.isdigit():
        return int(raw)
    level = logging.getLevelName(raw)
    return level if isinstance(level, int) else default


def setup_logging(
    *,
    log_dir: str | Path = ".local/dailies",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
    log_name: str = "dailies",
) -> Path:
    """
    Console on stderr (filtered) plus a full log file in the data dir.

    Replaces any handlers already on the root logger, so call it once from the
    entry point. Returns the log file path.
    """
    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    log_file = directory / f"{log_name}.log"

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(min(console_level, file_level))

    formatter = logging.Formatter(
        "%(asctime)s %(levelname)-7s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    file_formatter = logging.Formatter(
        "%(asctime)s.%(msecs)03d %(levelname)s %(name)s [%(threadName)s]: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(formatter)
    console.addFilter(_ChecklistConsoleFilter())
    root.addHandler(console)

    # Debounced saves run on timer threads; the thread name shows up here.
    to_file = logging.FileHandler(log_file, encoding="utf-8")
    to_file.setLevel(file_level)
    to_file.setFormatter(file_formatter)
    root.addHandler(to_file)

    logging.captureWarnings(True)
    return log_file
