# src/dailies_checklist/connectors/jsonl_feed.py

from __future__ import annotations

"""
JSON-lines event feed.

Lets the host session (or a recorded log) drive the checklist over a pipe.
One object per line:

    {"kind": "activity_completed", "payload": {"activity": "duty", "roulette_id": 5}}
    {"kind": "session_start", "payload": {"owner_id": "abc"}, "at": "2024-01-02T15:00:00+00:00"}
    {"kind": "state", "in_transition": true}
    {"kind": "state", "roulette_id": 3, "beast_tribe_allowances_remaining": 7}

"state" lines update the ReplayStateReader instead of publishing an event.
Missing "at" means now. Bad lines are logged and skipped.
"""

import asyncio
import json
import logging
import sys
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, TextIO

from ..core.events import EventBus, EventKind, SessionEvent
from ..tasks.reset_scheduler import as_utc
from ..tasks.task_models import utc_now

logger = logging.getLogger(__name__)

STATE_KIND = "state"


class FeedLineError(ValueError):
    pass


@dataclass(slots=True)
class ReplayStateReader:
    """SessionStateReader backed by values pushed through "state" lines."""

    transition: bool = False
    roulette_id: int = 0
    allowances_remaining: int | None = None

    def in_transition(self) -> bool:
        return self.transition

    def content_roulette_id(self) -> int:
        return self.roulette_id

    def beast_tribe_allowances_remaining(self) -> int | None:
        return self.allowances_remaining

    def update(self, data: dict[str, Any]) -> None:
        if "in_transition" in data:
            self.transition = bool(data["in_transition"])
        if "roulette_id" in data:
            self.roulette_id = int(data["roulette_id"] or 0)
        if "beast_tribe_allowances_remaining" in data:
            raw = data["beast_tribe_allowances_remaining"]
            self.allowances_remaining = None if raw is None else int(raw)


def parse_line(line: str, *, clock: Callable[[], datetime] = utc_now) -> dict[str, Any] | SessionEvent | None:
    """
    Parse one feed line.

    Returns None for blank lines, the raw dict for "state" lines, a SessionEvent otherwise.
    Raises FeedLineError for anything malformed.
    """
    line = line.strip()
    if not line:
        return None

    try:
        data = json.loads(line)
    except ValueError as e:
        raise FeedLineError(f"not JSON: {e}") from e
    if not isinstance(data, dict):
        raise FeedLineError("line is not a JSON object")

    kind_raw = data.get("kind")
    if kind_raw == STATE_KIND:
        return data
    try:
        kind = EventKind(kind_raw)
    except ValueError as e:
        raise FeedLineError(f"unknown kind {kind_raw!r}") from e

    payload = data.get("payload") or {}
    if not isinstance(payload, dict):
        raise FeedLineError("payload is not an object")

    at_raw = data.get("at")
    if at_raw is None:
        at = clock()
    else:
        try:
            at = as_utc(datetime.fromisoformat(str(at_raw)))
        except ValueError as e:
            raise FeedLineError(f"bad timestamp {at_raw!r}") from e

    event_id = data.get("event_id")
    return SessionEvent(
        kind=kind,
        at=at,
        payload=payload,
        event_id=str(event_id) if event_id is not None else None,
    )


class JsonlEventFeed:
    def __init__(
        self,
        bus: EventBus,
        reader: ReplayStateReader,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.bus = bus
        self.reader = reader
        self._clock = clock
        self.lines_seen = 0
        self.lines_rejected = 0

    def handle_line(self, line: str) -> SessionEvent | None:
        """Parse and dispatch one line. Returns the published event, if any."""
        self.lines_seen += 1
        try:
            parsed = parse_line(line, clock=self._clock)
            if parsed is None:
                return None
            if isinstance(parsed, dict):
                self.reader.update(parsed)
                logger.debug("Session state updated: %s", self.reader)
                return None
        except (FeedLineError, TypeError, ValueError) as e:
            self.lines_rejected += 1
            logger.warning("Rejected feed line %d: %s", self.lines_seen, e)
            return None

        self.bus.publish(parsed)
        return parsed


async def run_stream_feed(feed: JsonlEventFeed, stream: TextIO | None = None) -> None:
    """
    Read lines from `stream` (stdin by default) in a daemon thread; dispatch on the loop thread.

    Returns at EOF. To stop earlier, cancel the coroutine/task.
    """
    stream = stream or sys.stdin
    loop = asyncio.get_running_loop()
    lines: asyncio.Queue[str] = asyncio.Queue()

    def _reader() -> None:
        try:
            for raw in stream:
                loop.call_soon_threadsafe(lines.put_nowait, raw)
        except (OSError, ValueError):
            logger.exception("Event feed read failed")
        except RuntimeError:
            # Loop already closed during shutdown.
            return
        try:
            loop.call_soon_threadsafe(lines.put_nowait, "")
        except RuntimeError:
            return

    # Daemon: a blocked readline must not keep the process alive at exit.
    threading.Thread(target=_reader, name="event-feed", daemon=True).start()
    logger.info("Reading JSON-lines events from %s", getattr(stream, "name", stream))

    while True:
        line = await lines.get()
        if not line:
            logger.info("Event feed reached EOF after %d lines", feed.lines_seen)
            return
        feed.handle_line(line)
