# src/dailies_checklist/core/events.py

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from .ports import EventHandler

logger = logging.getLogger(__name__)


class EventKind(StrEnum):
    SESSION_START = "session_start"
    SESSION_END = "session_end"
    CONTEXT_CHANGE = "context_change"
    ACTIVITY_COMPLETED = "activity_completed"
    TICK = "tick"


@dataclass(slots=True, frozen=True)
class SessionEvent:
    """
    One signal from the host session.

    payload conventions:
    - session_start: {"owner_id": str}
    - context_change: {"territory_id": int}
    - activity_completed: {"activity": "duty" | "mini_cactpot" | "jumbo_cactpot"
      | "beast_tribe_quest", "roulette_id": int (duty only, optional)}
    - tick: {}

    event_id is the host's stable identity for the real-world event, when it has
    one; detectors dedupe on it within a short window.
    """

    kind: EventKind
    at: datetime
    payload: dict[str, Any] = field(default_factory=dict)
    event_id: str | None = None

    def identity(self) -> str:
        if self.event_id:
            return self.event_id
        # No host id: the same real-world event is re-delivered with the same timestamp.
        activity = self.payload.get("activity", "")
        return f"{self.kind.value}:{activity}:{self.at.isoformat()}"


@dataclass(slots=True, frozen=True)
class _Subscription:
    token: int
    kind: str
    handler: EventHandler


class EventBus:
    """
    In-process EventFeed. Synchronous dispatch on the publishing context.

    A failing handler is logged and skipped; the rest still run.
    """

    def __init__(self) -> None:
        self._subs: dict[str, list[_Subscription]] = {}
        self._tokens = itertools.count(1)

    def subscribe(self, kind: str, handler: EventHandler) -> _Subscription:
        sub = _Subscription(token=next(self._tokens), kind=str(kind), handler=handler)
        self._subs.setdefault(sub.kind, []).append(sub)
        return sub

    def unsubscribe(self, handle: _Subscription) -> None:
        subs = self._subs.get(handle.kind)
        if not subs or handle not in subs:
            logger.debug("unsubscribe: unknown handle token=%s kind=%s", handle.token, handle.kind)
            return
        subs.remove(handle)

    def publish(self, event: SessionEvent) -> int:
        """Dispatch to every handler of event.kind. Returns how many ran without error."""
        ok = 0
        # Copy: handlers may unsubscribe while we iterate.
        for sub in list(self._subs.get(event.kind.value, ())):
            try:
                sub.handler(event)
                ok += 1
            except Exception:
                logger.exception("event handler failed kind=%s token=%s", event.kind.value, sub.token)
        return ok

    def subscriber_count(self, kind: str | None = None) -> int:
        if kind is not None:
            return len(self._subs.get(str(kind), ()))
        return sum(len(v) for v in self._subs.values())
