# src/dailies_checklist/detectors/beast_tribe.py

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from ..core.events import EventKind, SessionEvent
from ..core.ports import EventFeed, SessionStateReader
from ..tasks.task_models import DetectionLimitation, LimitationKind, utc_now
from .base import DEFAULT_DEDUPE_WINDOW_SECONDS, BaseDetector

logger = logging.getLogger(__name__)

BEAST_TRIBE_QUESTS = "beast_tribe_quests"
MAX_DAILY_ALLOWANCES = 12


class BeastTribeDetector(BaseDetector):
    """
    Tracks the shared pool of 12 daily tribal quest allowances.

    Each completed tribal quest uses one allowance. On session start the
    remaining allowances are read from session state (if it is safe to read),
    which also catches quests done before the tracker started.
    """

    def __init__(
        self,
        *,
        feed: EventFeed,
        reader: SessionStateReader | None = None,
        dedupe_window_seconds: float = DEFAULT_DEDUPE_WINDOW_SECONDS,
        clock: Callable[[], datetime] = utc_now,
        enabled: bool = True,
    ) -> None:
        super().__init__(
            "beast_tribe",
            {BEAST_TRIBE_QUESTS: MAX_DAILY_ALLOWANCES},
            feed=feed,
            guard=reader,
            dedupe_window_seconds=dedupe_window_seconds,
            clock=clock,
            enabled=enabled,
        )
        self._reader = reader

    def _on_initialize(self) -> None:
        self._subscribe(EventKind.ACTIVITY_COMPLETED, self._on_activity_completed)
        self._subscribe(EventKind.SESSION_START, self._on_session_start)

    def _on_activity_completed(self, event: SessionEvent) -> None:
        if event.payload.get("activity") != "beast_tribe_quest":
            return
        self._record(BEAST_TRIBE_QUESTS, event.identity(), event.at)

    def _on_session_start(self, event: SessionEvent) -> None:
        self.sync_allowances()

    def sync_allowances(self) -> bool:
        """Re-read remaining allowances from session state. Returns True if progress changed."""
        if self._reader is None:
            return False
        if self._reader.in_transition():
            logger.debug("Allowances unreadable during transition")
            return False

        remaining = self._reader.beast_tribe_allowances_remaining()
        if remaining is None:
            logger.debug("Allowances not available from session state")
            return False

        remaining = min(max(0, int(remaining)), MAX_DAILY_ALLOWANCES)
        return self._set_progress(BEAST_TRIBE_QUESTS, MAX_DAILY_ALLOWANCES - remaining)

    def allowances_remaining(self) -> int:
        return MAX_DAILY_ALLOWANCES - self._progress[BEAST_TRIBE_QUESTS]

    def limitations(self) -> list[DetectionLimitation]:
        return [
            DetectionLimitation(
                BEAST_TRIBE_QUESTS,
                LimitationKind.PARTIAL,
                "Allowances are shared by all tribes; only the total used is tracked.",
            ),
        ]
