# src/dailies_checklist/detectors/cactpot.py

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from ..core.events import EventKind, SessionEvent
from ..core.ports import EventFeed, TransitionSafety
from ..tasks.task_models import DetectionLimitation, LimitationKind, utc_now
from .base import DEFAULT_DEDUPE_WINDOW_SECONDS, BaseDetector

logger = logging.getLogger(__name__)

GOLD_SAUCER_TERRITORY_ID = 144

MINI_CACTPOT = "mini_cactpot"
JUMBO_CACTPOT = "jumbo_cactpot"
MINI_CACTPOT_TICKETS = 3
JUMBO_CACTPOT_TICKETS = 3


class CactpotDetector(BaseDetector):
    """Counts Mini Cactpot (daily) and Jumbo Cactpot (weekly, Saturday drawing) tickets."""

    def __init__(
        self,
        *,
        feed: EventFeed,
        guard: TransitionSafety | None = None,
        dedupe_window_seconds: float = DEFAULT_DEDUPE_WINDOW_SECONDS,
        clock: Callable[[], datetime] = utc_now,
        enabled: bool = True,
    ) -> None:
        super().__init__(
            "cactpot",
            {MINI_CACTPOT: MINI_CACTPOT_TICKETS, JUMBO_CACTPOT: JUMBO_CACTPOT_TICKETS},
            feed=feed,
            guard=guard,
            dedupe_window_seconds=dedupe_window_seconds,
            clock=clock,
            enabled=enabled,
        )
        self.in_gold_saucer = False

    def _on_initialize(self) -> None:
        self._subscribe(EventKind.ACTIVITY_COMPLETED, self._on_activity_completed)
        self._subscribe(EventKind.CONTEXT_CHANGE, self._on_context_change)

    def _on_context_change(self, event: SessionEvent) -> None:
        territory = event.payload.get("territory_id")
        entered = territory is not None and int(territory) == GOLD_SAUCER_TERRITORY_ID
        if entered and not self.in_gold_saucer:
            logger.debug(
                "Entered Gold Saucer (mini %d/%d, jumbo %d/%d)",
                self._progress[MINI_CACTPOT],
                MINI_CACTPOT_TICKETS,
                self._progress[JUMBO_CACTPOT],
                JUMBO_CACTPOT_TICKETS,
            )
        self.in_gold_saucer = entered

    def _on_activity_completed(self, event: SessionEvent) -> None:
        activity = event.payload.get("activity")
        if activity not in (MINI_CACTPOT, JUMBO_CACTPOT):
            return
        self._record(activity, event.identity(), event.at)

    def tickets_used(self, task_id: str) -> int:
        """Tickets used this period, or -1 for a task this detector doesn't own."""
        return self._progress.get(task_id, -1)

    def limitations(self) -> list[DetectionLimitation]:
        return [
            DetectionLimitation(
                MINI_CACTPOT,
                LimitationKind.NO_INITIAL_STATE,
                "Tickets scratched before the tracker started aren't counted.",
            ),
            DetectionLimitation(
                JUMBO_CACTPOT,
                LimitationKind.PARTIAL,
                "Ticket purchases are counted; the result of the Saturday drawing is not.",
            ),
        ]
