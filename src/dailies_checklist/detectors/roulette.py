# src/dailies_checklist/detectors/roulette.py

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from ..core.events import EventKind, SessionEvent
from ..core.ports import EventFeed, SessionStateReader
from ..tasks.task_models import DetectionLimitation, LimitationKind, utc_now
from .base import DEFAULT_DEDUPE_WINDOW_SECONDS, BaseDetector

logger = logging.getLogger(__name__)

# Host roulette id -> task id. 0 means "not a roulette".
ROULETTE_TASKS: dict[int, str] = {
    1: "roulette_leveling",
    2: "roulette_5060708090",
    3: "roulette_msq",
    4: "roulette_guildhests",
    5: "roulette_expert",
    6: "roulette_trials",
    7: "roulette_alliance",
    8: "roulette_normal_raid",
    9: "roulette_mentor",
    17: "roulette_frontline",
}


class RouletteDetector(BaseDetector):
    """
    Completes a roulette task when a roulette duty is completed.

    The roulette id comes from the event payload when the host provides it,
    otherwise it is read from session state (only outside transitions).
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
            "roulette",
            {task_id: 1 for task_id in ROULETTE_TASKS.values()},
            feed=feed,
            guard=reader,
            dedupe_window_seconds=dedupe_window_seconds,
            clock=clock,
            enabled=enabled,
        )
        self._reader = reader

    def _on_initialize(self) -> None:
        self._subscribe(EventKind.ACTIVITY_COMPLETED, self._on_activity_completed)

    def _on_activity_completed(self, event: SessionEvent) -> None:
        if event.payload.get("activity") != "duty":
            return

        roulette_id = event.payload.get("roulette_id")
        if roulette_id is None:
            roulette_id = self._read_roulette_id()
            if roulette_id is None:
                return

        roulette_id = int(roulette_id)
        if roulette_id == 0:
            logger.debug("Duty completed, not a roulette")
            return

        task_id = ROULETTE_TASKS.get(roulette_id)
        if task_id is None:
            logger.warning("Unknown roulette id %s; no mapping", roulette_id)
            return

        logger.debug("Roulette %s completed -> %s", roulette_id, task_id)
        self._record(task_id, event.identity(), event.at)

    def _read_roulette_id(self) -> int | None:
        if self._reader is None:
            logger.debug("No roulette id in event and no state reader")
            return None
        if self._reader.in_transition():
            logger.info("Roulette id unreadable during transition; duty not counted")
            return None
        return self._reader.content_roulette_id()

    def limitations(self) -> list[DetectionLimitation]:
        return [
            DetectionLimitation(
                None,
                LimitationKind.NO_INITIAL_STATE,
                "Roulettes finished before the tracker started can't be detected; toggle them manually.",
            ),
            DetectionLimitation(
                None,
                LimitationKind.SESSION_ONLY,
                "Only duties completed while the tracker runs are counted.",
            ),
        ]
