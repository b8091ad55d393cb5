# src/dailies_checklist/connectors/host_clock.py

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime

from ..core.events import EventBus, EventKind, SessionEvent
from ..tasks.task_models import utc_now

logger = logging.getLogger(__name__)


async def run_host_ticks(
    bus: EventBus,
    *,
    interval_seconds: float = 1.0,
    clock: Callable[[], datetime] = utc_now,
) -> None:
    """
    Publish a TICK event every interval_seconds on the loop thread.

    To stop, cancel the coroutine/task.
    """
    sleep_s = max(0.05, float(interval_seconds))
    logger.debug("Host ticks every %.2fs", sleep_s)

    while True:
        try:
            bus.publish(SessionEvent(EventKind.TICK, clock()))
        except Exception:
            logger.exception("tick publish failed")
        await asyncio.sleep(sleep_s)
