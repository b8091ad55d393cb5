# src/dailies_checklist/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures the local (gitignored) data directory exists,
- wires store/scheduler/orchestrator/feed into a ChecklistSession,
- registers the detectors enabled in settings.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..config import Settings, get_settings
from ..connectors.jsonl_feed import JsonlEventFeed, ReplayStateReader
from ..core.events import EventBus
from ..core.ports import TaskDetector
from ..core.session import ChecklistSession
from ..detectors.beast_tribe import BeastTribeDetector
from ..detectors.cactpot import CactpotDetector
from ..detectors.orchestrator import DetectionOrchestrator, DetectorRegistrationError
from ..detectors.roulette import RouletteDetector
from ..tasks.reset_scheduler import ResetScheduler
from ..tasks.task_store import ChecklistStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class App:
    settings: Settings
    bus: EventBus
    reader: ReplayStateReader
    feed: JsonlEventFeed
    session: ChecklistSession


def _ensure_local_dirs(settings: Settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.state_path.parent.mkdir(parents=True, exist_ok=True)


def build_detectors(settings: Settings, bus: EventBus, reader: ReplayStateReader) -> list[tuple[TaskDetector, bool]]:
    """Every known detector with its feature flag. Disabled ones are registered muted."""
    window = settings.dedupe_window_seconds
    return [
        (RouletteDetector(feed=bus, reader=reader, dedupe_window_seconds=window), settings.roulette_detection),
        (CactpotDetector(feed=bus, guard=reader, dedupe_window_seconds=window), settings.cactpot_detection),
        (BeastTribeDetector(feed=bus, reader=reader, dedupe_window_seconds=window), settings.beast_tribe_detection),
    ]


def create_app(*, settings: Settings | None = None) -> App:
    """
    Build and start the session.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    bus = EventBus()
    reader = ReplayStateReader()
    store = ChecklistStore(
        settings.state_path,
        debounce_seconds=settings.save_debounce_seconds,
        max_tasks=settings.max_tasks,
    )
    session = ChecklistSession(
        store=store,
        orchestrator=DetectionOrchestrator(),
        scheduler=ResetScheduler(),
        feed=bus,
        reset_check_interval_seconds=settings.reset_check_interval_seconds,
    )
    session.start()

    for detector, enabled in build_detectors(settings, bus, reader):
        try:
            session.register_detector(detector, enabled=enabled)
        except DetectorRegistrationError:
            # Already logged with the traceback; the rest keep working.
            logger.error("Detector %s unavailable this session", detector.name)

    return App(
        settings=settings,
        bus=bus,
        reader=reader,
        feed=JsonlEventFeed(bus, reader),
        session=session,
    )
