# tests/conftest.py

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from types import SimpleNamespace

import pytest

from dailies_checklist.core.events import EventBus
from dailies_checklist.core.session import ChecklistSession
from dailies_checklist.detectors.orchestrator import DetectionOrchestrator
from dailies_checklist.tasks.reset_scheduler import ResetScheduler
from dailies_checklist.tasks.task_store import ChecklistStore

from .fakes import FakeClock, FakeStateReader, utc


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with the bootstrap.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="dailies-test",
        log_level="DEBUG",
        data_dir=tmp_path,
        state_path=tmp_path / "checklist.json",
        save_debounce_seconds=60.0,
        reset_check_interval_seconds=0.0,
        tick_interval_seconds=1.0,
        max_tasks=256,
        dedupe_window_seconds=5.0,
        roulette_detection=True,
        cactpot_detection=True,
        beast_tribe_detection=True,
        stdin_feed=False,
    )


@pytest.fixture()
def clock() -> FakeClock:
    # Wednesday 2024-01-03 12:00 UTC: between the daily (15:00) and GC (20:00) boundaries.
    return FakeClock(utc(2024, 1, 3, 12, 0))


@pytest.fixture()
def reader() -> FakeStateReader:
    return FakeStateReader()


@pytest.fixture()
def bus() -> EventBus:
    return EventBus()


@pytest.fixture()
def store(tmp_path: Path, clock: FakeClock) -> Iterator[ChecklistStore]:
    """
    Store with a long debounce: tests flush explicitly instead of sleeping.
    """
    s = ChecklistStore(tmp_path / "checklist.json", debounce_seconds=60.0, clock=clock)
    yield s
    s.cancel_pending()


@pytest.fixture()
def session(store: ChecklistStore, bus: EventBus, clock: FakeClock) -> Iterator[ChecklistSession]:
    s = ChecklistSession(
        store=store,
        orchestrator=DetectionOrchestrator(),
        scheduler=ResetScheduler(),
        feed=bus,
        clock=clock,
        reset_check_interval_seconds=0.0,
    )
    s.start()
    yield s
    s.shutdown()
