# tests/test_task_store.py

from __future__ import annotations

import json
import logging
import threading
import time
from pathlib import Path

import pytest

from dailies_checklist.tasks import task_api
from dailies_checklist.tasks import task_store as task_store_module
from dailies_checklist.tasks.task_catalog import all_task_ids, default_state, dedicated_cadences
from dailies_checklist.tasks.task_models import (
    EPOCH,
    ChecklistTask,
    DetectionMode,
    TaskCategory,
)
from dailies_checklist.tasks.task_store import CURRENT_SCHEMA_VERSION, ChecklistStore

from .fakes import FakeClock, utc


class RecordingStore(ChecklistStore):
    """Counts physical writes; can hold a write open until released."""

    def __init__(self, *args, hold: bool = False, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.writes: list[dict] = []
        self.write_started = threading.Event()
        self.write_done = threading.Event()
        self.release = threading.Event()
        if not hold:
            self.release.set()

    def _write_document(self, doc: dict) -> None:
        self.write_started.set()
        assert self.release.wait(timeout=5.0)
        self.writes.append(doc)
        super()._write_document(doc)
        self.write_done.set()


def _write_json(path: Path, doc) -> None:
    path.write_text(json.dumps(doc), "utf-8")


def _sample_state(clock: FakeClock):
    state = default_state(utc(2024, 1, 2, 15, 0))
    state.owner_id = "owner-1"

    task_api.set_task_completed(state, "roulette_expert", True, now=utc(2024, 1, 3, 10, 15, 30, 123456))
    task_api.apply_detection(state, "mini_cactpot", False, progress=2, now=utc(2024, 1, 3, 11, 0))
    task_api.apply_detection(state, "beast_tribe_quests", True, progress=12, now=utc(2024, 1, 3, 11, 5))
    state.get_task("masked_carnivale").enabled = True
    state.get_task("fashion_report").sort_order = 999
    state.tasks.append(ChecklistTask(id="custom_weekly", category=TaskCategory.WEEKLY, detection_mode=DetectionMode.MANUAL))
    state.last_weekly_reset = utc(2024, 1, 2, 8, 0)
    state.dedicated_resets["jumbo_cactpot"] = utc(2023, 12, 30, 8, 0)
    return state


# ---- load: missing / corrupt ----


def test_load_missing_file_returns_defaults(store: ChecklistStore, clock: FakeClock) -> None:
    state = store.load()

    assert [t.id for t in state.tasks] == all_task_ids()
    assert not any(t.completed for t in state.tasks)
    assert state.last_daily_reset == clock.now
    assert set(state.dedicated_resets) == set(dedicated_cadences())


def test_load_truncated_file_returns_defaults(store: ChecklistStore, clock: FakeClock) -> None:
    assert store.save(_sample_state(clock))
    full = store.path.read_text("utf-8")
    store.path.write_text(full[: len(full) // 2], "utf-8")

    state = store.load()
    assert [t.id for t in state.tasks] == all_task_ids()
    assert state.owner_id is None


@pytest.mark.parametrize("content", ["", "   \n", "[1, 2, 3]", "\"text\"", "{not json"])
def test_load_garbage_returns_defaults(store: ChecklistStore, content: str) -> None:
    store.path.write_text(content, "utf-8")
    state = store.load()
    assert [t.id for t in state.tasks] == all_task_ids()


def test_load_non_utf8_bytes_returns_defaults(store: ChecklistStore, caplog: pytest.LogCaptureFixture) -> None:
    store.path.write_bytes(b'{"schema_version": 1, "tasks": [\xff\xfe')

    with caplog.at_level(logging.WARNING):
        state = store.load()

    assert [t.id for t in state.tasks] == all_task_ids()
    assert "is corrupt" in caplog.text


def test_load_out_of_range_timestamps_repairs_only_those_fields(
    store: ChecklistStore,
    clock: FakeClock,
    caplog: pytest.LogCaptureFixture,
) -> None:
    assert store.save(_sample_state(clock))
    doc = json.loads(store.path.read_text("utf-8"))
    doc["last_weekly_reset"] = "0001-01-01T00:00:00+05:00"
    doc["last_save_time"] = "0001-01-01T00:00:00+05:00"
    expert = next(t for t in doc["tasks"] if t["id"] == "roulette_expert")
    expert["completed_at"] = "0001-01-01T00:00:00+05:00"
    _write_json(store.path, doc)

    with caplog.at_level(logging.WARNING):
        state = store.load()

    assert state.owner_id == "owner-1"
    assert state.last_weekly_reset == EPOCH
    assert state.last_daily_reset == utc(2024, 1, 2, 15, 0)
    assert state.last_save_time is None
    assert state.get_task("roulette_expert").completed is True
    assert state.get_task("roulette_expert").completed_at is None
    assert state.get_task("mini_cactpot").current_count == 2
    assert "last_weekly_reset" in caplog.text
    assert "using defaults" not in caplog.text


def test_load_newer_schema_falls_back_to_defaults(store: ChecklistStore, clock: FakeClock) -> None:
    assert store.save(_sample_state(clock))
    doc = json.loads(store.path.read_text("utf-8"))
    doc["schema_version"] = CURRENT_SCHEMA_VERSION + 1
    _write_json(store.path, doc)

    state = store.load()
    assert state.owner_id is None
    assert not any(t.completed for t in state.tasks)


# ---- round trip ----


def test_save_load_round_trips_every_task_field(store: ChecklistStore, clock: FakeClock) -> None:
    state = _sample_state(clock)
    assert store.save(state)

    loaded = store.load()

    assert loaded.tasks == state.tasks
    assert loaded.last_daily_reset == state.last_daily_reset
    assert loaded.last_weekly_reset == state.last_weekly_reset
    assert loaded.dedicated_resets == state.dedicated_resets
    assert loaded.owner_id == "owner-1"
    assert loaded.last_save_time == clock.now
    assert state.last_save_time == clock.now


def test_saved_document_shape(store: ChecklistStore, clock: FakeClock) -> None:
    assert store.save(_sample_state(clock))
    doc = json.loads(store.path.read_text("utf-8"))

    assert doc["schema_version"] == CURRENT_SCHEMA_VERSION
    assert set(doc) == {
        "schema_version",
        "tasks",
        "last_daily_reset",
        "last_weekly_reset",
        "dedicated_reset_timestamps",
        "last_save_time",
        "owner_id",
    }
    expert = next(t for t in doc["tasks"] if t["id"] == "roulette_expert")
    assert expert["manual_override"] is True
    assert expert["completed_at"] == "2024-01-03T10:15:30.123456+00:00"
    assert not store.path.with_suffix(".json.tmp").exists()


# ---- repair ----


def test_load_repairs_entries_and_logs_discards(
    store: ChecklistStore,
    clock: FakeClock,
    caplog: pytest.LogCaptureFixture,
) -> None:
    doc = {
        "schema_version": 1,
        "tasks": [
            {"id": "mini_cactpot", "category": "daily", "detection_mode": "auto", "current_count": 99},
            {"id": "mini_cactpot", "category": "daily", "detection_mode": "auto", "completed": False},
            {"id": "roulette_msq", "category": "sideways", "detection_mode": "psychic", "completed": True},
            {"id": "mystery", "category": "nope"},
            {"id": ""},
            "not an object",
            {"id": "custom_weekly", "category": "weekly", "detection_mode": "manual", "completed": True},
        ],
        "last_daily_reset": "2099-01-01T00:00:00+00:00",
        "last_weekly_reset": "yesterday-ish",
        "dedicated_reset_timestamps": {"jumbo_cactpot": "2024-01-01T08:00:00", "ghost": "2024-01-01T00:00:00+00:00"},
        "last_save_time": None,
        "owner_id": 42,
    }
    _write_json(store.path, doc)

    with caplog.at_level(logging.WARNING, logger="dailies_checklist.tasks.task_store"):
        state = store.load()

    ids = [t.id for t in state.tasks]
    assert ids.count("mini_cactpot") == 1
    assert "mystery" not in ids
    assert "custom_weekly" in ids
    assert set(all_task_ids()) <= set(ids)

    mini = state.get_task("mini_cactpot")
    assert mini.current_count == 3
    assert mini.completed is True

    # Invalid enums fall back to the catalog definition.
    msq = state.get_task("roulette_msq")
    assert msq.category == TaskCategory.DAILY
    assert msq.detection_mode == DetectionMode.AUTO
    assert msq.completed is True

    assert state.last_daily_reset == clock.now  # future -> clamped
    assert state.last_weekly_reset == EPOCH  # invalid -> forces the next reset
    assert state.dedicated_resets["jumbo_cactpot"] == utc(2024, 1, 1, 8, 0)  # naive -> UTC
    assert state.dedicated_resets["gc_supply_provisioning"] == clock.now  # missing -> now
    assert "ghost" not in state.dedicated_resets
    assert state.owner_id is None

    text = caplog.text
    assert "Discarded checklist entries" in text
    assert "duplicate id 'mini_cactpot'" in text
    assert "in the future" in text


def test_load_bounds_task_collection(tmp_path: Path, clock: FakeClock) -> None:
    store = ChecklistStore(tmp_path / "big.json", max_tasks=5, clock=clock)
    doc = {
        "schema_version": 1,
        "tasks": [{"id": f"extra_{i}", "category": "daily", "detection_mode": "manual"} for i in range(50)],
    }
    _write_json(store.path, doc)

    state = store.load()
    assert len(state.tasks) == 5


def test_load_missing_schema_version_is_repaired(store: ChecklistStore, clock: FakeClock) -> None:
    assert store.save(_sample_state(clock))
    doc = json.loads(store.path.read_text("utf-8"))
    del doc["schema_version"]
    _write_json(store.path, doc)

    state = store.load()
    assert state.owner_id == "owner-1"
    assert state.get_task("roulette_expert").completed is True


# ---- save failures ----


def test_failed_save_keeps_previous_file(
    store: ChecklistStore,
    clock: FakeClock,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    state = _sample_state(clock)
    assert store.save(state)
    before = store.path.read_text("utf-8")

    def _boom(*_args, **_kwargs) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(task_store_module.os, "replace", _boom)
    state.owner_id = "someone-else"

    assert store.save(state) is False
    assert store.path.read_text("utf-8") == before
    assert not store.path.with_suffix(".json.tmp").exists()


# ---- debounce ----


def test_debounced_requests_produce_one_write_with_last_snapshot(tmp_path: Path, clock: FakeClock) -> None:
    store = RecordingStore(tmp_path / "checklist.json", debounce_seconds=0.2, clock=clock)
    state = default_state(clock.now)

    for i in range(5):
        state.owner_id = f"owner-{i}"
        store.request_save(state)

    # Mutations after the last request must not leak into the write.
    state.owner_id = "mutated-after-request"
    assert store.has_pending_save

    assert store.write_done.wait(timeout=5.0)
    time.sleep(0.4)

    assert len(store.writes) == 1
    assert store.writes[0]["owner_id"] == "owner-4"
    assert store.load().owner_id == "owner-4"
    assert not store.has_pending_save


def test_snapshot_mid_write_is_not_torn_by_live_mutation(tmp_path: Path, clock: FakeClock) -> None:
    store = RecordingStore(tmp_path / "checklist.json", debounce_seconds=0.0, clock=clock, hold=True)
    state = default_state(clock.now)
    task_api.apply_detection(state, "mini_cactpot", False, progress=1, now=clock.now)
    state.owner_id = "A"
    expected_tasks = state.clone().tasks

    store.request_save(state)
    assert store.write_started.wait(timeout=5.0)

    # The timer thread is now inside the write; the primary context keeps going.
    state.owner_id = "B"
    for t in state.tasks:
        t.completed = True
        t.current_count = t.max_count
    state.tasks.append(ChecklistTask(id="late", category=TaskCategory.DAILY, detection_mode=DetectionMode.MANUAL))

    store.release.set()
    assert store.write_done.wait(timeout=5.0)

    loaded = store.load()
    assert loaded.owner_id == "A"
    assert loaded.tasks == expected_tasks


def test_flush_writes_pending_snapshot_now(store: ChecklistStore, clock: FakeClock) -> None:
    state = default_state(clock.now)
    state.owner_id = "flushed"
    store.request_save(state)
    assert store.has_pending_save

    assert store.flush() is True
    assert not store.has_pending_save
    assert store.load().owner_id == "flushed"
    assert store.flush() is True  # nothing pending is fine


def test_sync_save_cancels_pending_request(store: ChecklistStore, clock: FakeClock) -> None:
    state = default_state(clock.now)
    state.owner_id = "old"
    store.request_save(state)

    state.owner_id = "new"
    assert store.save(state)

    assert not store.has_pending_save
    assert store.cancel_pending() is False
    assert store.load().owner_id == "new"


def test_close_writes_final_state_and_ignores_later_requests(store: ChecklistStore, clock: FakeClock) -> None:
    state = default_state(clock.now)
    state.owner_id = "final"
    store.request_save(state)

    assert store.close(state)
    store.request_save(state)

    assert not store.has_pending_save
    assert store.load().owner_id == "final"


def test_delete_removes_file(store: ChecklistStore, clock: FakeClock) -> None:
    assert store.save(default_state(clock.now))
    assert store.path.exists()

    assert store.delete()
    assert not store.path.exists()
    assert store.delete()  # already gone


def test_sorted_tasks_lists_daily_before_weekly_by_sort_order(clock: FakeClock) -> None:
    state = default_state(clock.now)
    state.tasks.reverse()

    ordered = state.sorted_tasks()
    categories = [t.category for t in ordered]
    first_weekly = categories.index(TaskCategory.WEEKLY)

    assert all(c == TaskCategory.DAILY for c in categories[:first_weekly])
    assert all(c == TaskCategory.WEEKLY for c in categories[first_weekly:])
    dailies = [t.sort_order for t in ordered[:first_weekly]]
    assert dailies == sorted(dailies)
