# src/dailies_checklist/tasks/task_store.py

from __future__ import annotations

import contextlib
import json
import logging
import os
import threading
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

from .reset_scheduler import as_utc
from .task_catalog import dedicated_cadences, default_state, default_tasks, get_definition
from .task_models import EPOCH, ChecklistState, ChecklistTask, DetectionMode, TaskCategory, utc_now

logger = logging.getLogger(__name__)

CURRENT_SCHEMA_VERSION = 1
DEFAULT_MAX_TASKS = 256
DEFAULT_DEBOUNCE_SECONDS = 2.0


class ChecklistStore:
    """
    Single-file JSON store for the checklist document.

    - load() never raises: missing, corrupt or mismatched documents are repaired
      or replaced with catalog defaults, and every discard is logged.
    - save() is atomic: write a temp file next to the target, fsync, os.replace.
    - request_save() is debounced: the state is deep-copied immediately and
      written by a timer thread once no newer request arrived for
      `debounce_seconds`.

    Thread-safety:
    - the timer thread only ever sees snapshots, never live state
    - `_lock` guards the pending snapshot / timer handle
    - `_write_lock` serializes physical writes; a snapshot older than the last
      one written is skipped, so a late timer can't overwrite a newer save
    """

    def __init__(
        self,
        path: str | Path,
        *,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        max_tasks: int = DEFAULT_MAX_TASKS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._path = Path(path)
        self._debounce = max(0.0, float(debounce_seconds))
        self._max_tasks = max(1, int(max_tasks))
        self._clock = clock

        self._lock = threading.Lock()
        self._write_lock = threading.Lock()

        self._pending: tuple[int, ChecklistState] | None = None
        self._timer: threading.Timer | None = None
        self._generation = 0
        self._seq = 0
        self._written_seq = 0
        self._closed = False

        self.last_save_time: datetime | None = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def has_pending_save(self) -> bool:
        with self._lock:
            return self._pending is not None

    # ---- load ----

    def load(self) -> ChecklistState:
        now = as_utc(self._clock())

        try:
            if not self._path.exists():
                logger.info("No checklist at %s; starting from catalog defaults", self._path)
                return default_state(now)
            raw = self._path.read_bytes()
        except OSError:
            logger.exception("Failed to read checklist %s; using defaults", self._path)
            return default_state(now)

        if not raw.strip():
            logger.warning("Checklist %s is empty; using defaults", self._path)
            return default_state(now)

        try:
            data = json.loads(raw.decode("utf-8"))
        except ValueError as e:
            logger.warning("Checklist %s is corrupt (%s); using defaults", self._path, e)
            return default_state(now)

        try:
            state = self._from_document(data, now)
        except Exception:
            logger.exception("Unexpected error repairing checklist %s; using defaults", self._path)
            return default_state(now)

        logger.info("Loaded checklist from %s: %d tasks", self._path, len(state.tasks))
        return state

    def _from_document(self, data: Any, now: datetime) -> ChecklistState:
        if not isinstance(data, dict):
            logger.warning("Checklist document is %s, not an object; using defaults", type(data).__name__)
            return default_state(now)

        version = data.get("schema_version")
        if isinstance(version, bool) or not isinstance(version, int):
            logger.warning("Checklist has no valid schema_version (%r); repairing", version)
        elif version > CURRENT_SCHEMA_VERSION:
            logger.warning(
                "Checklist schema_version %s is newer than supported %s; using defaults",
                version,
                CURRENT_SCHEMA_VERSION,
            )
            return default_state(now)

        tasks = self._repair_tasks(data.get("tasks"))

        state = ChecklistState(
            tasks=tasks,
            last_daily_reset=_parse_ts(data.get("last_daily_reset"), "last_daily_reset", now, EPOCH),
            last_weekly_reset=_parse_ts(data.get("last_weekly_reset"), "last_weekly_reset", now, EPOCH),
            dedicated_resets=self._repair_dedicated(data.get("dedicated_reset_timestamps"), now),
            last_save_time=_parse_optional_ts(data.get("last_save_time"), "last_save_time", now),
            owner_id=data.get("owner_id") if isinstance(data.get("owner_id"), str) else None,
        )
        return state

    def _repair_tasks(self, raw: Any) -> list[ChecklistTask]:
        defaults = default_tasks()
        if not isinstance(raw, list):
            logger.warning("Checklist tasks is %s, not a list; using catalog tasks", type(raw).__name__)
            return defaults

        out: list[ChecklistTask] = []
        seen: set[str] = set()
        discarded: list[str] = []

        for i, entry in enumerate(raw):
            if len(out) >= self._max_tasks:
                discarded.append(f"{len(raw) - i} entries beyond max_tasks={self._max_tasks}")
                break

            task, reason = _task_from_entry(entry, i)
            if task is None:
                discarded.append(reason)
                continue
            if task.id in seen:
                discarded.append(f"#{i} duplicate id {task.id!r}")
                continue

            seen.add(task.id)
            out.append(task)

        if discarded:
            logger.warning("Discarded checklist entries: %s", "; ".join(discarded))

        added: list[str] = []
        for task in defaults:
            if len(out) >= self._max_tasks:
                break
            if task.id not in seen:
                out.append(task)
                added.append(task.id)
        if added:
            logger.info("Added catalog tasks missing from checklist: %s", ", ".join(added))

        return out

    def _repair_dedicated(self, raw: Any, now: datetime) -> dict[str, datetime]:
        if raw is not None and not isinstance(raw, dict):
            logger.warning("dedicated_reset_timestamps is %s, not an object; repairing", type(raw).__name__)
            raw = None
        raw = raw or {}

        out: dict[str, datetime] = {}
        for task_id in dedicated_cadences():
            if task_id not in raw:
                # Never tracked before: start now rather than clearing on the next tick.
                logger.info("No dedicated reset timestamp for %s; starting at %s", task_id, now.isoformat())
                out[task_id] = now
                continue
            out[task_id] = _parse_ts(raw[task_id], f"dedicated_reset_timestamps.{task_id}", now, EPOCH)

        unknown = sorted(k for k in raw if k not in out)
        if unknown:
            logger.warning("Discarded dedicated reset timestamps for unknown tasks: %s", ", ".join(map(str, unknown)))
        return out

    # ---- save ----

    def save(self, state: ChecklistState) -> bool:
        """
        Synchronous save from the primary context.

        Cancels any pending debounced save: the live state is at least as new.
        Returns False (and logs) on failure; the previous file stays intact.
        """
        with self._lock:
            self._cancel_locked()
            self._seq += 1
            seq = self._seq

        snapshot = state.clone()
        ok = self._write(seq, snapshot)
        if ok:
            state.last_save_time = snapshot.last_save_time
        return ok

    def request_save(self, state: ChecklistState) -> None:
        """Debounced save. The snapshot is taken now, not when the timer fires."""
        snapshot = state.clone()

        with self._lock:
            if self._closed:
                logger.warning("request_save after close ignored")
                return

            self._cancel_locked()
            self._seq += 1
            self._generation += 1
            self._pending = (self._seq, snapshot)

            timer = threading.Timer(self._debounce, self._on_timer, args=(self._generation,))
            timer.name = "checklist-save"
            timer.daemon = True
            self._timer = timer
            timer.start()

    def flush(self) -> bool:
        """Write the pending snapshot now (if any)."""
        with self._lock:
            pending = self._pending
            self._cancel_locked()

        if pending is None:
            return True
        seq, snapshot = pending
        return self._write(seq, snapshot)

    def cancel_pending(self) -> bool:
        """Drop the pending debounced save. Returns True if one was pending."""
        with self._lock:
            had = self._pending is not None
            self._cancel_locked()
        return had

    def close(self, final_state: ChecklistState | None = None) -> bool:
        """Cancel the timer, then write `final_state` synchronously (if given)."""
        self.cancel_pending()
        ok = True
        if final_state is not None:
            ok = self.save(final_state)
        with self._lock:
            self._closed = True
        return ok

    def delete(self) -> bool:
        self.cancel_pending()
        try:
            self._path.unlink(missing_ok=True)
            return True
        except OSError:
            logger.exception("Failed to delete checklist %s", self._path)
            return False

    # ---- internals ----

    def _cancel_locked(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending = None
        # A timer that already fired and waits on _lock sees a stale generation.
        self._generation += 1

    def _on_timer(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._pending is None:
                return
            seq, snapshot = self._pending
            self._pending = None
            self._timer = None

        self._write(seq, snapshot)

    def _write(self, seq: int, snapshot: ChecklistState) -> bool:
        with self._write_lock:
            if seq <= self._written_seq:
                logger.debug("Skipping stale checklist snapshot seq=%s (written=%s)", seq, self._written_seq)
                return True

            snapshot.last_save_time = as_utc(self._clock())
            try:
                self._write_document(_to_document(snapshot))
            except (OSError, TypeError, ValueError):
                logger.exception("Failed to save checklist to %s", self._path)
                return False

            self._written_seq = seq
            self.last_save_time = snapshot.last_save_time

        logger.debug("Saved checklist to %s (%d tasks)", self._path, len(snapshot.tasks))
        return True

    def _write_document(self, doc: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(doc, ensure_ascii=False, indent=2)

        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, self._path)
        except BaseException:
            with contextlib.suppress(OSError):
                tmp.unlink()
            raise


# ---- document conversion ----


def _iso(value: datetime | None) -> str | None:
    return None if value is None else as_utc(value).isoformat()


def _to_document(state: ChecklistState) -> dict[str, Any]:
    return {
        "schema_version": CURRENT_SCHEMA_VERSION,
        "tasks": [
            {
                "id": t.id,
                "category": t.category.value,
                "detection_mode": t.detection_mode.value,
                "completed": t.completed,
                "manual_override": t.manual_override,
                "completed_at": _iso(t.completed_at),
                "sort_order": t.sort_order,
                "enabled": t.enabled,
                "max_count": t.max_count,
                "current_count": t.current_count,
            }
            for t in state.tasks
        ],
        "last_daily_reset": _iso(state.last_daily_reset),
        "last_weekly_reset": _iso(state.last_weekly_reset),
        "dedicated_reset_timestamps": {k: _iso(v) for k, v in state.dedicated_resets.items()},
        "last_save_time": _iso(state.last_save_time),
        "owner_id": state.owner_id,
    }


def _bool(value: Any, default: bool = False) -> bool:
    return value if isinstance(value, bool) else default


def _int(value: Any, default: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return default
    return value


def _parse_ts(raw: Any, field: str, now: datetime, fallback: datetime) -> datetime:
    """Parse an ISO timestamp; invalid -> fallback, future -> now (both logged)."""
    if raw is None:
        logger.warning("Checklist field %s missing; using %s", field, fallback.isoformat())
        return fallback
    if not isinstance(raw, str):
        logger.warning("Checklist field %s=%r is not a timestamp; using %s", field, raw, fallback.isoformat())
        return fallback
    try:
        value = as_utc(datetime.fromisoformat(raw))
    except (ValueError, OverflowError):
        logger.warning("Checklist field %s=%r is not a timestamp; using %s", field, raw, fallback.isoformat())
        return fallback

    if value > now:
        logger.warning("Checklist field %s=%s is in the future; clamping to now", field, raw)
        return now
    if value < EPOCH:
        return EPOCH
    return value


def _parse_optional_ts(raw: Any, field: str, now: datetime) -> datetime | None:
    if raw is None:
        return None
    if not isinstance(raw, str):
        logger.warning("Checklist field %s=%r is not a timestamp; dropping", field, raw)
        return None
    try:
        value = as_utc(datetime.fromisoformat(raw))
    except (ValueError, OverflowError):
        logger.warning("Checklist field %s=%r is not a timestamp; dropping", field, raw)
        return None
    return min(value, now)


def _task_from_entry(entry: Any, index: int) -> tuple[ChecklistTask | None, str]:
    if not isinstance(entry, dict):
        return None, f"#{index} is not an object"

    task_id = entry.get("id")
    if not isinstance(task_id, str) or not task_id.strip():
        return None, f"#{index} has no valid id"
    task_id = task_id.strip()

    definition = get_definition(task_id)

    category = TaskCategory.parse(entry.get("category"))
    if category is None and definition is not None:
        category = definition.category
    mode = DetectionMode.parse(entry.get("detection_mode"))
    if mode is None and definition is not None:
        mode = definition.detection_mode
    if category is None or mode is None:
        return None, f"#{index} {task_id!r} has no valid category/detection_mode"

    max_count = max(1, _int(entry.get("max_count"), definition.max_count if definition else 1))
    current_count = min(max(0, _int(entry.get("current_count"), 0)), max_count)
    completed = _bool(entry.get("completed"))
    if max_count > 1:
        completed = current_count >= max_count

    completed_at: datetime | None = None
    if completed:
        raw_at = entry.get("completed_at")
        if isinstance(raw_at, str):
            try:
                completed_at = as_utc(datetime.fromisoformat(raw_at))
            except (ValueError, OverflowError):
                logger.warning("Checklist task %s completed_at=%r is not a timestamp; dropping", task_id, raw_at)
                completed_at = None

    task = ChecklistTask(
        id=task_id,
        category=category,
        detection_mode=mode,
        completed=completed,
        manual_override=_bool(entry.get("manual_override")),
        completed_at=completed_at,
        sort_order=_int(entry.get("sort_order"), definition.sort_order if definition else index),
        enabled=_bool(entry.get("enabled"), definition.enabled if definition else True),
        max_count=max_count,
        current_count=current_count,
    )
    return task, ""
