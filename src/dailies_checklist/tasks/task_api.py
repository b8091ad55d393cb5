# src/dailies_checklist/tasks/task_api.py

from __future__ import annotations

import logging
from datetime import datetime

from .task_catalog import default_state
from .task_models import ChecklistState, ChecklistTask, TaskCategory, utc_now

logger = logging.getLogger(__name__)


def set_task_completed(
    state: ChecklistState,
    task_id: str,
    completed: bool,
    *,
    now: datetime | None = None,
) -> ChecklistTask | None:
    """
    Direct user action: mark a task done / not done.

    Sets manual_override so detection won't flip it back until the next reset.
    Returns the task, or None if the id is unknown.
    """
    task = state.get_task(task_id)
    if task is None:
        logger.warning("set_task_completed: unknown task_id=%s", task_id)
        return None

    task.completed = bool(completed)
    task.manual_override = True
    task.completed_at = (now or utc_now()) if completed else None
    task.current_count = task.max_count if completed else 0

    logger.info("Task %s manually set completed=%s", task_id, task.completed)
    return task


def toggle_task(state: ChecklistState, task_id: str, *, now: datetime | None = None) -> ChecklistTask | None:
    task = state.get_task(task_id)
    if task is None:
        logger.warning("toggle_task: unknown task_id=%s", task_id)
        return None
    return set_task_completed(state, task_id, not task.completed, now=now)


def reset_category(state: ChecklistState, category: TaskCategory) -> list[str]:
    """User "Reset All" for one category. Boundary timestamps are left alone."""
    cleared: list[str] = []
    for task in state.tasks_in(category):
        task.clear()
        cleared.append(task.id)

    logger.info("Manual reset of %s tasks: %d cleared", category.value, len(cleared))
    return cleared


def reset_to_defaults(state: ChecklistState, *, now: datetime | None = None) -> ChecklistState:
    """Replace every task (and reset timestamps) with catalog defaults, in place."""
    fresh = default_state(now or utc_now())

    state.tasks = fresh.tasks
    state.last_daily_reset = fresh.last_daily_reset
    state.last_weekly_reset = fresh.last_weekly_reset
    state.dedicated_resets = fresh.dedicated_resets

    logger.info("Checklist reset to catalog defaults (%d tasks)", len(state.tasks))
    return state


def apply_detection(
    state: ChecklistState,
    task_id: str,
    completed: bool,
    *,
    progress: int | None = None,
    now: datetime | None = None,
) -> bool:
    """
    Apply a detector change to the live state.

    Only Auto/Hybrid tasks without a manual override accept it.
    Returns True if anything changed (caller then requests a save).
    """
    task = state.get_task(task_id)
    if task is None:
        logger.debug("Detection for unknown task_id=%s ignored", task_id)
        return False
    if not task.detection_mode.accepts_detection:
        logger.debug("Detection for manual task %s ignored", task_id)
        return False
    if task.manual_override:
        logger.debug("Detection for %s ignored: manual override set", task_id)
        return False

    # Keep completed == (current_count >= max_count).
    completed = bool(completed)
    if completed:
        count = task.max_count
    elif progress is not None:
        count = min(max(0, int(progress)), task.max_count - 1)
    else:
        count = min(task.current_count, task.max_count - 1)

    if task.completed == completed and task.current_count == count:
        return False

    if completed and not task.completed:
        task.completed_at = now or utc_now()
    elif not completed:
        task.completed_at = None

    task.completed = completed
    task.current_count = count

    logger.info("Task %s detected completed=%s (%d/%d)", task_id, completed, count, task.max_count)
    return True
