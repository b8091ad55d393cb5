# src/dailies_checklist/tasks/reset_scheduler.py

"""
Reset scheduler.

One BoundaryRule per distinct reset boundary:
- the generic daily and weekly boundaries, scoped by task category,
- one dedicated rule per task whose real cadence diverges from its category.

On every check (once per host tick) each rule is asked whether an occurrence
fell into (last_applied, now]. If so, the tasks in its scope are cleared, the
rule's own timestamp is advanced to `now`, and a ResetApplied event is sent to
listeners (detectors re-zero their counters from it).

All arithmetic is in UTC; naive datetimes are taken to be UTC.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from .task_catalog import GENERIC_CADENCES, Cadence, dedicated_cadences
from .task_models import EPOCH, ChecklistState, ChecklistTask, TaskCategory, utc_now

logger = logging.getLogger(__name__)

DAILY_RULE_ID = "daily"
WEEKLY_RULE_ID = "weekly"

ResetListener = Callable[["ResetApplied"], None]


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(slots=True, frozen=True)
class BoundaryRule:
    """
    A recurring reset boundary and the tasks it governs.

    Scope is either a category (generic rule) or a single task (dedicated rule).
    A generic rule never touches tasks that have a dedicated rule.
    """

    rule_id: str
    cadence: Cadence
    category: TaskCategory | None = None
    task_id: str | None = None

    def __post_init__(self) -> None:
        if (self.category is None) == (self.task_id is None):
            raise ValueError(f"rule {self.rule_id!r} needs exactly one of category/task_id")

    @property
    def period(self) -> timedelta:
        return timedelta(days=7) if self.cadence.is_weekly else timedelta(days=1)

    @property
    def is_dedicated(self) -> bool:
        return self.task_id is not None

    def next_occurrence(self, now: datetime) -> datetime:
        """First boundary strictly after `now`."""
        now = as_utc(now)
        candidate = now.replace(
            hour=self.cadence.hour,
            minute=self.cadence.minute,
            second=0,
            microsecond=0,
        )
        if self.cadence.weekday is not None:
            candidate += timedelta(days=(self.cadence.weekday - now.weekday()) % 7)
        if candidate <= now:
            candidate += self.period
        return candidate

    def previous_occurrence(self, now: datetime) -> datetime:
        """Latest boundary at or before `now`."""
        return self.next_occurrence(now) - self.period

    def has_elapsed_since(self, last_applied: datetime, now: datetime) -> bool:
        """True iff at least one boundary falls within (last_applied, now]."""
        return self.previous_occurrence(now) > as_utc(last_applied)

    def in_scope(self, task: ChecklistTask, dedicated_ids: frozenset[str]) -> bool:
        if self.task_id is not None:
            return task.id == self.task_id
        return task.category == self.category and task.id not in dedicated_ids


@dataclass(slots=True, frozen=True)
class ResetApplied:
    rule_id: str
    task_ids: tuple[str, ...]
    boundary: datetime
    applied_at: datetime


def build_default_rules() -> list[BoundaryRule]:
    rules = [
        BoundaryRule(DAILY_RULE_ID, GENERIC_CADENCES[TaskCategory.DAILY], category=TaskCategory.DAILY),
        BoundaryRule(WEEKLY_RULE_ID, GENERIC_CADENCES[TaskCategory.WEEKLY], category=TaskCategory.WEEKLY),
    ]
    for task_id, cadence in dedicated_cadences().items():
        rules.append(BoundaryRule(task_id, cadence, task_id=task_id))
    return rules


class ResetScheduler:
    def __init__(self, rules: Iterable[BoundaryRule] | None = None) -> None:
        self._rules = list(rules) if rules is not None else build_default_rules()

        ids = [r.rule_id for r in self._rules]
        if len(set(ids)) != len(ids):
            raise ValueError(f"duplicate reset rule ids: {ids}")

        self._dedicated_ids = frozenset(r.task_id for r in self._rules if r.task_id is not None)
        self._listeners: list[ResetListener] = []

    @property
    def rules(self) -> list[BoundaryRule]:
        return list(self._rules)

    @property
    def dedicated_task_ids(self) -> frozenset[str]:
        return self._dedicated_ids

    def rule(self, rule_id: str) -> BoundaryRule:
        for r in self._rules:
            if r.rule_id == rule_id:
                return r
        raise KeyError(rule_id)

    def subscribe(self, listener: ResetListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ---- per-rule timestamps ----

    def last_applied(self, state: ChecklistState, rule: BoundaryRule) -> datetime:
        if rule.task_id is not None:
            # Missing dedicated timestamp -> treat as never applied.
            return state.dedicated_resets.get(rule.task_id, EPOCH)
        if rule.category == TaskCategory.DAILY:
            return state.last_daily_reset
        return state.last_weekly_reset

    def _set_last_applied(self, state: ChecklistState, rule: BoundaryRule, when: datetime) -> None:
        if rule.task_id is not None:
            state.dedicated_resets[rule.task_id] = when
        elif rule.category == TaskCategory.DAILY:
            state.last_daily_reset = when
        else:
            state.last_weekly_reset = when

    # ---- applying ----

    def check_and_apply(self, state: ChecklistState, now: datetime | None = None) -> list[ResetApplied]:
        """One pass over every rule. Returns the resets that were applied (possibly none)."""
        now = as_utc(now or utc_now())
        applied: list[ResetApplied] = []

        for rule in self._rules:
            last = self.last_applied(state, rule)
            if not rule.has_elapsed_since(last, now):
                continue
            applied.append(self._apply(state, rule, now))

        for event in applied:
            self._notify(event)
        return applied

    def _apply(self, state: ChecklistState, rule: BoundaryRule, now: datetime) -> ResetApplied:
        cleared: list[str] = []
        for task in state.tasks:
            if rule.in_scope(task, self._dedicated_ids):
                task.clear()
                cleared.append(task.id)

        self._set_last_applied(state, rule, now)
        boundary = rule.previous_occurrence(now)
        logger.info(
            "Reset %s applied (boundary=%s): %d tasks cleared",
            rule.rule_id,
            boundary.isoformat(),
            len(cleared),
        )
        return ResetApplied(
            rule_id=rule.rule_id,
            task_ids=tuple(cleared),
            boundary=boundary,
            applied_at=now,
        )

    def _notify(self, event: ResetApplied) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("reset listener failed rule=%s", event.rule_id)

    # ---- queries ----

    def next_reset(self, rule_id: str, now: datetime | None = None) -> datetime:
        return self.rule(rule_id).next_occurrence(now or utc_now())

    def time_until(self, rule_id: str, now: datetime | None = None) -> timedelta:
        now = as_utc(now or utc_now())
        return self.next_reset(rule_id, now) - now


def format_duration(span: timedelta) -> str:
    """Compact human form: "1d 5h", "2h 30m", "4m 10s", "12s"; negative -> "Now"."""
    total = int(span.total_seconds())
    if total < 0:
        return "Now"

    days, rem = divmod(total, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, seconds = divmod(rem, 60)

    if days:
        return f"{days}d {hours}h" if hours else f"{days}d"
    if hours:
        return f"{hours}h {minutes}m" if minutes else f"{hours}h"
    if minutes:
        return f"{minutes}m {seconds}s" if seconds else f"{minutes}m"
    return f"{seconds}s"
