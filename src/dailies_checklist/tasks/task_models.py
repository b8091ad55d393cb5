# src/dailies_checklist/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import StrEnum

# Sentinel for "never reset": any boundary after it counts as elapsed.
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TaskCategory(StrEnum):
    """Which generic reset boundary governs a task (unless it has a dedicated cadence)."""

    DAILY = "daily"
    WEEKLY = "weekly"

    @classmethod
    def parse(cls, raw: object) -> TaskCategory | None:
        if not isinstance(raw, str):
            return None
        try:
            return cls(raw.strip().lower())
        except ValueError:
            return None


class DetectionMode(StrEnum):
    """How completion is known: user only, detector only, or detector with manual override."""

    MANUAL = "manual"
    AUTO = "auto"
    HYBRID = "hybrid"

    @classmethod
    def parse(cls, raw: object) -> DetectionMode | None:
        if not isinstance(raw, str):
            return None
        try:
            return cls(raw.strip().lower())
        except ValueError:
            return None

    @property
    def accepts_detection(self) -> bool:
        return self is not DetectionMode.MANUAL


class LimitationKind(StrEnum):
    SESSION_ONLY = "session_only"
    NO_INITIAL_STATE = "no_initial_state"
    PARTIAL = "partial"


@dataclass(slots=True, frozen=True)
class DetectionLimitation:
    """
    A known detection gap, shown to the user next to the task.

    task_id=None means the limitation applies to everything the detector owns.
    Purely informational: nothing in the reset/persistence logic reads it.
    """

    task_id: str | None
    kind: LimitationKind
    description: str


@dataclass(slots=True)
class ChecklistTask:
    id: str
    category: TaskCategory
    detection_mode: DetectionMode

    completed: bool = False
    manual_override: bool = False
    completed_at: datetime | None = None
    sort_order: int = 0

    enabled: bool = True
    max_count: int = 1
    current_count: int = 0

    def clear(self) -> None:
        """Back to "not done this period" (used by boundary and manual resets)."""
        self.completed = False
        self.manual_override = False
        self.completed_at = None
        self.current_count = 0

    def clone(self) -> ChecklistTask:
        # All fields are immutable values, a shallow replace is a deep copy.
        return replace(self)


@dataclass(slots=True)
class ChecklistState:
    tasks: list[ChecklistTask] = field(default_factory=list)

    last_daily_reset: datetime = EPOCH
    last_weekly_reset: datetime = EPOCH
    # task_id -> last applied boundary, only for tasks whose real cadence
    # differs from their category's generic boundary.
    dedicated_resets: dict[str, datetime] = field(default_factory=dict)

    last_save_time: datetime | None = None
    owner_id: str | None = None

    def get_task(self, task_id: str) -> ChecklistTask | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def tasks_in(self, category: TaskCategory) -> list[ChecklistTask]:
        return [t for t in self.tasks if t.category == category]

    def sorted_tasks(self) -> list[ChecklistTask]:
        return sorted(self.tasks, key=lambda t: (t.category != TaskCategory.DAILY, t.sort_order))

    def clone(self) -> ChecklistState:
        """Deep copy safe to hand to another thread."""
        return ChecklistState(
            tasks=[t.clone() for t in self.tasks],
            last_daily_reset=self.last_daily_reset,
            last_weekly_reset=self.last_weekly_reset,
            dedicated_resets=dict(self.dedicated_resets),
            last_save_time=self.last_save_time,
            owner_id=self.owner_id,
        )
