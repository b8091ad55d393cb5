# src/dailies_checklist/tasks/task_catalog.py

"""
Immutable catalog of known activities.

Reset times reference (all UTC):
- daily:   15:00 every day
- weekly:  Tuesday 08:00
- Grand Company supply/provisioning: 20:00 every day (NOT the daily boundary)
- Jumbo Cactpot drawing: Saturday 08:00 (NOT the weekly boundary)

The last two keep their nominal category for grouping, but reset on their own
cadence and are tracked with their own last-reset timestamp.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from .task_models import ChecklistState, ChecklistTask, DetectionMode, TaskCategory, utc_now

MONDAY, TUESDAY, WEDNESDAY, THURSDAY, FRIDAY, SATURDAY, SUNDAY = range(7)


@dataclass(slots=True, frozen=True)
class Cadence:
    """A recurring UTC instant: every day at hour:minute, or weekly on `weekday`."""

    hour: int
    minute: int = 0
    weekday: int | None = None  # datetime.weekday(): Monday == 0

    def __post_init__(self) -> None:
        if not 0 <= self.hour <= 23 or not 0 <= self.minute <= 59:
            raise ValueError(f"invalid cadence time {self.hour:02d}:{self.minute:02d}")
        if self.weekday is not None and not 0 <= self.weekday <= 6:
            raise ValueError(f"invalid cadence weekday {self.weekday}")

    @property
    def is_weekly(self) -> bool:
        return self.weekday is not None


DAILY_CADENCE = Cadence(hour=15)
WEEKLY_CADENCE = Cadence(hour=8, weekday=TUESDAY)
GRAND_COMPANY_CADENCE = Cadence(hour=20)
JUMBO_CACTPOT_CADENCE = Cadence(hour=8, weekday=SATURDAY)

GENERIC_CADENCES: dict[TaskCategory, Cadence] = {
    TaskCategory.DAILY: DAILY_CADENCE,
    TaskCategory.WEEKLY: WEEKLY_CADENCE,
}


@dataclass(slots=True, frozen=True)
class TaskDefinition:
    id: str
    name: str
    location: str
    description: str
    category: TaskCategory
    detection_mode: DetectionMode
    sort_order: int
    enabled: bool = True
    max_count: int = 1
    cadence: Cadence | None = None  # None -> the category's generic boundary

    def new_task(self) -> ChecklistTask:
        return ChecklistTask(
            id=self.id,
            category=self.category,
            detection_mode=self.detection_mode,
            sort_order=self.sort_order,
            enabled=self.enabled,
            max_count=self.max_count,
        )


_D = TaskCategory.DAILY
_W = TaskCategory.WEEKLY
_AUTO = DetectionMode.AUTO
_HYBRID = DetectionMode.HYBRID

CATALOG: tuple[TaskDefinition, ...] = (
    # ---- daily ----
    TaskDefinition("mini_cactpot", "Mini Cactpot", "Gold Saucer",
                   "3 scratch tickets daily", _D, _AUTO, 10, max_count=3),
    TaskDefinition("roulette_expert", "Expert Roulette", "Duty Finder",
                   "Current max-level dungeons", _D, _AUTO, 20),
    TaskDefinition("roulette_leveling", "Leveling Roulette", "Duty Finder",
                   "Large EXP bonus for leveling jobs", _D, _AUTO, 21),
    TaskDefinition("roulette_msq", "Main Scenario Roulette", "Duty Finder",
                   "Main scenario duties", _D, _AUTO, 22),
    TaskDefinition("roulette_alliance", "Alliance Raid Roulette", "Duty Finder",
                   "24-player raids", _D, _AUTO, 23),
    TaskDefinition("roulette_normal_raid", "Normal Raid Roulette", "Duty Finder",
                   "8-player normal raids", _D, _AUTO, 24),
    TaskDefinition("roulette_trials", "Trials Roulette", "Duty Finder",
                   "Trial fights", _D, _AUTO, 25),
    TaskDefinition("roulette_5060708090", "Level 50/60/70/80/90 Dungeons", "Duty Finder",
                   "High-level dungeons", _D, _AUTO, 26),
    TaskDefinition("roulette_frontline", "Frontline Roulette", "Duty Finder",
                   "PvP roulette", _D, _AUTO, 27),
    TaskDefinition("roulette_guildhests", "Guildhests Roulette", "Duty Finder",
                   "Small group tutorials", _D, _AUTO, 28),
    TaskDefinition("roulette_mentor", "Mentor Roulette", "Duty Finder",
                   "Mentor-only roulette", _D, _AUTO, 29, enabled=False),
    TaskDefinition("beast_tribe_quests", "Tribal Quests", "Various",
                   "12 daily allowances across all tribes", _D, _AUTO, 30, max_count=12),
    TaskDefinition("daily_hunts", "Daily Hunts", "Hunt Boards",
                   "Daily hunt bills", _D, _HYBRID, 40),
    TaskDefinition("gc_supply_provisioning", "GC Supply/Provisioning", "Grand Company HQ",
                   "Turn in crafted/gathered items (resets 20:00 UTC)", _D, _AUTO, 50,
                   cadence=GRAND_COMPANY_CADENCE),
    TaskDefinition("treasure_map", "Treasure Map Gathering", "Gathering Nodes",
                   "One map per period", _D, _HYBRID, 60),
    # ---- weekly ----
    TaskDefinition("jumbo_cactpot", "Jumbo Cactpot", "Gold Saucer",
                   "3 lottery tickets (drawing Saturday 08:00 UTC)", _W, _AUTO, 100,
                   max_count=3, cadence=JUMBO_CACTPOT_CADENCE),
    TaskDefinition("wondrous_tails", "Wondrous Tails", "Idyllshire",
                   "Journal duties for stickers", _W, _HYBRID, 110),
    TaskDefinition("custom_deliveries", "Custom Deliveries", "Various NPCs",
                   "12 deliveries total", _W, _HYBRID, 120, max_count=12),
    TaskDefinition("fashion_report", "Fashion Report", "Gold Saucer",
                   "Glamour judging (starts Friday)", _W, _HYBRID, 130),
    TaskDefinition("weekly_hunts", "Weekly Elite Marks", "Hunt Boards",
                   "Elite hunt bills", _W, _HYBRID, 140),
    TaskDefinition("doman_enclave", "Doman Enclave Donations", "Doman Enclave",
                   "Weekly donation budget", _W, _HYBRID, 150),
    TaskDefinition("challenge_log", "Challenge Log", "Logs Menu",
                   "Weekly objectives", _W, _HYBRID, 160),
    TaskDefinition("faux_hollows", "Faux Hollows", "Idyllshire",
                   "Unreal trial for Faux Leaves", _W, _HYBRID, 170),
    TaskDefinition("masked_carnivale", "Masked Carnivale Weekly", "Ul'dah",
                   "Blue Mage weekly targets", _W, _HYBRID, 180, enabled=False),
)

_BY_ID: dict[str, TaskDefinition] = {d.id: d for d in CATALOG}
if len(_BY_ID) != len(CATALOG):
    raise RuntimeError("task catalog contains duplicate ids")


def get_definition(task_id: str) -> TaskDefinition | None:
    return _BY_ID.get(task_id)


def all_task_ids() -> list[str]:
    return [d.id for d in CATALOG]


def dedicated_cadences() -> dict[str, Cadence]:
    """Tasks whose real reset cadence diverges from their category's generic boundary."""
    return {d.id: d.cadence for d in CATALOG if d.cadence is not None}


def default_tasks() -> list[ChecklistTask]:
    return [d.new_task() for d in CATALOG]


def default_state(now: datetime | None = None) -> ChecklistState:
    """
    Fresh state from catalog defaults.

    Reset timestamps start at `now`: nothing is completed yet, so there is
    nothing for an immediate reset to clear.
    """
    if now is None:
        now = utc_now()
    return ChecklistState(
        tasks=default_tasks(),
        last_daily_reset=now,
        last_weekly_reset=now,
        dedicated_resets={task_id: now for task_id in dedicated_cadences()},
        last_save_time=None,
        owner_id=None,
    )
