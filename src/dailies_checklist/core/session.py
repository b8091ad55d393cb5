# src/dailies_checklist/core/session.py

from __future__ import annotations

"""
Checklist session.

Ties the live ChecklistState to its collaborators:
- store: load at start, debounced save on every mutation, final save at shutdown
- scheduler: boundary resets on host ticks (throttled)
- orchestrator: detector changes applied to the state; reset events fanned back

All methods run on the primary context (the one delivering feed events).
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from ..detectors.orchestrator import DetectionOrchestrator
from ..tasks import task_api
from ..tasks.reset_scheduler import ResetApplied, ResetScheduler, as_utc
from ..tasks.task_models import ChecklistState, ChecklistTask, DetectionLimitation, TaskCategory, utc_now
from ..tasks.task_store import ChecklistStore
from .events import EventKind, SessionEvent
from .ports import EventFeed, SubscriptionHandle, TaskDetector

logger = logging.getLogger(__name__)


class ChecklistSession:
    def __init__(
        self,
        *,
        store: ChecklistStore,
        orchestrator: DetectionOrchestrator,
        scheduler: ResetScheduler,
        feed: EventFeed,
        clock: Callable[[], datetime] = utc_now,
        reset_check_interval_seconds: float = 1.0,
    ) -> None:
        self.store = store
        self.orchestrator = orchestrator
        self.scheduler = scheduler
        self.feed = feed

        self._clock = clock
        self._check_interval = timedelta(seconds=max(0.0, float(reset_check_interval_seconds)))
        self._last_check: datetime | None = None

        self._state: ChecklistState | None = None
        self._feed_handles: list[SubscriptionHandle] = []
        self._unsubscribers: list[Callable[[], None]] = []
        self._closed = False

    @property
    def state(self) -> ChecklistState:
        if self._state is None:
            raise RuntimeError("session not started")
        return self._state

    @property
    def started(self) -> bool:
        return self._state is not None

    # ---- lifecycle ----

    def start(self) -> ChecklistState:
        if self._state is not None:
            return self._state

        self._state = self.store.load()

        self._unsubscribers.append(self.orchestrator.subscribe(self._on_detection))
        self._unsubscribers.append(self.scheduler.subscribe(self.orchestrator.notify_reset))

        # Boundaries that passed while we were offline.
        self.check_resets()

        self._feed_handles.append(self.feed.subscribe(EventKind.TICK, self._on_tick))
        self._feed_handles.append(self.feed.subscribe(EventKind.SESSION_START, self._on_session_start))

        logger.info("Checklist session started: %d tasks", len(self._state.tasks))
        return self._state

    def register_detector(self, detector: TaskDetector, *, enabled: bool = True) -> bool:
        """
        Register with the orchestrator, then seed its counters from persisted progress.

        DetectorRegistrationError propagates to the caller.
        """
        if not self.orchestrator.register(detector, enabled=enabled):
            return False

        for task_id in self.orchestrator.owned_task_ids(detector.name):
            task = self.state.get_task(task_id)
            if task is not None:
                self.orchestrator.restore_progress(task_id, task.current_count)
        return True

    def shutdown(self) -> None:
        """
        Ordered teardown:
        cancel pending save -> final synchronous save -> detector handlers off -> detectors disposed.
        """
        if self._closed:
            return
        self._closed = True

        self.store.cancel_pending()
        if self._state is not None and not self.store.save(self._state):
            logger.error("Final checklist save failed")

        self.orchestrator.dispose()

        for handle in self._feed_handles:
            self.feed.unsubscribe(handle)
        self._feed_handles.clear()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

        self.store.close()
        logger.info("Checklist session closed")

    # ---- resets ----

    def tick(self, now: datetime | None = None) -> list[ResetApplied]:
        """Host tick; reset checks are throttled to the configured interval."""
        now = as_utc(now or self._clock())
        if self._last_check is not None and now - self._last_check < self._check_interval:
            return []
        return self.check_resets(now)

    def check_resets(self, now: datetime | None = None) -> list[ResetApplied]:
        now = as_utc(now or self._clock())
        self._last_check = now

        applied = self.scheduler.check_and_apply(self.state, now)
        if applied:
            self.store.request_save(self.state)
        return applied

    def time_until(self, rule_id: str) -> timedelta:
        return self.scheduler.time_until(rule_id, self._clock())

    # ---- presentation-facing mutations ----

    def toggle_task(self, task_id: str) -> ChecklistTask | None:
        task = task_api.toggle_task(self.state, task_id, now=self._clock())
        if task is not None:
            self.store.request_save(self.state)
        return task

    def set_task_completed(self, task_id: str, completed: bool) -> ChecklistTask | None:
        task = task_api.set_task_completed(self.state, task_id, completed, now=self._clock())
        if task is not None:
            self.store.request_save(self.state)
        return task

    def reset_category(self, category: TaskCategory) -> list[str]:
        cleared = task_api.reset_category(self.state, category)
        self._rezero_detectors(cleared)
        self.store.request_save(self.state)
        return cleared

    def reset_to_defaults(self) -> ChecklistState:
        task_api.reset_to_defaults(self.state, now=self._clock())
        self._rezero_detectors(t.id for t in self.state.tasks)
        self.store.request_save(self.state)
        return self.state

    def limitations(self) -> list[DetectionLimitation]:
        return self.orchestrator.limitations()

    def detected_state(self, task_id: str) -> bool | None:
        return self.orchestrator.get_state(task_id)

    def set_detector_enabled(self, name: str, enabled: bool) -> bool:
        # Unmuting re-seeds the detector's counters from the checklist.
        progress = {t.id: t.current_count for t in self.state.tasks}
        return self.orchestrator.set_detector_enabled(name, enabled, progress=progress)

    # ---- owner binding ----

    def bind_owner(self, owner_id: str | None) -> bool:
        """
        Tie the checklist to a session owner.

        A checklist that belongs to someone else is replaced by catalog defaults.
        Returns True if the state was replaced.
        """
        if not owner_id:
            return False

        state = self.state
        if state.owner_id == owner_id:
            return False

        if state.owner_id is None:
            state.owner_id = owner_id
            logger.info("Checklist bound to owner %s", owner_id)
            self.store.request_save(state)
            return False

        logger.warning("Checklist belongs to owner %s, not %s; starting from defaults", state.owner_id, owner_id)
        task_api.reset_to_defaults(state, now=self._clock())
        state.owner_id = owner_id
        self._rezero_detectors(t.id for t in state.tasks)
        self.store.request_save(state)
        return True

    # ---- event handlers ----

    def _on_tick(self, event: SessionEvent) -> None:
        self.tick(event.at)

    def _on_session_start(self, event: SessionEvent) -> None:
        owner_id = event.payload.get("owner_id")
        self.bind_owner(owner_id if isinstance(owner_id, str) else None)

    def _on_detection(self, task_id: str, completed: bool, detector_name: str) -> None:
        progress = self.orchestrator.get_progress(task_id)
        changed = task_api.apply_detection(
            self.state,
            task_id,
            completed,
            progress=progress,
            now=self._clock(),
        )
        if changed:
            logger.debug("Detection from %s applied to %s", detector_name, task_id)
            self.store.request_save(self.state)

    def _rezero_detectors(self, task_ids) -> None:
        detectable = self.orchestrator.detectable_task_ids()
        for task_id in task_ids:
            if task_id in detectable:
                self.orchestrator.restore_progress(task_id, 0)
