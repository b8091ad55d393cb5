# src/dailies_checklist/detectors/base.py

from __future__ import annotations

import abc
import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timedelta
from typing import Any

from ..core.ports import ChangeListener, EventFeed, SubscriptionHandle, TransitionSafety
from ..tasks.reset_scheduler import ResetApplied
from ..tasks.task_models import DetectionLimitation, utc_now

logger = logging.getLogger(__name__)

DEFAULT_DEDUPE_WINDOW_SECONDS = 5.0


class DedupeWindow:
    """
    Remembers recently seen event identities.

    The same identity seen again within `window_seconds` of the last sighting
    is a duplicate. Old entries are pruned on every check.
    """

    def __init__(self, window_seconds: float = DEFAULT_DEDUPE_WINDOW_SECONDS) -> None:
        self._window = timedelta(seconds=max(0.0, float(window_seconds)))
        self._seen: dict[str, datetime] = {}

    def is_duplicate(self, identity: str, at: datetime) -> bool:
        self._prune(at)

        last = self._seen.get(identity)
        if last is not None and abs(at - last) <= self._window:
            return True

        self._seen[identity] = at
        return False

    def _prune(self, now: datetime) -> None:
        stale = [k for k, t in self._seen.items() if now - t > self._window]
        for k in stale:
            del self._seen[k]

    def clear(self) -> None:
        self._seen.clear()

    def __len__(self) -> int:
        return len(self._seen)


class BaseDetector(abc.ABC):
    """
    Shared detector plumbing: progress counters, dedupe, subscriptions, listeners.

    A task is complete when its progress reaches its max (1 for plain tasks).
    Subclasses subscribe in _on_initialize() via self._subscribe(); every handler
    is wrapped so a failure becomes a logged no-op.
    """

    def __init__(
        self,
        name: str,
        task_max: Mapping[str, int],
        *,
        feed: EventFeed,
        guard: TransitionSafety | None = None,
        dedupe_window_seconds: float = DEFAULT_DEDUPE_WINDOW_SECONDS,
        clock: Callable[[], datetime] = utc_now,
        enabled: bool = True,
    ) -> None:
        self._name = name
        self._max = {tid: max(1, int(m)) for tid, m in task_max.items()}
        self._progress = {tid: 0 for tid in self._max}

        self._feed = feed
        self._guard = guard
        self._dedupe = DedupeWindow(dedupe_window_seconds)
        self._clock = clock

        self._handles: list[SubscriptionHandle] = []
        self._listeners: list[ChangeListener] = []
        self._initialized = False
        self._disposed = False

        self.enabled = enabled

    # ---- identity ----

    @property
    def name(self) -> str:
        return self._name

    @property
    def task_ids(self) -> frozenset[str]:
        return frozenset(self._max)

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self._name!r}, enabled={self.enabled})"

    # ---- lifecycle ----

    def initialize(self) -> None:
        if self._disposed:
            raise RuntimeError(f"detector {self._name} is disposed")
        if self._initialized:
            logger.debug("Detector %s already initialized", self._name)
            return

        try:
            self._on_initialize()
        except Exception:
            # Leave nothing half-subscribed behind.
            self._unsubscribe_all()
            raise

        self._initialized = True
        logger.info("Detector %s initialized (%d subscriptions)", self._name, len(self._handles))

    @abc.abstractmethod
    def _on_initialize(self) -> None:
        """Subscribe to the event kinds this detector needs."""

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._unsubscribe_all()
        self._listeners.clear()
        logger.debug("Detector %s disposed", self._name)

    def _subscribe(self, kind: str, handler: Callable[[Any], None]) -> None:
        handle = self._feed.subscribe(kind, self._guarded(handler))
        self._handles.append(handle)

    def _unsubscribe_all(self) -> None:
        handles, self._handles = self._handles, []
        for handle in handles:
            try:
                self._feed.unsubscribe(handle)
            except Exception:
                logger.exception("Detector %s failed to unsubscribe", self._name)

    def _guarded(self, handler: Callable[[Any], None]) -> Callable[[Any], None]:
        def _run(event: Any) -> None:
            if self._disposed or not self.enabled:
                return
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Detector %s failed handling %s",
                    self._name,
                    getattr(event, "kind", type(event).__name__),
                )

        return _run

    # ---- queries ----

    def safe_to_read(self) -> bool:
        return self._guard is None or not self._guard.in_transition()

    def get_state(self, task_id: str) -> bool | None:
        if self._disposed or not self.enabled or task_id not in self._max:
            return None
        if not self.safe_to_read():
            return None
        return self._progress[task_id] >= self._max[task_id]

    def progress(self, task_id: str) -> int | None:
        if self._disposed:
            return None
        return self._progress.get(task_id)

    def max_count(self, task_id: str) -> int | None:
        return self._max.get(task_id)

    def limitations(self) -> Iterable[DetectionLimitation]:
        return ()

    # ---- change notifications ----

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self, task_id: str, completed: bool) -> None:
        for listener in list(self._listeners):
            listener(task_id, completed)

    # ---- counters ----

    def _record(self, task_id: str, identity: str, at: datetime | None = None, amount: int = 1) -> bool:
        """Count one observation unless it's a duplicate. Returns True if progress changed."""
        if task_id not in self._max:
            logger.warning("Detector %s: observation for unowned task %s", self._name, task_id)
            return False

        at = at or self._clock()
        if self._dedupe.is_duplicate(f"{task_id}|{identity}", at):
            logger.debug("Detector %s: duplicate %s for %s suppressed", self._name, identity, task_id)
            return False

        return self._set_progress(task_id, self._progress[task_id] + amount)

    def _set_progress(self, task_id: str, value: int) -> bool:
        top = self._max[task_id]
        value = min(max(0, int(value)), top)
        if value == self._progress[task_id]:
            return False

        self._progress[task_id] = value
        logger.info("Detector %s: %s progress %d/%d", self._name, task_id, value, top)
        self._emit(task_id, value >= top)
        return True

    def restore_progress(self, task_id: str, count: int) -> None:
        """Seed a counter from persisted state. Silent: the state already says this."""
        if task_id not in self._max:
            return
        self._progress[task_id] = min(max(0, int(count)), self._max[task_id])
        logger.debug("Detector %s: restored %s progress=%d", self._name, task_id, self._progress[task_id])

    def on_reset(self, event: ResetApplied) -> None:
        """Re-zero counters in lockstep with a boundary clear. No change notification."""
        zeroed = [tid for tid in event.task_ids if tid in self._progress]
        for tid in zeroed:
            self._progress[tid] = 0
        if zeroed:
            logger.debug("Detector %s: counters re-zeroed by %s: %s", self._name, event.rule_id, zeroed)
