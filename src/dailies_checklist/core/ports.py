# src/dailies_checklist/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
The host session (event feed + readable session state) stays swappable, and
tests can drive detectors with plain fakes.
"""

from collections.abc import Callable, Iterable
from typing import Any, Protocol

from ..tasks.reset_scheduler import ResetApplied
from ..tasks.task_models import DetectionLimitation

# Opaque handle returned by EventFeed.subscribe; only meaningful to the same feed.
SubscriptionHandle = Any
EventHandler = Callable[[Any], None]
ChangeListener = Callable[[str, bool], None]


class EventFeed(Protocol):
    """
    Named lifecycle signals from the host session, delivered on the primary context.

    Each subscribe() must be undone by exactly one unsubscribe(handle).
    """

    def subscribe(self, kind: str, handler: EventHandler) -> SubscriptionHandle: ...
    def unsubscribe(self, handle: SubscriptionHandle) -> None: ...


class TransitionSafety(Protocol):
    """True while externally-owned state must not be read (zoning, cutscene, ...)."""

    def in_transition(self) -> bool: ...


class SessionStateReader(TransitionSafety, Protocol):
    """
    Read-only view into externally-owned session state.

    Callers must check in_transition() first; values read mid-transition are garbage.
    """

    def content_roulette_id(self) -> int: ...
    def beast_tribe_allowances_remaining(self) -> int | None: ...


class TaskDetector(Protocol):
    """
    One detector per activity family.

    - initialize() is idempotent and subscribes whatever events it needs
    - get_state() returns None ("unknown") when it can't answer safely
    - dispose() is idempotent and unsubscribes everything initialize() did
    - never raises from steady-state event handling
    """

    @property
    def name(self) -> str: ...

    @property
    def task_ids(self) -> frozenset[str]: ...

    enabled: bool

    def initialize(self) -> None: ...
    def get_state(self, task_id: str) -> bool | None: ...
    def progress(self, task_id: str) -> int | None: ...
    def dispose(self) -> None: ...

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]: ...
    def limitations(self) -> Iterable[DetectionLimitation]: ...

    def on_reset(self, event: ResetApplied) -> None: ...
    def restore_progress(self, task_id: str, count: int) -> None: ...
