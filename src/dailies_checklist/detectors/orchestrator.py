# src/dailies_checklist/detectors/orchestrator.py

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping

from ..core.ports import TaskDetector
from ..tasks.reset_scheduler import ResetApplied
from ..tasks.task_models import DetectionLimitation

logger = logging.getLogger(__name__)

# (task_id, completed, detector_name)
OrchestratorListener = Callable[[str, bool, str], None]


class DetectorRegistrationError(RuntimeError):
    """initialize() failed; the registration was fully unwound."""

    def __init__(self, detector_name: str, cause: BaseException) -> None:
        super().__init__(f"detector {detector_name!r} failed to initialize: {cause}")
        self.detector_name = detector_name
        self.cause = cause


class DetectionOrchestrator:
    """
    Owns the task_id -> detector registry and fans detector changes out as
    (task_id, completed, detector_name).

    - first registrant for a task id wins; later claims are logged and skipped
    - a detector that fails initialize() leaves no trace
    - detector failures are caught here and logged with the detector's name
    - `set_detector_enabled` mutes a detector without disposing it
    """

    def __init__(self) -> None:
        self._detectors: dict[str, TaskDetector] = {}
        self._task_owner: dict[str, str] = {}
        self._muted: set[str] = set()
        # detector name -> unsubscribe callable for its change notifications
        self._handles: dict[str, Callable[[], None]] = {}
        self._listeners: list[OrchestratorListener] = []
        self._disposed = False

    # ---- registration ----

    def register(self, detector: TaskDetector, *, enabled: bool = True) -> bool:
        """
        Add and initialize a detector.

        Returns False (and logs) for a duplicate detector name.
        Raises DetectorRegistrationError if initialize() fails.
        """
        if self._disposed:
            raise RuntimeError("orchestrator is disposed")

        name = detector.name
        if name in self._detectors:
            logger.warning("Detector %s already registered; ignoring duplicate", name)
            return False

        claimed: list[str] = []
        for task_id in sorted(detector.task_ids):
            owner = self._task_owner.get(task_id)
            if owner is not None:
                logger.warning("Task %s already owned by detector %s; %s skipped for it", task_id, owner, name)
                continue
            self._task_owner[task_id] = name
            claimed.append(task_id)

        self._detectors[name] = detector
        if not enabled:
            self._muted.add(name)

        try:
            self._handles[name] = detector.subscribe(
                lambda task_id, completed, _name=name: self._on_detector_change(_name, task_id, completed)
            )
            detector.initialize()
        except Exception as e:
            logger.exception("Detector %s failed to initialize; unwinding registration", name)
            self._unwind(name, claimed)
            try:
                detector.dispose()
            except Exception:
                logger.exception("Detector %s failed to dispose after init failure", name)
            raise DetectorRegistrationError(name, e) from e

        logger.info(
            "Detector %s registered: %d tasks%s",
            name,
            len(claimed),
            "" if enabled else " (muted)",
        )
        return True

    def register_all(self, detectors: Iterable[tuple[TaskDetector, bool]]) -> list[DetectorRegistrationError]:
        """Register each (detector, enabled). Failures are collected, not raised."""
        failures: list[DetectorRegistrationError] = []
        for detector, enabled in detectors:
            try:
                self.register(detector, enabled=enabled)
            except DetectorRegistrationError as e:
                failures.append(e)
        return failures

    def unregister(self, name: str) -> bool:
        detector = self._detectors.get(name)
        if detector is None:
            return False

        owned = [tid for tid, owner in self._task_owner.items() if owner == name]
        self._unwind(name, owned)
        try:
            detector.dispose()
        except Exception:
            logger.exception("Detector %s failed to dispose", name)

        logger.info("Detector %s unregistered", name)
        return True

    def _unwind(self, name: str, task_ids: Iterable[str]) -> None:
        unsubscribe = self._handles.pop(name, None)
        if unsubscribe is not None:
            try:
                unsubscribe()
            except Exception:
                logger.exception("Failed to unsubscribe from detector %s", name)

        for task_id in task_ids:
            if self._task_owner.get(task_id) == name:
                del self._task_owner[task_id]

        self._detectors.pop(name, None)
        self._muted.discard(name)

    # ---- queries ----

    def get_state(self, task_id: str) -> bool | None:
        detector = self._active_owner(task_id)
        if detector is None:
            return None
        try:
            return detector.get_state(task_id)
        except Exception:
            logger.exception("Detector %s failed get_state(%s)", detector.name, task_id)
            return None

    def get_progress(self, task_id: str) -> int | None:
        detector = self._active_owner(task_id)
        if detector is None:
            return None
        try:
            return detector.progress(task_id)
        except Exception:
            logger.exception("Detector %s failed progress(%s)", detector.name, task_id)
            return None

    def _active_owner(self, task_id: str) -> TaskDetector | None:
        name = self._task_owner.get(task_id)
        if name is None or name in self._muted:
            return None
        detector = self._detectors[name]
        if not detector.enabled:
            return None
        return detector

    def get_detector(self, task_id: str) -> TaskDetector | None:
        name = self._task_owner.get(task_id)
        return None if name is None else self._detectors.get(name)

    def detectable_task_ids(self) -> frozenset[str]:
        return frozenset(self._task_owner)

    def owned_task_ids(self, name: str) -> list[str]:
        return sorted(tid for tid, owner in self._task_owner.items() if owner == name)

    def registered_detectors(self) -> list[str]:
        return list(self._detectors)

    def set_detector_enabled(
        self,
        name: str,
        enabled: bool,
        *,
        progress: Mapping[str, int] | None = None,
    ) -> bool:
        """
        Mute or unmute a detector.

        A muted detector keeps counting but its changes are dropped, so on unmute
        its counters are re-seeded from `progress` (task id -> current count).
        """
        if name not in self._detectors:
            logger.warning("set_detector_enabled: unknown detector %s", name)
            return False
        if enabled:
            was_muted = name in self._muted
            self._muted.discard(name)
            if was_muted and progress is not None:
                for task_id in self.owned_task_ids(name):
                    if task_id in progress:
                        self.restore_progress(task_id, progress[task_id])
        else:
            self._muted.add(name)
        logger.info("Detector %s %s", name, "unmuted" if enabled else "muted")
        return True

    def is_muted(self, name: str) -> bool:
        return name in self._muted

    def limitations(self) -> list[DetectionLimitation]:
        out: list[DetectionLimitation] = []
        for name, detector in self._detectors.items():
            try:
                out.extend(detector.limitations())
            except Exception:
                logger.exception("Detector %s failed to report limitations", name)
        return out

    # ---- fan-in from the rest of the system ----

    def notify_reset(self, event: ResetApplied) -> None:
        for name, detector in list(self._detectors.items()):
            try:
                detector.on_reset(event)
            except Exception:
                logger.exception("Detector %s failed handling reset %s", name, event.rule_id)

    def restore_progress(self, task_id: str, count: int) -> None:
        detector = self.get_detector(task_id)
        if detector is None:
            return
        try:
            detector.restore_progress(task_id, count)
        except Exception:
            logger.exception("Detector %s failed restore_progress(%s)", detector.name, task_id)

    # ---- fan-out ----

    def subscribe(self, listener: OrchestratorListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _on_detector_change(self, name: str, task_id: str, completed: bool) -> None:
        if self._disposed:
            return
        if name in self._muted:
            logger.debug("Change from muted detector %s ignored (%s)", name, task_id)
            return
        if self._task_owner.get(task_id) != name:
            logger.debug("Change for %s from non-owner %s ignored", task_id, name)
            return

        for listener in list(self._listeners):
            try:
                listener(task_id, completed, name)
            except Exception:
                logger.exception("Change handling failed detector=%s task=%s", name, task_id)

    # ---- shutdown ----

    def dispose(self) -> None:
        """Unsubscribe every change handler, then dispose every detector, then clear."""
        if self._disposed:
            return
        self._disposed = True

        for name, unsubscribe in list(self._handles.items()):
            try:
                unsubscribe()
            except Exception:
                logger.exception("Failed to unsubscribe from detector %s", name)
        self._handles.clear()

        for name, detector in list(self._detectors.items()):
            try:
                detector.dispose()
            except Exception:
                logger.exception("Detector %s failed to dispose", name)

        self._detectors.clear()
        self._task_owner.clear()
        self._muted.clear()
        self._listeners.clear()
        logger.info("Detection orchestrator disposed")
