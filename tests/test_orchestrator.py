# tests/test_orchestrator.py

from __future__ import annotations

import logging

import pytest

from dailies_checklist.detectors.orchestrator import DetectionOrchestrator, DetectorRegistrationError
from dailies_checklist.tasks.reset_scheduler import ResetApplied

from .fakes import ScriptedDetector, utc


def _collect(orch: DetectionOrchestrator) -> list[tuple[str, bool, str]]:
    seen: list[tuple[str, bool, str]] = []
    orch.subscribe(lambda task_id, completed, name: seen.append((task_id, completed, name)))
    return seen


def test_register_and_delegate_get_state() -> None:
    orch = DetectionOrchestrator()
    det = ScriptedDetector("a", ["t1", "t2"])

    assert orch.register(det) is True
    assert det.init_calls == 1
    assert orch.detectable_task_ids() == {"t1", "t2"}

    det.states["t1"] = True
    assert orch.get_state("t1") is True
    assert orch.get_state("t2") is False
    assert orch.get_state("unknown") is None


def test_first_registrant_wins_for_a_task_id(caplog: pytest.LogCaptureFixture) -> None:
    orch = DetectionOrchestrator()
    first = ScriptedDetector("first", ["shared", "x"])
    second = ScriptedDetector("second", ["shared", "y"])

    orch.register(first)
    with caplog.at_level(logging.WARNING):
        assert orch.register(second) is True

    assert orch.get_detector("shared") is first
    assert orch.get_detector("y") is second
    assert orch.owned_task_ids("second") == ["y"]
    assert "already owned by detector first" in caplog.text

    seen = _collect(orch)
    second.fire("shared", True)
    first.fire("shared", True)
    assert seen == [("shared", True, "first")]


def test_duplicate_detector_name_is_ignored() -> None:
    orch = DetectionOrchestrator()
    orch.register(ScriptedDetector("a", ["t1"]))
    dup = ScriptedDetector("a", ["t2"])

    assert orch.register(dup) is False
    assert dup.init_calls == 0
    assert "t2" not in orch.detectable_task_ids()


def test_failed_initialize_unwinds_and_later_detector_works() -> None:
    orch = DetectionOrchestrator()
    seen = _collect(orch)
    broken = ScriptedDetector("broken", ["a1", "a2"], fail_init=True)

    with pytest.raises(DetectorRegistrationError) as excinfo:
        orch.register(broken)

    assert excinfo.value.detector_name == "broken"
    assert isinstance(excinfo.value.__cause__, RuntimeError)

    # No trace left behind.
    assert orch.get_state("a1") is None
    assert orch.get_detector("a1") is None
    assert "broken" not in orch.registered_detectors()
    assert broken.listeners == []
    assert broken.dispose_calls == 1

    # A detector registered afterwards claims the same ids and works normally.
    healthy = ScriptedDetector("healthy", ["a1"])
    assert orch.register(healthy) is True
    healthy.fire("a1", True)

    assert orch.get_state("a1") is True
    assert seen == [("a1", True, "healthy")]

    # The broken one can't sneak changes in.
    broken.fire("a2", True)
    assert seen == [("a1", True, "healthy")]


def test_failed_subscribe_releases_task_claims() -> None:
    orch = DetectionOrchestrator()
    broken = ScriptedDetector("broken", ["a1"], fail_subscribe=True)

    with pytest.raises(DetectorRegistrationError):
        orch.register(broken)

    assert "a1" not in orch.detectable_task_ids()
    assert "broken" not in orch.registered_detectors()
    assert broken.init_calls == 0

    healthy = ScriptedDetector("healthy", ["a1"])
    assert orch.register(healthy) is True
    assert orch.get_detector("a1") is healthy


def test_unmute_reseeds_counters_from_progress() -> None:
    orch = DetectionOrchestrator()
    det = ScriptedDetector("a", ["t1", "t2"])
    orch.register(det, enabled=False)

    det.fire("t1", False, count=2)
    assert orch.set_detector_enabled("a", True, progress={"t1": 0})

    assert det.counts == {"t1": 0, "t2": 0}
    assert orch.get_progress("t1") == 0

    # Already enabled: nothing to re-seed.
    det.counts["t1"] = 1
    orch.set_detector_enabled("a", True, progress={"t1": 0})
    assert det.counts["t1"] == 1


def test_register_all_collects_failures() -> None:
    orch = DetectionOrchestrator()
    failures = orch.register_all(
        [
            (ScriptedDetector("ok", ["t1"]), True),
            (ScriptedDetector("bad", ["t2"], fail_init=True), True),
            (ScriptedDetector("muted", ["t3"]), False),
        ]
    )

    assert [f.detector_name for f in failures] == ["bad"]
    assert orch.registered_detectors() == ["ok", "muted"]
    assert orch.is_muted("muted")


def test_muted_or_disabled_detector_reports_unknown() -> None:
    orch = DetectionOrchestrator()
    det = ScriptedDetector("a", ["t1"])
    orch.register(det)
    seen = _collect(orch)
    det.states["t1"] = True

    assert orch.set_detector_enabled("a", False)
    assert orch.get_state("t1") is None
    assert orch.get_progress("t1") is None
    det.fire("t1", True)
    assert seen == []

    assert orch.set_detector_enabled("a", True)
    assert orch.get_state("t1") is True

    det.enabled = False
    assert orch.get_state("t1") is None

    assert orch.set_detector_enabled("missing", False) is False


def test_listener_failure_is_isolated_and_logged(caplog: pytest.LogCaptureFixture) -> None:
    orch = DetectionOrchestrator()
    det = ScriptedDetector("flaky", ["t1"])
    orch.register(det)

    def broken(*_args) -> None:
        raise ValueError("listener bug")

    orch.subscribe(broken)
    seen = _collect(orch)

    with caplog.at_level(logging.ERROR):
        det.fire("t1", True)

    assert seen == [("t1", True, "flaky")]
    assert "detector=flaky" in caplog.text


def test_get_state_failure_returns_unknown(caplog: pytest.LogCaptureFixture) -> None:
    orch = DetectionOrchestrator()
    orch.register(ScriptedDetector("boom", ["t1"], fail_get_state=True))
    orch.register(ScriptedDetector("fine", ["t2"]))

    with caplog.at_level(logging.ERROR):
        assert orch.get_state("t1") is None
    assert orch.get_state("t2") is False
    assert "Detector boom failed get_state(t1)" in caplog.text


def test_reset_limitations_and_progress_fan_in() -> None:
    orch = DetectionOrchestrator()
    a = ScriptedDetector("a", ["t1"])
    b = ScriptedDetector("b", ["t2"])
    orch.register(a)
    orch.register(b)

    event = ResetApplied("daily", ("t1", "t2"), utc(2024, 1, 3, 15, 0), utc(2024, 1, 3, 15, 0, 1))
    orch.notify_reset(event)
    assert a.resets == [event]
    assert b.resets == [event]

    orch.restore_progress("t2", 4)
    assert orch.get_progress("t2") == 4
    orch.restore_progress("nobody", 1)

    assert [lim.description for lim in orch.limitations()] == ["a is scripted", "b is scripted"]


def test_unregister_removes_mappings_and_disposes() -> None:
    orch = DetectionOrchestrator()
    det = ScriptedDetector("a", ["t1"])
    orch.register(det)

    assert orch.unregister("a") is True
    assert det.dispose_calls == 1
    assert det.listeners == []
    assert orch.get_state("t1") is None
    assert orch.unregister("a") is False


def test_dispose_unsubscribes_everything_before_disposing() -> None:
    journal: list[tuple[str, str]] = []
    orch = DetectionOrchestrator()
    orch.register(ScriptedDetector("a", ["t1"], journal=journal))
    orch.register(ScriptedDetector("b", ["t2"], journal=journal))
    journal.clear()

    orch.dispose()
    orch.dispose()

    assert journal == [
        ("a", "unsubscribe"),
        ("b", "unsubscribe"),
        ("a", "dispose"),
        ("b", "dispose"),
    ]
    assert orch.registered_detectors() == []
    assert orch.detectable_task_ids() == frozenset()

    with pytest.raises(RuntimeError):
        orch.register(ScriptedDetector("c", ["t3"]))
