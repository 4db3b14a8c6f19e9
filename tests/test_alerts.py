from __future__ import annotations

from datetime import timezone

from portal_tracker.state import AlertLevel, Severity, TrackerState
from portal_tracker.tracking.alerts import AlertStateMachine, classify_queues
from portal_tracker.tracking.log_buffer import LogBuffer

from conftest import T0


def _machine() -> tuple[AlertStateMachine, TrackerState, LogBuffer]:
    state = TrackerState()
    buf = LogBuffer(timezone.utc, clock=lambda: T0)
    return AlertStateMachine(state, buf), state, buf


def test_red_then_steady_then_normal_logs_once_per_transition() -> None:
    machine, state, buf = _machine()

    first = machine.evaluate({"general": 260})
    assert first.level is AlertLevel.RED
    assert first.triggering_queues == ("G",)
    assert first.changed is True
    assert len(buf) == 1
    assert buf.entries()[0].message == "Need to clear G"
    assert buf.entries()[0].severity is Severity.ALERT

    for _ in range(5):
        again = machine.evaluate({"general": 300})
        assert again.level is AlertLevel.RED
        assert again.changed is False
    assert len(buf) == 1

    back = machine.evaluate({"general": 30})
    assert back.level is AlertLevel.NORMAL
    assert len(buf) == 2
    assert buf.entries()[0].message == "Queues returned to normal"
    assert buf.entries()[0].severity is Severity.SUCCESS
    assert state.last_alert_level is AlertLevel.NORMAL


def test_triggering_set_change_while_red_is_silent() -> None:
    machine, _, buf = _machine()
    machine.evaluate({"member": 21})
    result = machine.evaluate({"member": 21, "fraud": 71, "edited": 251})
    assert result.triggering_queues == ("M", "FRD", "E")
    assert result.changed is False
    assert len(buf) == 1


def test_yellow_transition_logs_control_warning() -> None:
    machine, _, buf = _machine()
    result = machine.evaluate({"general": 200})
    assert result.level is AlertLevel.YELLOW
    assert buf.entries()[0].message == "Need to control the portal"
    assert buf.entries()[0].severity is Severity.WARNING

    machine.evaluate({"edited": 150})
    assert len(buf) == 1

    machine.evaluate({"general": 251})
    assert buf.entries()[0].message == "Need to clear G"

    machine.evaluate({"edited": 160})
    assert len(buf) == 3
    assert buf.entries()[0].message == "Need to control the portal"


def test_normal_to_normal_is_silent() -> None:
    machine, _, buf = _machine()
    machine.evaluate({})
    machine.evaluate({"general": 10, "verification": 2000})
    assert len(buf) == 0


def test_classify_thresholds_are_strict_for_red() -> None:
    assert classify_queues({"member": 20}) == (AlertLevel.NORMAL, ())
    assert classify_queues({"listing_fee": 21}) == (AlertLevel.RED, ("L",))
    assert classify_queues({"manager": 101}) == (AlertLevel.RED, ("MGR",))
    assert classify_queues({"verification": 2000}) == (AlertLevel.NORMAL, ())
    assert classify_queues({"verification": 2001}) == (AlertLevel.RED, ("V",))
    assert classify_queues({"general": 199, "edited": 149}) == (AlertLevel.NORMAL, ())
    # red on one queue dominates a yellow on another
    assert classify_queues({"fraud": 80, "general": 220}) == (AlertLevel.RED, ("FRD",))


def test_reset_restores_normal_baseline() -> None:
    machine, state, buf = _machine()
    machine.evaluate({"general": 260})
    machine.reset()
    assert state.last_alert_level is AlertLevel.NORMAL

    machine.evaluate({"general": 260})
    assert len(buf) == 2
