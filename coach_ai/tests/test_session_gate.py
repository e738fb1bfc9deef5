import pytest

from coach_ai.core.exceptions import SessionClosedError
from coach_ai.schemas.generation import SessionStatus
from coach_ai.services.orchestration.session_gate import SessionProgressGate


def test_unknown_session_starts_active():
    gate = SessionProgressGate(call_limit=3)
    assert gate.status("s1") is None
    assert gate.can_generate("s1")

    state = gate.status("s1")
    assert state.status is SessionStatus.ACTIVE
    assert state.calls_made == 0
    assert state.call_limit == 3


def test_exhausted_after_call_limit():
    gate = SessionProgressGate(call_limit=3)
    for expected in (1, 2):
        state = gate.record_call("s1")
        assert state.calls_made == expected
        assert state.status is SessionStatus.ACTIVE

    state = gate.record_call("s1")
    assert state.calls_made == 3
    assert state.status is SessionStatus.EXHAUSTED
    assert not gate.can_generate("s1")

    with pytest.raises(SessionClosedError) as exc_info:
        gate.record_call("s1")
    assert exc_info.value.status_code == 409
    assert gate.status("s1").calls_made == 3


def test_completion_is_terminal():
    gate = SessionProgressGate(call_limit=5)
    gate.record_call("s1")
    state = gate.mark_completed("s1")

    assert state.status is SessionStatus.COMPLETED
    assert state.calls_made == 1
    assert not gate.can_generate("s1")
    with pytest.raises(SessionClosedError):
        gate.record_call("s1")


def test_completion_does_not_override_exhaustion():
    gate = SessionProgressGate(call_limit=1)
    gate.record_call("s1")
    assert gate.mark_completed("s1").status is SessionStatus.EXHAUSTED


def test_sessions_are_independent():
    gate = SessionProgressGate(call_limit=1)
    gate.record_call("a")
    assert not gate.can_generate("a")
    assert gate.can_generate("b")


def test_returned_state_is_a_copy():
    gate = SessionProgressGate(call_limit=2)
    state = gate.record_call("s1")
    state.calls_made = 99
    assert gate.status("s1").calls_made == 1


def test_evict_and_clear():
    gate = SessionProgressGate()
    gate.record_call("a")
    gate.record_call("b")

    assert gate.evict("a")
    assert not gate.evict("a")
    assert len(gate) == 1
    gate.clear()
    assert len(gate) == 0


def test_call_limit_must_be_positive():
    with pytest.raises(ValueError):
        SessionProgressGate(call_limit=0)
