import pytest

from riya_core.domain.exceptions import FlushInFlight, MessageLimitReached
from riya_core.domain.session import GateState, MessageLimitGate


def test_gate_counts_only_committed_flushes():
    gate = MessageLimitGate(limit=25)
    gate.begin_flush()
    assert gate.in_flight
    gate.abort_flush()
    assert gate.state is GateState.ACTIVE
    assert gate.count == 0

    gate.begin_flush()
    assert gate.commit_flush(3) is GateState.ACTIVE
    assert gate.count == 3
    assert gate.remaining == 22


def test_gate_single_flight():
    gate = MessageLimitGate(limit=5)
    gate.begin_flush()
    with pytest.raises(FlushInFlight):
        gate.begin_flush()


def test_gate_blocks_when_batch_crosses_limit():
    gate = MessageLimitGate(limit=25, count=24)
    gate.check_can_send()
    gate.begin_flush()
    assert gate.commit_flush(2) is GateState.BLOCKED
    assert gate.count == 26
    with pytest.raises(MessageLimitReached) as exc:
        gate.check_can_send()
    assert exc.value.code == "GUEST_LIMIT_REACHED"
    with pytest.raises(MessageLimitReached):
        gate.begin_flush()


def test_gate_restored_at_limit_is_blocked():
    gate = MessageLimitGate(limit=25, count=25)
    assert gate.is_blocked
    assert gate.remaining == 0


def test_gate_converted_is_terminal():
    gate = MessageLimitGate(limit=2, count=2)
    gate.mark_converted()
    assert gate.state is GateState.CONVERTED
    gate.check_can_send()
    assert MessageLimitGate(limit=2, converted=True).state is GateState.CONVERTED


def test_gate_rejects_bad_arguments():
    with pytest.raises(ValueError):
        MessageLimitGate(limit=0)
    with pytest.raises(ValueError):
        MessageLimitGate(limit=3, count=-1)
    gate = MessageLimitGate(limit=3)
    with pytest.raises(FlushInFlight):
        gate.commit_flush(1)
