import pytest

from commission_engine.models.commission import CalculationStatus, PaymentStatus
from commission_engine.services.commission.errors import InvalidStatusTransition
from commission_engine.services.commission.state_machine import (
    CALCULATION_TRANSITIONS,
    PAYMENT_TRANSITIONS,
    can_transition,
    get_allowed_transitions,
    get_transition_action,
    is_terminal,
    validate_payment_transition,
    validate_transition,
)


ALLOWED = {
    ("pending", "approved"),
    ("pending", "rejected"),
    ("pending", "on_hold"),
    ("on_hold", "approved"),
    ("on_hold", "rejected"),
    ("approved", "paid"),
}


@pytest.mark.parametrize("current", [s.value for s in CalculationStatus])
@pytest.mark.parametrize("new", [s.value for s in CalculationStatus])
def test_calculation_transition_table(current, new):
    assert can_transition(current, new) is ((current, new) in ALLOWED)


def test_every_status_has_an_entry():
    assert set(CALCULATION_TRANSITIONS) == {s.value for s in CalculationStatus}
    assert set(PAYMENT_TRANSITIONS) == {s.value for s in PaymentStatus}


def test_enum_members_are_accepted():
    assert can_transition(CalculationStatus.APPROVED, CalculationStatus.PAID)
    assert get_allowed_transitions(CalculationStatus.ON_HOLD) == ["approved", "rejected"]


def test_terminal_statuses():
    assert is_terminal("paid")
    assert is_terminal("rejected")
    assert not is_terminal("approved")
    assert is_terminal("completed", PAYMENT_TRANSITIONS)


def test_pending_to_paid_is_rejected():
    with pytest.raises(InvalidStatusTransition) as exc_info:
        validate_transition("pending", "paid")
    assert exc_info.value.details["allowed"] == ["approved", "rejected", "on_hold"]


def test_same_status_is_rejected():
    with pytest.raises(InvalidStatusTransition):
        validate_transition("approved", "approved")


def test_terminal_message():
    with pytest.raises(InvalidStatusTransition, match="terminal state"):
        validate_transition("paid", "approved")


def test_transition_action_names():
    assert get_transition_action("pending", "on_hold") == "Put on Hold"
    assert get_transition_action("paid", "pending") == "paid -> pending"


@pytest.mark.parametrize("current, new", [
    ("pending", "processing"),
    ("pending", "failed"),
    ("processing", "completed"),
    ("processing", "failed"),
    ("failed", "processing"),
])
def test_payment_transitions_allowed(current, new):
    validate_payment_transition(current, new)


@pytest.mark.parametrize("current, new", [
    ("pending", "completed"),
    ("completed", "failed"),
    ("failed", "completed"),
    ("processing", "pending"),
])
def test_payment_transitions_rejected(current, new):
    with pytest.raises(InvalidStatusTransition):
        validate_payment_transition(current, new)
