"""
Commission State Machines

This module is the single source of truth for calculation and payment status
transitions. The ledger and the batcher validate every change through it.

Calculation lifecycle:

    pending ──► approved ──► paid
       │  ▲        ▲
       │  └─ on_hold
       └──► rejected ◄┘

Payment lifecycle:

    pending ──► processing ──► completed
       │            │
       └──► failed ◄┘
              │
              └──► processing (retry)
"""

from typing import Dict, List

from commission_engine.models.commission import CalculationStatus, PaymentStatus
from commission_engine.services.commission.errors import InvalidStatusTransition


# =============================================================================
# TRANSITION RULES
# =============================================================================

# current_status -> [allowed next statuses]
CALCULATION_TRANSITIONS: Dict[str, List[str]] = {
    CalculationStatus.PENDING.value: [
        CalculationStatus.APPROVED.value,   # Approve
        CalculationStatus.REJECTED.value,   # Reject
        CalculationStatus.ON_HOLD.value,    # Hold for review
    ],
    CalculationStatus.ON_HOLD.value: [
        CalculationStatus.APPROVED.value,   # Release
        CalculationStatus.REJECTED.value,   # Reject after review
    ],
    CalculationStatus.APPROVED.value: [
        CalculationStatus.PAID.value,       # Claimed by a payment batch
    ],
    CalculationStatus.PAID.value: [],       # Terminal
    CalculationStatus.REJECTED.value: [],   # Terminal
}

PAYMENT_TRANSITIONS: Dict[str, List[str]] = {
    PaymentStatus.PENDING.value: [
        PaymentStatus.PROCESSING.value,
        PaymentStatus.FAILED.value,
    ],
    PaymentStatus.PROCESSING.value: [
        PaymentStatus.COMPLETED.value,
        PaymentStatus.FAILED.value,
    ],
    PaymentStatus.FAILED.value: [
        PaymentStatus.PROCESSING.value,     # Retry
    ],
    PaymentStatus.COMPLETED.value: [],      # Terminal
}

TRANSITION_ACTIONS: Dict[tuple, str] = {
    ("pending", "approved"): "Approve",
    ("pending", "rejected"): "Reject",
    ("pending", "on_hold"): "Put on Hold",
    ("on_hold", "approved"): "Release and Approve",
    ("on_hold", "rejected"): "Reject",
    ("approved", "paid"): "Mark Paid",
}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def _value(status) -> str:
    return getattr(status, "value", status)


def can_transition(current_status, new_status, transitions: Dict[str, List[str]] = CALCULATION_TRANSITIONS) -> bool:
    """Check if a transition is allowed. Same-status requests are not."""
    return _value(new_status) in transitions.get(_value(current_status), [])


def get_allowed_transitions(current_status, transitions: Dict[str, List[str]] = CALCULATION_TRANSITIONS) -> List[str]:
    """Get list of statuses that can be transitioned to from current status."""
    return list(transitions.get(_value(current_status), []))


def get_transition_action(current_status, new_status) -> str:
    """Get human-readable action name for a calculation transition."""
    current, new = _value(current_status), _value(new_status)
    return TRANSITION_ACTIONS.get((current, new), f"{current} -> {new}")


def is_terminal(status, transitions: Dict[str, List[str]] = CALCULATION_TRANSITIONS) -> bool:
    return not transitions.get(_value(status), [])


def validate_transition(
    current_status,
    new_status,
    transitions: Dict[str, List[str]] = CALCULATION_TRANSITIONS,
    entity: str = "Calculation",
) -> None:
    """
    Validate a status transition. Raises InvalidStatusTransition if invalid.

    Unlike a plain update, requesting the current status is rejected too.
    """
    current, new = _value(current_status), _value(new_status)

    if can_transition(current, new, transitions):
        return

    allowed = get_allowed_transitions(current, transitions)
    details = {"current_status": current, "requested_status": new, "allowed": allowed}

    if is_terminal(current, transitions):
        raise InvalidStatusTransition(
            f"{entity} in '{current}' status cannot be modified. This is a terminal state.",
            details,
        )
    raise InvalidStatusTransition(
        f"Cannot change {entity.lower()} from '{current}' to '{new}'. "
        f"Allowed transitions: {', '.join(allowed)}",
        details,
    )


def validate_payment_transition(current_status, new_status) -> None:
    validate_transition(current_status, new_status, PAYMENT_TRANSITIONS, entity="Payment")
