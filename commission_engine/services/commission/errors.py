"""Commission engine exceptions.

Validation errors are raised before anything is persisted. State errors
leave the ledger entry untouched. Store errors are never wrapped.
"""
from typing import Dict, Optional


class CommissionError(Exception):
    """Base exception for commission engine errors."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


# ==================== Validation ====================

class CommissionValidationError(CommissionError):
    """Input rejected before any persistence."""


class MissingRequiredField(CommissionValidationError):
    def __init__(self, fields):
        fields = list(fields)
        super().__init__(
            f"Missing required fields: {', '.join(fields)}",
            {"fields": fields},
        )


class InvalidAllocationSum(CommissionValidationError):
    def __init__(self, total):
        super().__init__(
            "Level allocations must sum to 100%",
            {"allocation_total": str(total)},
        )


class InvalidTierConfiguration(CommissionValidationError):
    pass


class InvalidLevelConfiguration(CommissionValidationError):
    pass


class InvalidPeriod(CommissionValidationError):
    pass


# ==================== Not found ====================

class CommissionNotFoundError(CommissionError):
    """Referenced entity does not exist."""


class RuleNotFound(CommissionNotFoundError):
    def __init__(self, rule_id):
        super().__init__("Rule not found", {"rule_id": str(rule_id)})


class CalculationNotFound(CommissionNotFoundError):
    def __init__(self, calculation_id):
        super().__init__("Calculation not found", {"calculation_id": str(calculation_id)})


class PaymentNotFound(CommissionNotFoundError):
    def __init__(self, payment_id):
        super().__init__("Payment not found", {"payment_id": str(payment_id)})


# ==================== State ====================

class CommissionStateError(CommissionError):
    """Request conflicts with the current state of an entity."""


class InvalidStatusTransition(CommissionStateError):
    pass


class RuleInactive(CommissionStateError):
    def __init__(self, rule_id, reason: str = "Rule is not active"):
        super().__init__(reason, {"rule_id": str(rule_id)})


class ConditionsNotMet(CommissionStateError):
    def __init__(self, rule_id, failed_conditions):
        super().__init__(
            "Rule conditions are not met by this event",
            {"rule_id": str(rule_id), "failed_conditions": failed_conditions},
        )


# ==================== Batch ====================

class NoEligibleCalculations(CommissionError):
    """Nothing to batch. Informational, not a fault."""
    def __init__(self, recipient_id, period_start, period_end):
        super().__init__(
            "No approved calculations found for this period",
            {
                "recipient_id": recipient_id,
                "period_start": str(period_start),
                "period_end": str(period_end),
            },
        )
