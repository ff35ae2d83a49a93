"""
Enum Utilities for VARCHAR-based Status Fields

ARCHITECTURE STANDARD:
━━━━━━━━━━━━━━━━━━━━━━
• Database: VARCHAR(50) - NOT PostgreSQL ENUM
• SQLAlchemy: String(50) with Mapped[str]
• Pydantic: Python Enum for API validation
• Case: All enum values stored in lowercase

DATA FLOW:
━━━━━━━━━━
INPUT (API Request):
    Pydantic Enum → .value → String → Database
    Example: CalculationStatus.APPROVED → "approved" → VARCHAR

OUTPUT (Store → Service):
    Database → String → Pydantic Enum
    Example: VARCHAR "approved" → CalculationStatus.APPROVED

CASE NORMALIZATION:
━━━━━━━━━━━━━━━━━━━
Clients sometimes send "APPROVED" or "Approved". Call
normalize_to_lowercase() from a mode="before" field_validator to accept those.
"""

from enum import Enum
from typing import Any, Optional, Set


def get_enum_value(value: Any) -> Optional[str]:
    """
    Safely get string value from an enum or string.

    Examples:
        >>> get_enum_value(CalculationStatus.PENDING)
        'pending'
        >>> get_enum_value("pending")
        'pending'
        >>> get_enum_value(None)
        None
    """
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    return str(value)


def normalize_to_lowercase(value: Any, valid_values: Set[str]) -> Any:
    """
    Normalize a string value to lowercase if it's a valid enum value.

    Examples:
        >>> normalize_to_lowercase('APPROVED', {'approved', 'paid'})
        'approved'
        >>> normalize_to_lowercase('invalid', {'approved', 'paid'})
        'invalid'  # Returned as-is for Pydantic to raise validation error
    """
    if value is None:
        return value
    if isinstance(value, str):
        lower_v = value.strip().lower()
        if lower_v in valid_values:
            return lower_v
    return value


# =============================================================================
# PRE-DEFINED VALID VALUE SETS
# =============================================================================

VALID_RULE_TYPES = {"percentage", "fixed_amount", "tiered", "hybrid"}

VALID_ENTITY_TYPES = {"sale", "lead", "visit", "action", "custom"}

VALID_CALCULATION_STATUSES = {"pending", "approved", "paid", "rejected", "on_hold"}

VALID_PAYMENT_STATUSES = {"pending", "processing", "completed", "failed"}

VALID_PAYMENT_FREQUENCIES = {"immediate", "daily", "weekly", "monthly", "quarterly"}
