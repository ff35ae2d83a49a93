"""Commission rule, calculation and payment models.

Supports:
- Percentage, fixed, tiered and hybrid commission rules
- Multi-level distribution (agent, manager, director, ...)
- Append-only calculation ledger with per-level breakdown rows
- Period-based payment batches per recipient
"""
import uuid
from datetime import datetime, date, timezone
from enum import Enum
from typing import Optional, List
from decimal import Decimal

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Text, Date
from sqlalchemy import Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from commission_engine.database import Base
from commission_engine.db_types import JSONType, UUIDType, MoneyType, RateType


class RuleType(str, Enum):
    """How the rule-level total is computed."""
    PERCENTAGE = "percentage"       # basis * rate
    FIXED_AMOUNT = "fixed_amount"   # flat amount per event
    TIERED = "tiered"               # progressive brackets
    HYBRID = "hybrid"               # flat amount + basis * rate


class EntityType(str, Enum):
    """Business event that triggers a commission."""
    SALE = "sale"
    LEAD = "lead"
    VISIT = "visit"
    ACTION = "action"
    CUSTOM = "custom"


class CalculationBasis(str, Enum):
    """What the basis value measures."""
    AMOUNT = "amount"
    QUANTITY = "quantity"
    SCORE = "score"
    CUSTOM = "custom"


class PaymentFrequency(str, Enum):
    """How often a rule's commissions are paid out."""
    IMMEDIATE = "immediate"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"


class ConditionOperator(str, Enum):
    """Closed operator set for rule conditions."""
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    NOT_IN = "not_in"


class CalculationStatus(str, Enum):
    """Commission calculation status."""
    PENDING = "pending"         # Computed, awaiting review
    APPROVED = "approved"       # Approved for payout
    PAID = "paid"               # Included in a payment batch
    REJECTED = "rejected"       # Rejected (terminal)
    ON_HOLD = "on_hold"         # On hold (dispute/review)


class PaymentStatus(str, Enum):
    """Payment batch status."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CommissionRule(Base):
    """
    Commission rule definition.
    Rules are versioned: a change creates a new row and deactivates the old one.
    """
    __tablename__ = "commission_rules"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Type & Basis
    type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="percentage, fixed_amount, tiered, hybrid"
    )
    entity_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True,
        comment="sale, lead, visit, action, custom"
    )
    calculation_basis: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="amount"
    )

    # Rates
    percentage: Mapped[Optional[Decimal]] = mapped_column(RateType, nullable=True)
    fixed_amount: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)

    # Tier / level / condition configuration (JSON)
    tiers: Mapped[Optional[list]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Progressive brackets for tiered rules"
    )
    # Example: [{"tier_level": 1, "min_value": 0, "max_value": 1000, "rate_percentage": 5}]
    levels: Mapped[list] = mapped_column(
        JSONType,
        nullable=False,
        comment="Allocation per organizational level"
    )
    # Example: [{"level": 1, "role": "animator", "allocation_percentage": 70}]
    conditions: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)

    # Limits
    min_threshold: Mapped[Optional[Decimal]] = mapped_column(
        MoneyType,
        nullable=True,
        comment="Total below this is not paid at all"
    )
    max_cap: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)

    # Validity
    active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    effective_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    effective_to: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="MAD")
    payment_frequency: Mapped[str] = mapped_column(String(20), nullable=False, default="monthly")

    # Versioning
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    parent_rule_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("commission_rules.id", ondelete="SET NULL"),
        nullable=True
    )

    extra_data: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        index=True
    )


class CommissionCalculation(Base):
    """
    One applied rule for one triggering event.
    Append-only: rows are never deleted, only moved through status transitions.
    """
    __tablename__ = "commission_calculations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    rule_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("commission_rules.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    # Triggering event
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    # Level -> recipient id
    recipients: Mapped[dict] = mapped_column(JSONType, nullable=False)

    basis_value: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    calculated_amount: Mapped[Decimal] = mapped_column(
        MoneyType,
        nullable=False,
        comment="Rule-level total before per-recipient split"
    )

    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="pending",
        index=True
    )
    status_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    calculation_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        index=True
    )
    approval_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Set when claimed by a payment batch
    payment_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True, index=True)

    extra_data: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)

    level_breakdown: Mapped[List["CommissionCalculationLevel"]] = relationship(
        "CommissionCalculationLevel",
        back_populates="calculation",
        cascade="all, delete-orphan",
        order_by="CommissionCalculationLevel.level",
        lazy="selectin",
    )

    __table_args__ = (
        Index("ix_commission_calculations_status_date", "status", "calculation_date"),
    )


class CommissionCalculationLevel(Base):
    """Per-recipient share of a calculation."""
    __tablename__ = "commission_calculation_levels"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    calculation_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("commission_calculations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    level: Mapped[int] = mapped_column(Integer, nullable=False)
    recipient_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    recipient_role: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    allocation_percentage: Mapped[Decimal] = mapped_column(RateType, nullable=False)

    calculation: Mapped["CommissionCalculation"] = relationship(
        "CommissionCalculation",
        back_populates="level_breakdown"
    )


class CommissionPayment(Base):
    """
    Payment batch for one recipient over one period.
    """
    __tablename__ = "commission_payments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    recipient_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    # Period
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    # Amounts
    total_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("0"))
    total_calculations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="MAD")

    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="pending",
        index=True
    )

    # Payment Details
    payment_method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    payment_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        index=True
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    breakdown_by_rule: Mapped[List["CommissionPaymentRuleLine"]] = relationship(
        "CommissionPaymentRuleLine",
        back_populates="payment",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class CommissionPaymentRuleLine(Base):
    """Per-rule subtotal of a payment."""
    __tablename__ = "commission_payment_rule_lines"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    payment_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("commission_payments.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    rule_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False)
    rule_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    payment: Mapped["CommissionPayment"] = relationship(
        "CommissionPayment",
        back_populates="breakdown_by_rule"
    )
