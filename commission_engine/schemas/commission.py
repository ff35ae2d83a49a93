"""Pydantic schemas for the commission engine."""
from datetime import datetime, date
from typing import Any, Dict, List, Optional
from decimal import Decimal
from uuid import UUID
from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator

from commission_engine.schemas.base import (
    BaseResponseSchema, BaseCreateSchema, UTCDateTime, OptionalUUID,
)
from commission_engine.core.enum_utils import (
    normalize_to_lowercase,
    VALID_RULE_TYPES, VALID_ENTITY_TYPES, VALID_CALCULATION_STATUSES,
    VALID_PAYMENT_STATUSES, VALID_PAYMENT_FREQUENCIES,
)
from commission_engine.models.commission import (
    RuleType, EntityType, CalculationBasis, PaymentFrequency, ConditionOperator,
    CalculationStatus, PaymentStatus,
)


# Reads "extra_data" from ORM rows, "metadata" from request bodies
_METADATA_ALIAS = AliasChoices("extra_data", "metadata")

# Legacy recipient fields mapped onto level numbers
LEGACY_RECIPIENT_LEVELS = {
    "animator_id": 1,
    "manager_id": 2,
    "director_id": 3,
}

_RULE_ENUM_VALUES = {
    "type": VALID_RULE_TYPES,
    "entity_type": VALID_ENTITY_TYPES,
    "payment_frequency": VALID_PAYMENT_FREQUENCIES,
}


# ==================== Rule Components ====================

class CommissionTierSchema(BaseResponseSchema):
    """One progressive bracket of a tiered rule."""
    tier_level: int = Field(..., ge=1)
    min_value: Decimal = Field(Decimal("0"), ge=0)
    max_value: Optional[Decimal] = Field(None, ge=0)
    rate_percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    fixed_amount: Optional[Decimal] = Field(None, ge=0)


class CommissionLevelSchema(BaseResponseSchema):
    """Share of the total granted to one organizational level."""
    level: int = Field(..., ge=1)
    role: str = Field(..., min_length=1, max_length=100)
    allocation_percentage: Decimal = Field(..., ge=0, le=100)
    min_amount: Optional[Decimal] = Field(None, ge=0)
    max_amount: Optional[Decimal] = Field(None, ge=0)


class CommissionConditionSchema(BaseResponseSchema):
    """Predicate over the triggering event record."""
    field: str = Field(..., min_length=1, max_length=100)
    operator: ConditionOperator
    value: Any = None


# ==================== Rule Schemas ====================

class CommissionRuleCreate(BaseCreateSchema):
    """
    Schema for creating a CommissionRule.

    name/type/entity_type/levels are optional here so the registry can report
    MissingRequiredField instead of a generic schema error.
    """
    name: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None
    type: Optional[RuleType] = None
    entity_type: Optional[EntityType] = None
    calculation_basis: CalculationBasis = CalculationBasis.AMOUNT

    percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    fixed_amount: Optional[Decimal] = Field(None, ge=0)
    tiers: Optional[List[CommissionTierSchema]] = None

    levels: Optional[List[CommissionLevelSchema]] = None
    conditions: List[CommissionConditionSchema] = Field(default_factory=list)

    min_threshold: Optional[Decimal] = Field(None, ge=0)
    max_cap: Optional[Decimal] = Field(None, ge=0)

    active: bool = True
    effective_from: Optional[UTCDateTime] = None
    effective_to: Optional[UTCDateTime] = None

    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    payment_frequency: Optional[PaymentFrequency] = None
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("type", "entity_type", "payment_frequency", mode="before")
    @classmethod
    def normalize_enum_case(cls, v, info):
        return normalize_to_lowercase(v, _RULE_ENUM_VALUES[info.field_name])


class CommissionRule(BaseResponseSchema):
    """A persisted, immutable rule version."""
    id: UUID
    name: str
    description: Optional[str] = None
    type: RuleType
    entity_type: EntityType
    calculation_basis: CalculationBasis = CalculationBasis.AMOUNT

    percentage: Optional[Decimal] = None
    fixed_amount: Optional[Decimal] = None
    tiers: List[CommissionTierSchema] = Field(default_factory=list)
    levels: List[CommissionLevelSchema]
    conditions: List[CommissionConditionSchema] = Field(default_factory=list)

    min_threshold: Optional[Decimal] = None
    max_cap: Optional[Decimal] = None

    active: bool = True
    effective_from: UTCDateTime
    effective_to: Optional[UTCDateTime] = None

    currency: str
    payment_frequency: PaymentFrequency = PaymentFrequency.MONTHLY

    version: int = 1
    parent_rule_id: OptionalUUID = None
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias=_METADATA_ALIAS)
    created_at: UTCDateTime

    @field_validator("tiers", "conditions", mode="before")
    @classmethod
    def none_as_empty(cls, v):
        return [] if v is None else v

    def is_effective(self, at: datetime) -> bool:
        """Is the rule inside its validity window at the given instant?"""
        if at < self.effective_from:
            return False
        if self.effective_to is not None and at > self.effective_to:
            return False
        return True


class CommissionRuleListResponse(BaseModel):
    """Response for listing rules."""
    total_rules: int
    rules: List[CommissionRule]


# ==================== Calculation Schemas ====================

class LevelBreakdownEntry(BaseResponseSchema):
    """One recipient's share of a calculation."""
    level: int
    recipient_id: str
    recipient_role: str
    amount: Decimal
    allocation_percentage: Decimal


class CommissionCalculation(BaseResponseSchema):
    """One persisted result of applying a rule to one event."""
    id: UUID
    rule_id: UUID
    entity_type: str
    entity_id: str
    recipients: Dict[int, str]

    basis_value: Decimal
    calculated_amount: Decimal
    level_breakdown: List[LevelBreakdownEntry]

    status: CalculationStatus = CalculationStatus.PENDING
    status_reason: Optional[str] = None

    calculation_date: UTCDateTime
    approval_date: Optional[UTCDateTime] = None
    payment_date: Optional[UTCDateTime] = None
    payment_id: OptionalUUID = None

    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias=_METADATA_ALIAS)

    def entries_for(self, recipient_id: str) -> List[LevelBreakdownEntry]:
        return [b for b in self.level_breakdown if b.recipient_id == recipient_id]

    def share_for(self, recipient_id: str) -> Decimal:
        """Sum of every breakdown entry held by the recipient."""
        return sum((b.amount for b in self.entries_for(recipient_id)), Decimal("0"))


class _RecipientFields(BaseCreateSchema):
    """Recipients as a level map, or the legacy per-role ids."""
    recipients: Dict[int, str] = Field(default_factory=dict)
    animator_id: Optional[str] = None
    manager_id: Optional[str] = None
    director_id: Optional[str] = None

    @model_validator(mode="after")
    def merge_legacy_recipients(self):
        for field_name, level in LEGACY_RECIPIENT_LEVELS.items():
            recipient_id = getattr(self, field_name)
            if recipient_id and level not in self.recipients:
                self.recipients[level] = recipient_id
        return self


class CalculationCreate(_RecipientFields):
    """Request to calculate and record a commission."""
    rule_id: UUID
    entity_type: EntityType
    entity_id: str = Field(..., min_length=1, max_length=100)
    basis_value: Decimal = Field(..., ge=0)
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("entity_type", mode="before")
    @classmethod
    def normalize_entity_type(cls, v):
        return normalize_to_lowercase(v, VALID_ENTITY_TYPES)


class CalculationStatusUpdate(BaseCreateSchema):
    """Request to move a calculation through its lifecycle."""
    status: CalculationStatus
    reason: Optional[str] = Field(None, max_length=500)

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v):
        return normalize_to_lowercase(v, VALID_CALCULATION_STATUSES)


class BreakdownSummaryEntry(BaseModel):
    role: str
    amount: Decimal
    percentage: Decimal


class CalculationSummary(BaseModel):
    total_amount: Decimal
    currency: str
    recipients_count: int
    breakdown: List[BreakdownSummaryEntry]


class CalculationResult(BaseModel):
    """Response for a recorded calculation."""
    calculation: CommissionCalculation
    summary: CalculationSummary


class SimulationRequest(_RecipientFields):
    """
    Request to preview a commission without recording it.

    Unknown keys such as entity_type are ignored.
    """
    rule_id: UUID
    basis_value: Decimal = Field(..., ge=0)


class SimulationResult(BaseModel):
    """Preview of a commission."""
    rule_id: UUID
    rule_name: str
    basis_value: Decimal
    total_amount: Decimal
    currency: str
    breakdown: List[LevelBreakdownEntry]


class RecipientCalculationEntry(BaseModel):
    """A calculation as seen by one of its recipients."""
    calculation_id: UUID
    rule_id: UUID
    entity_type: str
    entity_id: str
    basis_value: Decimal
    my_amount: Decimal
    my_role: Optional[str] = None
    my_level: Optional[int] = None
    status: CalculationStatus
    calculation_date: datetime
    approval_date: Optional[datetime] = None
    payment_date: Optional[datetime] = None


class CalculationStatistics(BaseModel):
    total_calculations: int
    total_amount: Decimal
    by_status: Dict[str, int]


class RecipientCalculationsResponse(BaseModel):
    """Calculation history of one recipient."""
    recipient_id: str
    period_start: date
    period_end: date
    statistics: CalculationStatistics
    calculations: List[RecipientCalculationEntry]


# ==================== Payment Schemas ====================

class PaymentGenerateRequest(BaseCreateSchema):
    """Request to batch a recipient's approved calculations."""
    recipient_id: str = Field(..., min_length=1, max_length=100)
    period_start: date
    period_end: date


class RuleBreakdownEntry(BaseResponseSchema):
    """Per-rule subtotal of a payment."""
    rule_id: UUID
    rule_name: str = ""
    amount: Decimal
    count: int


class CommissionPayment(BaseResponseSchema):
    """Payment batch for one recipient over one period."""
    id: UUID
    recipient_id: str
    period_start: date
    period_end: date

    total_amount: Decimal
    total_calculations: int
    currency: str
    breakdown_by_rule: List[RuleBreakdownEntry] = Field(default_factory=list)

    status: PaymentStatus = PaymentStatus.PENDING
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None

    created_at: UTCDateTime
    processed_at: Optional[UTCDateTime] = None
    completed_at: Optional[UTCDateTime] = None


class PaymentStatusUpdate(BaseCreateSchema):
    """Request to move a payment through its lifecycle."""
    status: PaymentStatus
    payment_method: Optional[str] = Field(None, max_length=50)
    payment_reference: Optional[str] = Field(None, max_length=100)

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v):
        return normalize_to_lowercase(v, VALID_PAYMENT_STATUSES)


class RecipientPaymentsResponse(BaseModel):
    recipient_id: str
    total_payments: int
    payments: List[CommissionPayment]