"""API endpoints for the Commission Engine."""
from typing import Optional
from uuid import UUID
from datetime import date

from fastapi import APIRouter, status, Query

from commission_engine.models.commission import EntityType, CalculationStatus, PaymentStatus
from commission_engine.schemas.commission import (
    # Rule
    CommissionRuleCreate, CommissionRule, CommissionRuleListResponse,
    # Calculation
    CalculationCreate, CalculationResult, CalculationStatusUpdate, CommissionCalculation,
    SimulationRequest, SimulationResult, RecipientCalculationsResponse,
    # Payment
    PaymentGenerateRequest, PaymentStatusUpdate, CommissionPayment, RecipientPaymentsResponse,
)
from commission_engine.api.deps import Commissions

router = APIRouter()


# ==================== Rules ====================

@router.post("/rules", response_model=CommissionRule, status_code=status.HTTP_201_CREATED)
async def create_commission_rule(
    rule_in: CommissionRuleCreate,
    service: Commissions,
):
    """Create a new commission rule."""
    return await service.create_rule(rule_in)


@router.get("/rules", response_model=CommissionRuleListResponse)
async def list_commission_rules(
    service: Commissions,
    active: Optional[bool] = None,
    entity_type: Optional[EntityType] = None,
):
    """List commission rules, newest first."""
    rules = await service.list_rules(active=active, entity_type=entity_type)
    return CommissionRuleListResponse(total_rules=len(rules), rules=rules)


@router.get("/rules/{rule_id}", response_model=CommissionRule)
async def get_commission_rule(
    rule_id: UUID,
    service: Commissions,
):
    """Get commission rule by ID."""
    return await service.get_rule(rule_id)


@router.post("/rules/{rule_id}/versions", response_model=CommissionRule, status_code=status.HTTP_201_CREATED)
async def create_commission_rule_version(
    rule_id: UUID,
    rule_in: CommissionRuleCreate,
    service: Commissions,
):
    """Create a new version of a rule. The previous version is deactivated."""
    return await service.create_rule_version(rule_id, rule_in)


@router.post("/rules/{rule_id}/deactivate", response_model=CommissionRule)
async def deactivate_commission_rule(
    rule_id: UUID,
    service: Commissions,
):
    """Deactivate a rule. Existing calculations are not affected."""
    return await service.deactivate_rule(rule_id)


# ==================== Calculations ====================

@router.post("/calculate", response_model=CalculationResult, status_code=status.HTTP_201_CREATED)
async def calculate_commission(
    calculation_in: CalculationCreate,
    service: Commissions,
):
    """
    Calculate and record a commission for one event.

    Recipients come from `recipients` (level -> id) or the legacy
    animator_id / manager_id / director_id fields.
    """
    return await service.calculate_commission(calculation_in)


@router.post("/simulate", response_model=SimulationResult)
async def simulate_commission(
    simulation_in: SimulationRequest,
    service: Commissions,
):
    """Preview a commission without recording anything."""
    return await service.simulate_commission(simulation_in)


@router.get("/calculations/{calculation_id}", response_model=CommissionCalculation)
async def get_calculation(
    calculation_id: UUID,
    service: Commissions,
):
    """Get calculation by ID."""
    return await service.get_calculation(calculation_id)


@router.put("/calculations/{calculation_id}/status", response_model=CommissionCalculation)
async def update_calculation_status(
    calculation_id: UUID,
    update_in: CalculationStatusUpdate,
    service: Commissions,
):
    """Approve, reject or hold a calculation."""
    return await service.update_calculation_status(calculation_id, update_in.status, update_in.reason)


@router.get("/recipients/{recipient_id}/calculations", response_model=RecipientCalculationsResponse)
async def list_recipient_calculations(
    recipient_id: str,
    service: Commissions,
    calculation_status: Optional[CalculationStatus] = Query(None, alias="status"),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    limit: Optional[int] = Query(None, ge=1, le=500),
):
    """Calculation history of a recipient with their own share of each."""
    return await service.list_calculations_for_recipient(
        recipient_id,
        status=calculation_status,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
    )


# ==================== Payments ====================

@router.post("/payments/generate", response_model=CommissionPayment, status_code=status.HTTP_201_CREATED)
async def generate_payment(
    payment_in: PaymentGenerateRequest,
    service: Commissions,
):
    """Batch a recipient's approved calculations for a period into a payment."""
    return await service.generate_payment(
        payment_in.recipient_id,
        payment_in.period_start,
        payment_in.period_end,
    )


@router.get("/payments/{payment_id}", response_model=CommissionPayment)
async def get_payment(
    payment_id: UUID,
    service: Commissions,
):
    """Get payment by ID."""
    return await service.get_payment(payment_id)


@router.put("/payments/{payment_id}/status", response_model=CommissionPayment)
async def update_payment_status(
    payment_id: UUID,
    update_in: PaymentStatusUpdate,
    service: Commissions,
):
    """Move a payment through processing / completed / failed."""
    return await service.update_payment_status(
        payment_id,
        update_in.status,
        payment_method=update_in.payment_method,
        payment_reference=update_in.payment_reference,
    )


@router.get("/recipients/{recipient_id}/payments", response_model=RecipientPaymentsResponse)
async def list_recipient_payments(
    recipient_id: str,
    service: Commissions,
    payment_status: Optional[PaymentStatus] = Query(None, alias="status"),
    limit: Optional[int] = Query(None, ge=1, le=200),
):
    """Payments of a recipient, newest first."""
    payments = await service.list_payments_for_recipient(recipient_id, payment_status, limit)
    return RecipientPaymentsResponse(
        recipient_id=recipient_id,
        total_payments=len(payments),
        payments=payments,
    )
