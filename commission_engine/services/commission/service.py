"""
Commission Service

Single entry point used by the API and the scheduler jobs. Wires the rule
registry, computation engine, allocator, ledger and batcher over one store.

Flow of a calculate request:
    rule lookup -> active/effective check -> conditions
    -> compute_total -> distribute -> ledger (pending)

simulate runs the same compute/distribute steps without the checks and
without writing anything.
"""

import logging
import uuid
from collections import OrderedDict
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from commission_engine.models.commission import CalculationStatus
from commission_engine.schemas.commission import (
    CommissionRule,
    CommissionRuleCreate,
    CommissionCalculation,
    CommissionPayment,
    CalculationCreate,
    CalculationResult,
    CalculationSummary,
    BreakdownSummaryEntry,
    LevelBreakdownEntry,
    RecipientCalculationsResponse,
    SimulationRequest,
    SimulationResult,
)
from commission_engine.services.commission.allocation import LevelAllocator
from commission_engine.services.commission.computation import ComputationEngine, quantize_money
from commission_engine.services.commission.conditions import build_record, failed_conditions
from commission_engine.services.commission.errors import ConditionsNotMet, RuleInactive
from commission_engine.services.commission.ledger import CalculationLedger, day_start, day_after
from commission_engine.services.commission.payment_batcher import PaymentBatcher
from commission_engine.services.commission.rule_registry import RuleRegistry
from commission_engine.services.commission.store import CommissionStore

logger = logging.getLogger(__name__)


def summarize(calculation_total: Decimal, currency: str, breakdown: List[LevelBreakdownEntry]) -> CalculationSummary:
    """Totals per role for the calculate response."""
    roles: Dict[str, Dict[str, Decimal]] = OrderedDict()
    for entry in breakdown:
        role = roles.setdefault(entry.recipient_role, {"amount": Decimal("0"), "percentage": Decimal("0")})
        role["amount"] += entry.amount
        role["percentage"] += entry.allocation_percentage

    return CalculationSummary(
        total_amount=calculation_total,
        currency=currency,
        recipients_count=len({entry.recipient_id for entry in breakdown}),
        breakdown=[
            BreakdownSummaryEntry(role=role, amount=values["amount"], percentage=values["percentage"])
            for role, values in roles.items()
        ],
    )


class CommissionService:
    """Operations of the commission engine over an injected store."""

    def __init__(
        self,
        store: CommissionStore,
        engine: Optional[ComputationEngine] = None,
        allocator: Optional[LevelAllocator] = None,
    ):
        self.store = store
        self.engine = engine or ComputationEngine()
        self.allocator = allocator or LevelAllocator()
        self.rules = RuleRegistry(store)
        self.ledger = CalculationLedger(store)
        self.batcher = PaymentBatcher(store)

    # ==================== Rules ====================

    async def create_rule(self, rule_in: CommissionRuleCreate) -> CommissionRule:
        return await self.rules.create(rule_in)

    async def list_rules(self, active: Optional[bool] = None, entity_type=None) -> List[CommissionRule]:
        return await self.rules.list(active=active, entity_type=entity_type)

    async def get_rule(self, rule_id: uuid.UUID) -> CommissionRule:
        return await self.rules.get(rule_id)

    async def create_rule_version(self, rule_id: uuid.UUID, rule_in: CommissionRuleCreate) -> CommissionRule:
        return await self.rules.create_version(rule_id, rule_in)

    async def deactivate_rule(self, rule_id: uuid.UUID) -> CommissionRule:
        return await self.rules.deactivate(rule_id)

    # ==================== Computation ====================

    def _compute(self, rule: CommissionRule, basis_value: Decimal, recipients: Dict[int, str]):
        total = quantize_money(self.engine.compute_total(rule, basis_value))
        breakdown = [
            entry.model_copy(update={"amount": quantize_money(entry.amount)})
            for entry in self.allocator.distribute(total, rule.levels, recipients)
        ]
        return total, breakdown

    async def calculate_commission(self, request: CalculationCreate) -> CalculationResult:
        rule = await self.rules.get(request.rule_id)

        if not rule.active:
            raise RuleInactive(rule.id)
        if not rule.is_effective(datetime.now(timezone.utc)):
            raise RuleInactive(rule.id, "Rule is outside its effective period")

        record = build_record(
            request.basis_value,
            request.entity_type.value,
            request.entity_id,
            request.metadata,
        )
        failed = failed_conditions(rule.conditions, record)
        if failed:
            logger.info(f"Rule {rule.id} conditions not met for {request.entity_type.value} {request.entity_id}")
            raise ConditionsNotMet(rule.id, failed)

        total, breakdown = self._compute(rule, request.basis_value, request.recipients)

        calculation = await self.ledger.create(
            rule_id=rule.id,
            entity_type=request.entity_type,
            entity_id=request.entity_id,
            recipients=request.recipients,
            basis_value=request.basis_value,
            calculated_amount=total,
            breakdown=breakdown,
            metadata=request.metadata,
        )

        return CalculationResult(
            calculation=calculation,
            summary=summarize(total, rule.currency, calculation.level_breakdown),
        )

    async def simulate_commission(self, request: SimulationRequest) -> SimulationResult:
        rule = await self.rules.get(request.rule_id)
        total, breakdown = self._compute(rule, request.basis_value, request.recipients)

        return SimulationResult(
            rule_id=rule.id,
            rule_name=rule.name,
            basis_value=request.basis_value,
            total_amount=total,
            currency=rule.currency,
            breakdown=breakdown,
        )

    # ==================== Ledger ====================

    async def get_calculation(self, calculation_id: uuid.UUID) -> CommissionCalculation:
        return await self.ledger.get(calculation_id)

    async def update_calculation_status(
        self,
        calculation_id: uuid.UUID,
        status: CalculationStatus,
        reason: Optional[str] = None,
    ) -> CommissionCalculation:
        return await self.ledger.update_status(calculation_id, status, reason)

    async def list_calculations_for_recipient(
        self,
        recipient_id: str,
        status: Optional[CalculationStatus] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        limit: Optional[int] = None,
    ) -> RecipientCalculationsResponse:
        return await self.ledger.query(recipient_id, status, start_date, end_date, limit)

    # ==================== Payments ====================

    async def generate_payment(self, recipient_id: str, period_start: date, period_end: date) -> CommissionPayment:
        return await self.batcher.generate(recipient_id, period_start, period_end)

    async def list_payments_for_recipient(self, recipient_id: str, status=None, limit: Optional[int] = None) -> List[CommissionPayment]:
        return await self.batcher.list_for_recipient(recipient_id, status, limit)

    async def get_payment(self, payment_id: uuid.UUID) -> CommissionPayment:
        return await self.batcher.get(payment_id)

    async def update_payment_status(
        self,
        payment_id: uuid.UUID,
        status,
        payment_method: Optional[str] = None,
        payment_reference: Optional[str] = None,
    ) -> CommissionPayment:
        return await self.batcher.update_status(payment_id, status, payment_method, payment_reference)

    async def payable_recipients(self, period_start: date, period_end: date) -> List[str]:
        """Recipients holding approved calculations in the period."""
        return await self.store.recipients_with_payable_calculations(
            day_start(period_start), day_after(period_end)
        )
