"""
Calculation Ledger

Append-only record of computed commissions. Rows are created once by the
calculate pipeline and afterwards only move through the transitions in
state_machine. Nothing is ever deleted.
"""

import logging
import uuid
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Optional, Sequence

from commission_engine.config import settings
from commission_engine.core.enum_utils import get_enum_value
from commission_engine.models.commission import CalculationStatus
from commission_engine.schemas.commission import (
    CommissionCalculation,
    LevelBreakdownEntry,
    RecipientCalculationEntry,
    CalculationStatistics,
    RecipientCalculationsResponse,
)
from commission_engine.services.commission.errors import (
    CalculationNotFound,
    InvalidStatusTransition,
)
from commission_engine.services.commission.state_machine import get_transition_action, validate_transition
from commission_engine.services.commission.store import CommissionStore

logger = logging.getLogger(__name__)


def day_start(day: date) -> datetime:
    """Midnight UTC at the start of ``day``."""
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def day_after(day: date) -> datetime:
    """Exclusive upper bound covering all of ``day``."""
    return day_start(day + timedelta(days=1))


class CalculationLedger:
    """Persists calculations and applies status transitions."""

    def __init__(self, store: CommissionStore):
        self.store = store

    async def create(
        self,
        rule_id: uuid.UUID,
        entity_type: str,
        entity_id: str,
        recipients: Dict[int, str],
        basis_value: Decimal,
        calculated_amount: Decimal,
        breakdown: Sequence[LevelBreakdownEntry],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> CommissionCalculation:
        """Record a pending calculation together with its breakdown."""
        row = {
            "id": uuid.uuid4(),
            "rule_id": rule_id,
            "entity_type": get_enum_value(entity_type),
            "entity_id": entity_id,
            "recipients": {int(level): rid for level, rid in recipients.items() if rid},
            "basis_value": basis_value,
            "calculated_amount": calculated_amount,
            "status": CalculationStatus.PENDING.value,
            "calculation_date": datetime.now(timezone.utc),
            "extra_data": metadata,
        }

        try:
            calculation = await self.store.add_calculation(row, breakdown)
            await self.store.commit()
        except Exception:
            await self.store.rollback()
            raise

        logger.info(
            f"Recorded calculation {calculation.id} for {calculation.entity_type} "
            f"{calculation.entity_id}: {calculation.calculated_amount}"
        )
        return calculation

    async def get(self, calculation_id: uuid.UUID) -> CommissionCalculation:
        calculation = await self.store.get_calculation(calculation_id)
        if calculation is None:
            raise CalculationNotFound(calculation_id)
        return calculation

    async def update_status(
        self,
        calculation_id: uuid.UUID,
        new_status,
        reason: Optional[str] = None,
    ) -> CommissionCalculation:
        """
        Move a calculation to ``new_status``.

        'paid' is reserved for payment generation unless
        RESTRICT_PAID_TO_BATCHING is off.
        """
        new_status = get_enum_value(new_status)
        calculation = await self.get(calculation_id)
        current = calculation.status.value

        try:
            validate_transition(current, new_status)
        except InvalidStatusTransition:
            logger.warning(f"Rejected transition {current} -> {new_status} on calculation {calculation_id}")
            raise

        if new_status == CalculationStatus.PAID.value and settings.RESTRICT_PAID_TO_BATCHING:
            logger.warning(f"Direct 'paid' update refused for calculation {calculation_id}")
            raise InvalidStatusTransition(
                "Calculations are marked paid by payment generation only",
                {"current_status": current, "requested_status": new_status},
            )

        now = datetime.now(timezone.utc)
        changes: Dict[str, Any] = {}
        if reason is not None:
            changes["status_reason"] = reason
        if new_status == CalculationStatus.APPROVED.value:
            changes["approval_date"] = now
        elif new_status == CalculationStatus.PAID.value:
            changes["payment_date"] = now

        try:
            applied = await self.store.compare_and_set_calculation_status(
                calculation_id, current, new_status, changes
            )
            if not applied:
                await self.store.rollback()
                logger.warning(f"Calculation {calculation_id} changed concurrently, transition to {new_status} dropped")
                raise InvalidStatusTransition(
                    f"Calculation is no longer '{current}'",
                    {"current_status": current, "requested_status": new_status},
                )
            await self.store.commit()
        except InvalidStatusTransition:
            raise
        except Exception:
            await self.store.rollback()
            raise

        logger.info(f"{get_transition_action(current, new_status)}: calculation {calculation_id} is now {new_status}")
        return await self.get(calculation_id)

    async def query(
        self,
        recipient_id: str,
        status=None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        limit: Optional[int] = None,
    ) -> RecipientCalculationsResponse:
        """A recipient's calculations with their own share and statistics."""
        end_date = end_date or datetime.now(timezone.utc).date()
        start_date = start_date or end_date - timedelta(days=settings.CALCULATION_HISTORY_DAYS)

        calculations = await self.store.find_calculations(
            recipient_id,
            status=get_enum_value(status),
            since=day_start(start_date),
            before=day_after(end_date),
            limit=limit or settings.CALCULATION_LIST_LIMIT,
        )

        by_status = {s.value: 0 for s in CalculationStatus}
        total_amount = Decimal("0")
        entries = []

        for calc in calculations:
            mine = calc.entries_for(recipient_id)
            my_amount = calc.share_for(recipient_id)
            total_amount += my_amount
            by_status[calc.status.value] += 1

            entries.append(RecipientCalculationEntry(
                calculation_id=calc.id,
                rule_id=calc.rule_id,
                entity_type=calc.entity_type,
                entity_id=calc.entity_id,
                basis_value=calc.basis_value,
                my_amount=my_amount,
                my_role=mine[0].recipient_role if mine else None,
                my_level=mine[0].level if mine else None,
                status=calc.status,
                calculation_date=calc.calculation_date,
                approval_date=calc.approval_date,
                payment_date=calc.payment_date,
            ))

        return RecipientCalculationsResponse(
            recipient_id=recipient_id,
            period_start=start_date,
            period_end=end_date,
            statistics=CalculationStatistics(
                total_calculations=len(entries),
                total_amount=total_amount,
                by_status=by_status,
            ),
            calculations=entries,
        )
