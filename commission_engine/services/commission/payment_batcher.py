"""
Payment Batcher

Groups a recipient's approved calculations for a period into one payment.

Source calculations are claimed with a compare-and-set (approved -> paid) in
the same transaction that inserts the payment, so a calculation can only ever
belong to one payment. A batch run that loses every claim to a concurrent run
creates nothing and reports NoEligibleCalculations.
"""

import logging
import uuid
from collections import OrderedDict
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from commission_engine.config import settings
from commission_engine.core.enum_utils import get_enum_value
from commission_engine.models.commission import CalculationStatus, PaymentStatus
from commission_engine.schemas.commission import CommissionPayment, RuleBreakdownEntry
from commission_engine.services.commission.errors import (
    InvalidPeriod,
    InvalidStatusTransition,
    NoEligibleCalculations,
    PaymentNotFound,
)
from commission_engine.services.commission.ledger import day_start, day_after
from commission_engine.services.commission.state_machine import validate_payment_transition
from commission_engine.services.commission.store import CommissionStore

logger = logging.getLogger(__name__)


class PaymentBatcher:
    """Creates payments from approved calculations and drives their lifecycle."""

    def __init__(self, store: CommissionStore):
        self.store = store

    async def generate(
        self,
        recipient_id: str,
        period_start: date,
        period_end: date,
    ) -> CommissionPayment:
        if period_start > period_end:
            raise InvalidPeriod(
                "period_start must not be after period_end",
                {"period_start": str(period_start), "period_end": str(period_end)},
            )

        candidates = await self.store.find_calculations(
            recipient_id,
            status=CalculationStatus.APPROVED.value,
            since=day_start(period_start),
            before=day_after(period_end),
        )
        if not candidates:
            raise NoEligibleCalculations(recipient_id, period_start, period_end)

        payment_id = uuid.uuid4()
        now = datetime.now(timezone.utc)

        try:
            claimed_ids = set(await self.store.claim_calculations(
                [c.id for c in candidates], payment_id, now
            ))
            if not claimed_ids:
                await self.store.rollback()
                logger.warning(
                    f"All {len(candidates)} candidate calculations for {recipient_id} "
                    f"were claimed by another batch"
                )
                raise NoEligibleCalculations(recipient_id, period_start, period_end)

            claimed = [c for c in candidates if c.id in claimed_ids]
            total_amount = sum((c.share_for(recipient_id) for c in claimed), Decimal("0"))
            rule_lines = await self._breakdown_by_rule(recipient_id, claimed)

            payment = await self.store.add_payment(
                {
                    "id": payment_id,
                    "recipient_id": recipient_id,
                    "period_start": period_start,
                    "period_end": period_end,
                    "total_amount": total_amount,
                    "total_calculations": len(claimed),
                    "currency": await self._currency_for(claimed),
                    "status": PaymentStatus.PENDING.value,
                    "created_at": now,
                },
                rule_lines,
            )
            await self.store.commit()
        except NoEligibleCalculations:
            raise
        except Exception:
            await self.store.rollback()
            raise

        logger.info(
            f"Generated payment {payment.id} for {recipient_id} "
            f"({period_start} - {period_end}): {payment.total_amount} "
            f"from {payment.total_calculations} calculations"
        )
        return payment

    async def _breakdown_by_rule(self, recipient_id: str, calculations) -> List[RuleBreakdownEntry]:
        totals: Dict[uuid.UUID, Dict] = OrderedDict()
        for calc in calculations:
            line = totals.setdefault(calc.rule_id, {"amount": Decimal("0"), "count": 0})
            line["amount"] += calc.share_for(recipient_id)
            line["count"] += 1

        lines = []
        for rule_id, line in totals.items():
            rule = await self.store.get_rule(rule_id)
            lines.append(RuleBreakdownEntry(
                rule_id=rule_id,
                rule_name=rule.name if rule else "",
                amount=line["amount"],
                count=line["count"],
            ))
        return lines

    async def _currency_for(self, calculations) -> str:
        # A payment is paid in the currency of its first rule
        rule = await self.store.get_rule(calculations[0].rule_id)
        return rule.currency if rule else settings.DEFAULT_CURRENCY

    async def get(self, payment_id: uuid.UUID) -> CommissionPayment:
        payment = await self.store.get_payment(payment_id)
        if payment is None:
            raise PaymentNotFound(payment_id)
        return payment

    async def list_for_recipient(
        self,
        recipient_id: str,
        status=None,
        limit: Optional[int] = None,
    ) -> List[CommissionPayment]:
        return await self.store.list_payments(
            recipient_id,
            status=get_enum_value(status),
            limit=limit or settings.PAYMENT_LIST_LIMIT,
        )

    async def update_status(
        self,
        payment_id: uuid.UUID,
        new_status,
        payment_method: Optional[str] = None,
        payment_reference: Optional[str] = None,
    ) -> CommissionPayment:
        new_status = get_enum_value(new_status)
        payment = await self.get(payment_id)
        current = payment.status.value

        try:
            validate_payment_transition(current, new_status)
        except InvalidStatusTransition:
            logger.warning(f"Rejected payment transition {current} -> {new_status} on {payment_id}")
            raise

        if new_status == PaymentStatus.COMPLETED.value:
            unpaid = await self.store.count_unpaid_calculations(payment_id)
            if unpaid:
                raise InvalidStatusTransition(
                    "Payment has source calculations that are not paid",
                    {"payment_id": str(payment_id), "unpaid_calculations": unpaid},
                )

        now = datetime.now(timezone.utc)
        changes = {}
        if payment_method is not None:
            changes["payment_method"] = payment_method
        if payment_reference is not None:
            changes["payment_reference"] = payment_reference
        if new_status == PaymentStatus.PROCESSING.value:
            changes["processed_at"] = now
        elif new_status == PaymentStatus.COMPLETED.value:
            changes["completed_at"] = now

        try:
            applied = await self.store.compare_and_set_payment_status(
                payment_id, current, new_status, changes
            )
            if not applied:
                await self.store.rollback()
                raise InvalidStatusTransition(
                    f"Payment is no longer '{current}'",
                    {"current_status": current, "requested_status": new_status},
                )
            await self.store.commit()
        except InvalidStatusTransition:
            raise
        except Exception:
            await self.store.rollback()
            raise

        logger.info(f"Payment {payment_id}: {current} -> {new_status}")
        return await self.get(payment_id)
