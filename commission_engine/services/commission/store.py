"""
Commission Store

CommissionStore is the only way the engine reaches persistence. It speaks in
the pydantic domain schemas; SQLAlchemyCommissionStore maps them onto the
ORM models in commission_engine.models.commission.

Nothing here commits on its own. Callers group writes and call commit() or
rollback() so a calculation and its breakdown, or a payment and its claims,
land together.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select, update, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from commission_engine.models.commission import (
    CommissionRule as RuleModel,
    CommissionCalculation as CalculationModel,
    CommissionCalculationLevel as CalculationLevelModel,
    CommissionPayment as PaymentModel,
    CommissionPaymentRuleLine as PaymentRuleLineModel,
    CalculationStatus,
)
from commission_engine.schemas.commission import (
    CommissionRule,
    CommissionCalculation,
    CommissionPayment,
    LevelBreakdownEntry,
    RuleBreakdownEntry,
)

logger = logging.getLogger(__name__)


class CommissionStore(ABC):
    """Persistence port used by the registry, ledger and batcher."""

    # ---------------------------------------------------------------- rules

    @abstractmethod
    async def add_rule(self, data: Dict[str, Any]) -> CommissionRule:
        ...

    @abstractmethod
    async def get_rule(self, rule_id: uuid.UUID) -> Optional[CommissionRule]:
        ...

    @abstractmethod
    async def list_rules(
        self,
        active: Optional[bool] = None,
        entity_type: Optional[str] = None,
    ) -> List[CommissionRule]:
        """Matching rules, newest first."""

    @abstractmethod
    async def set_rule_active(self, rule_id: uuid.UUID, active: bool) -> bool:
        ...

    # --------------------------------------------------------- calculations

    @abstractmethod
    async def add_calculation(
        self,
        data: Dict[str, Any],
        breakdown: Sequence[LevelBreakdownEntry],
    ) -> CommissionCalculation:
        ...

    @abstractmethod
    async def get_calculation(self, calculation_id: uuid.UUID) -> Optional[CommissionCalculation]:
        ...

    @abstractmethod
    async def find_calculations(
        self,
        recipient_id: str,
        status: Optional[str] = None,
        since: Optional[datetime] = None,
        before: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[CommissionCalculation]:
        """Calculations whose breakdown holds the recipient, newest first.

        ``since`` is inclusive, ``before`` exclusive.
        """

    @abstractmethod
    async def compare_and_set_calculation_status(
        self,
        calculation_id: uuid.UUID,
        expected: str,
        new: str,
        changes: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Apply ``new`` only if the stored status is still ``expected``."""

    @abstractmethod
    async def claim_calculations(
        self,
        calculation_ids: Sequence[uuid.UUID],
        payment_id: uuid.UUID,
        paid_at: datetime,
    ) -> List[uuid.UUID]:
        """Move approved calculations to paid under ``payment_id``.

        Returns the ids actually claimed. Rows no longer approved are skipped.
        """

    @abstractmethod
    async def recipients_with_payable_calculations(
        self,
        since: datetime,
        before: datetime,
    ) -> List[str]:
        ...

    # ------------------------------------------------------------- payments

    @abstractmethod
    async def add_payment(
        self,
        data: Dict[str, Any],
        rule_lines: Sequence[RuleBreakdownEntry],
    ) -> CommissionPayment:
        ...

    @abstractmethod
    async def get_payment(self, payment_id: uuid.UUID) -> Optional[CommissionPayment]:
        ...

    @abstractmethod
    async def list_payments(
        self,
        recipient_id: str,
        status: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[CommissionPayment]:
        """Payments of one recipient, newest first."""

    @abstractmethod
    async def compare_and_set_payment_status(
        self,
        payment_id: uuid.UUID,
        expected: str,
        new: str,
        changes: Optional[Dict[str, Any]] = None,
    ) -> bool:
        ...

    @abstractmethod
    async def count_unpaid_calculations(self, payment_id: uuid.UUID) -> int:
        """Calculations tagged with the payment that are not in 'paid'."""

    # ---------------------------------------------------------- transaction

    @abstractmethod
    async def commit(self) -> None:
        ...

    @abstractmethod
    async def rollback(self) -> None:
        ...


class SQLAlchemyCommissionStore(CommissionStore):
    """CommissionStore over an AsyncSession (PostgreSQL or SQLite)."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ---------------------------------------------------------------- rules

    async def add_rule(self, data: Dict[str, Any]) -> CommissionRule:
        rule = RuleModel(**data)
        self.db.add(rule)
        await self.db.flush()
        return CommissionRule.model_validate(rule)

    async def _get_rule_model(self, rule_id: uuid.UUID) -> Optional[RuleModel]:
        result = await self.db.execute(
            select(RuleModel)
            .where(RuleModel.id == rule_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_rule(self, rule_id: uuid.UUID) -> Optional[CommissionRule]:
        rule = await self._get_rule_model(rule_id)
        return CommissionRule.model_validate(rule) if rule else None

    async def list_rules(
        self,
        active: Optional[bool] = None,
        entity_type: Optional[str] = None,
    ) -> List[CommissionRule]:
        query = select(RuleModel)

        filters = []
        if active is not None:
            filters.append(RuleModel.active == active)
        if entity_type:
            filters.append(RuleModel.entity_type == entity_type)
        if filters:
            query = query.where(and_(*filters))

        query = query.order_by(RuleModel.created_at.desc())
        result = await self.db.execute(query.execution_options(populate_existing=True))
        return [CommissionRule.model_validate(r) for r in result.scalars().all()]

    async def set_rule_active(self, rule_id: uuid.UUID, active: bool) -> bool:
        result = await self.db.execute(
            update(RuleModel)
            .where(RuleModel.id == rule_id)
            .values(active=active)
        )
        return result.rowcount > 0

    # --------------------------------------------------------- calculations

    async def add_calculation(
        self,
        data: Dict[str, Any],
        breakdown: Sequence[LevelBreakdownEntry],
    ) -> CommissionCalculation:
        calculation = CalculationModel(**data)
        calculation.level_breakdown = [
            CalculationLevelModel(**entry.model_dump()) for entry in breakdown
        ]
        self.db.add(calculation)
        await self.db.flush()
        return CommissionCalculation.model_validate(calculation)

    async def get_calculation(self, calculation_id: uuid.UUID) -> Optional[CommissionCalculation]:
        result = await self.db.execute(
            select(CalculationModel)
            .where(CalculationModel.id == calculation_id)
            .execution_options(populate_existing=True)
        )
        calculation = result.scalar_one_or_none()
        return CommissionCalculation.model_validate(calculation) if calculation else None

    async def find_calculations(
        self,
        recipient_id: str,
        status: Optional[str] = None,
        since: Optional[datetime] = None,
        before: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[CommissionCalculation]:
        held_by_recipient = (
            select(CalculationLevelModel.calculation_id)
            .where(CalculationLevelModel.recipient_id == recipient_id)
        )
        query = select(CalculationModel).where(CalculationModel.id.in_(held_by_recipient))

        if status:
            query = query.where(CalculationModel.status == status)
        if since is not None:
            query = query.where(CalculationModel.calculation_date >= since)
        if before is not None:
            query = query.where(CalculationModel.calculation_date < before)

        query = query.order_by(CalculationModel.calculation_date.desc())
        if limit:
            query = query.limit(limit)

        result = await self.db.execute(query.execution_options(populate_existing=True))
        return [CommissionCalculation.model_validate(c) for c in result.scalars().all()]

    async def compare_and_set_calculation_status(
        self,
        calculation_id: uuid.UUID,
        expected: str,
        new: str,
        changes: Optional[Dict[str, Any]] = None,
    ) -> bool:
        result = await self.db.execute(
            update(CalculationModel)
            .where(
                CalculationModel.id == calculation_id,
                CalculationModel.status == expected,
            )
            .values(status=new, **(changes or {}))
        )
        return result.rowcount == 1

    async def claim_calculations(
        self,
        calculation_ids: Sequence[uuid.UUID],
        payment_id: uuid.UUID,
        paid_at: datetime,
    ) -> List[uuid.UUID]:
        claimed = []
        for calculation_id in calculation_ids:
            won = await self.compare_and_set_calculation_status(
                calculation_id,
                CalculationStatus.APPROVED.value,
                CalculationStatus.PAID.value,
                {"payment_id": payment_id, "payment_date": paid_at},
            )
            if won:
                claimed.append(calculation_id)
            else:
                logger.warning(f"Calculation {calculation_id} was no longer approved, skipped by payment {payment_id}")
        return claimed

    async def recipients_with_payable_calculations(
        self,
        since: datetime,
        before: datetime,
    ) -> List[str]:
        result = await self.db.execute(
            select(CalculationLevelModel.recipient_id)
            .join(CalculationModel, CalculationModel.id == CalculationLevelModel.calculation_id)
            .where(
                CalculationModel.status == CalculationStatus.APPROVED.value,
                CalculationModel.calculation_date >= since,
                CalculationModel.calculation_date < before,
            )
            .distinct()
            .order_by(CalculationLevelModel.recipient_id)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------- payments

    async def add_payment(
        self,
        data: Dict[str, Any],
        rule_lines: Sequence[RuleBreakdownEntry],
    ) -> CommissionPayment:
        payment = PaymentModel(**data)
        payment.breakdown_by_rule = [
            PaymentRuleLineModel(**line.model_dump()) for line in rule_lines
        ]
        self.db.add(payment)
        await self.db.flush()
        return CommissionPayment.model_validate(payment)

    async def get_payment(self, payment_id: uuid.UUID) -> Optional[CommissionPayment]:
        result = await self.db.execute(
            select(PaymentModel)
            .where(PaymentModel.id == payment_id)
            .execution_options(populate_existing=True)
        )
        payment = result.scalar_one_or_none()
        return CommissionPayment.model_validate(payment) if payment else None

    async def list_payments(
        self,
        recipient_id: str,
        status: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[CommissionPayment]:
        query = select(PaymentModel).where(PaymentModel.recipient_id == recipient_id)
        if status:
            query = query.where(PaymentModel.status == status)

        query = query.order_by(PaymentModel.created_at.desc())
        if limit:
            query = query.limit(limit)

        result = await self.db.execute(query.execution_options(populate_existing=True))
        return [CommissionPayment.model_validate(p) for p in result.scalars().all()]

    async def compare_and_set_payment_status(
        self,
        payment_id: uuid.UUID,
        expected: str,
        new: str,
        changes: Optional[Dict[str, Any]] = None,
    ) -> bool:
        result = await self.db.execute(
            update(PaymentModel)
            .where(
                PaymentModel.id == payment_id,
                PaymentModel.status == expected,
            )
            .values(status=new, **(changes or {}))
        )
        return result.rowcount == 1

    async def count_unpaid_calculations(self, payment_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.count(CalculationModel.id)).where(
                CalculationModel.payment_id == payment_id,
                CalculationModel.status != CalculationStatus.PAID.value,
            )
        )
        return result.scalar() or 0

    # ---------------------------------------------------------- transaction

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()
