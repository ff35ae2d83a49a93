"""
Rule Registry

Validates and stores commission rules. A stored rule is never edited: a change
is a new version (version + 1, parent_rule_id = previous id) and the previous
version is deactivated in the same transaction. Calculations keep pointing at
the version they were computed with.
"""

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from commission_engine.config import settings
from commission_engine.core.enum_utils import get_enum_value
from commission_engine.models.commission import RuleType
from commission_engine.schemas.commission import CommissionRule, CommissionRuleCreate
from commission_engine.services.commission.errors import (
    MissingRequiredField,
    InvalidAllocationSum,
    InvalidTierConfiguration,
    InvalidLevelConfiguration,
    RuleNotFound,
)
from commission_engine.services.commission.store import CommissionStore

logger = logging.getLogger(__name__)


def validate_rule(rule_in: CommissionRuleCreate) -> None:
    """Raise the first validation error found in a rule definition."""
    missing = [
        field for field in ("name", "type", "entity_type")
        if not getattr(rule_in, field)
    ]
    if not rule_in.levels:
        missing.append("levels")

    rule_type = rule_in.type
    if rule_type == RuleType.PERCENTAGE and rule_in.percentage is None:
        missing.append("percentage")
    elif rule_type == RuleType.FIXED_AMOUNT and rule_in.fixed_amount is None:
        missing.append("fixed_amount")
    elif rule_type == RuleType.TIERED and not rule_in.tiers:
        missing.append("tiers")

    if missing:
        raise MissingRequiredField(missing)

    level_numbers = [lv.level for lv in rule_in.levels]
    duplicates = sorted({n for n in level_numbers if level_numbers.count(n) > 1})
    if duplicates:
        raise InvalidLevelConfiguration(
            "Level numbers must be unique within a rule",
            {"duplicate_levels": duplicates},
        )

    for level in rule_in.levels:
        if level.min_amount is not None and level.max_amount is not None \
                and level.max_amount < level.min_amount:
            raise InvalidLevelConfiguration(
                f"Level {level.level}: max_amount is below min_amount",
                {"level": level.level},
            )

    total = sum((lv.allocation_percentage for lv in rule_in.levels), Decimal("0"))
    if abs(total - Decimal("100")) > settings.ALLOCATION_TOLERANCE:
        raise InvalidAllocationSum(total)

    if rule_type == RuleType.TIERED:
        _validate_tiers(rule_in)


def _validate_tiers(rule_in: CommissionRuleCreate) -> None:
    tiers = sorted(rule_in.tiers, key=lambda t: t.min_value)

    for tier in tiers:
        if tier.rate_percentage is None and tier.fixed_amount is None:
            raise InvalidTierConfiguration(
                f"Tier {tier.tier_level} must define rate_percentage or fixed_amount",
                {"tier_level": tier.tier_level},
            )
        if tier.max_value is not None and tier.max_value <= tier.min_value:
            raise InvalidTierConfiguration(
                f"Tier {tier.tier_level}: max_value must be greater than min_value",
                {"tier_level": tier.tier_level},
            )

    for lower, upper in zip(tiers, tiers[1:]):
        if lower.max_value is None or lower.max_value > upper.min_value:
            raise InvalidTierConfiguration(
                f"Tiers {lower.tier_level} and {upper.tier_level} overlap",
                {"tier_levels": [lower.tier_level, upper.tier_level]},
            )


class RuleRegistry:
    """Validated access to commission rules."""

    def __init__(self, store: CommissionStore):
        self.store = store

    def _to_row(
        self,
        rule_in: CommissionRuleCreate,
        version: int = 1,
        parent_rule_id: Optional[uuid.UUID] = None,
    ) -> dict:
        return {
            "id": uuid.uuid4(),
            "name": rule_in.name,
            "description": rule_in.description,
            "type": get_enum_value(rule_in.type),
            "entity_type": get_enum_value(rule_in.entity_type),
            "calculation_basis": get_enum_value(rule_in.calculation_basis),
            "percentage": rule_in.percentage,
            "fixed_amount": rule_in.fixed_amount,
            "tiers": [t.model_dump(mode="json") for t in rule_in.tiers] if rule_in.tiers else None,
            "levels": [lv.model_dump(mode="json") for lv in rule_in.levels],
            "conditions": [c.model_dump(mode="json") for c in rule_in.conditions],
            "min_threshold": rule_in.min_threshold,
            "max_cap": rule_in.max_cap,
            "active": rule_in.active,
            "effective_from": rule_in.effective_from or datetime.now(timezone.utc),
            "effective_to": rule_in.effective_to,
            "currency": (rule_in.currency or settings.DEFAULT_CURRENCY).upper(),
            "payment_frequency": get_enum_value(rule_in.payment_frequency) or settings.DEFAULT_PAYMENT_FREQUENCY,
            "version": version,
            "parent_rule_id": parent_rule_id,
            "extra_data": rule_in.metadata,
        }

    async def create(self, rule_in: CommissionRuleCreate) -> CommissionRule:
        validate_rule(rule_in)

        try:
            rule = await self.store.add_rule(self._to_row(rule_in))
            await self.store.commit()
        except Exception:
            await self.store.rollback()
            raise

        logger.info(f"Created commission rule {rule.id} '{rule.name}' ({rule.type.value})")
        return rule

    async def get(self, rule_id: uuid.UUID) -> CommissionRule:
        rule = await self.store.get_rule(rule_id)
        if rule is None:
            raise RuleNotFound(rule_id)
        return rule

    async def list(
        self,
        active: Optional[bool] = None,
        entity_type: Optional[str] = None,
    ) -> List[CommissionRule]:
        return await self.store.list_rules(active=active, entity_type=get_enum_value(entity_type))

    async def create_version(self, rule_id: uuid.UUID, rule_in: CommissionRuleCreate) -> CommissionRule:
        """Store rule_in as the next version of rule_id and retire rule_id."""
        previous = await self.get(rule_id)
        validate_rule(rule_in)

        try:
            rule = await self.store.add_rule(
                self._to_row(rule_in, version=previous.version + 1, parent_rule_id=previous.id)
            )
            await self.store.set_rule_active(previous.id, False)
            await self.store.commit()
        except Exception:
            await self.store.rollback()
            raise

        logger.info(f"Rule {previous.id} superseded by {rule.id} (version {rule.version})")
        return rule

    async def deactivate(self, rule_id: uuid.UUID) -> CommissionRule:
        await self.get(rule_id)

        try:
            await self.store.set_rule_active(rule_id, False)
            await self.store.commit()
        except Exception:
            await self.store.rollback()
            raise

        logger.info(f"Deactivated commission rule {rule_id}")
        return await self.get(rule_id)
