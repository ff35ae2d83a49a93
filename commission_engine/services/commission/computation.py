"""
Commission Computation

Turns a rule and a basis value into the rule-level total, before any
per-level split.

Rule types:
- percentage:   basis * percentage / 100
- fixed_amount: flat amount per event
- tiered:       progressive brackets, each slice taxed at its own rate
- hybrid:       fixed_amount + basis * percentage / 100

Every type then goes through apply_limits() (min_threshold / max_cap).
Everything here is synchronous and side-effect free.
"""

from abc import ABC, abstractmethod
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, Optional

from commission_engine.models.commission import RuleType
from commission_engine.schemas.commission import CommissionRule, CommissionTierSchema


ZERO = Decimal("0")
HUNDRED = Decimal("100")
CENT = Decimal("0.01")


def quantize_money(amount: Decimal) -> Decimal:
    """Round to cents, half up, as stored in money columns."""
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def _pct(value: Decimal, rate: Optional[Decimal]) -> Decimal:
    return value * (rate or ZERO) / HUNDRED


def calculate_tiered_amount(basis_value: Decimal, tiers: Iterable[CommissionTierSchema]) -> Decimal:
    """
    Progressive tier calculation.

    Example with [0-1000 @5%, 1000-5000 @8%, 5000+ @10%] and basis 6000:
        1000 * 5% + 4000 * 8% + 1000 * 10% = 50 + 320 + 100 = 470
    """
    total = ZERO

    for tier in sorted(tiers, key=lambda t: t.min_value):
        if basis_value <= tier.min_value:
            continue

        upper = basis_value if tier.max_value is None else min(basis_value, tier.max_value)
        span = upper - tier.min_value

        if tier.rate_percentage:
            total += _pct(span, tier.rate_percentage)
        elif tier.fixed_amount:
            total += tier.fixed_amount

        # Basis falls inside this bracket, nothing above it applies
        if tier.max_value is None or basis_value <= tier.max_value:
            break

    return total


def apply_limits(amount: Decimal, rule: CommissionRule) -> Decimal:
    """Zero the amount below min_threshold, clamp it to max_cap."""
    # Zero values count as unset
    if rule.min_threshold and amount < rule.min_threshold:
        return ZERO
    if rule.max_cap and amount > rule.max_cap:
        return rule.max_cap
    return amount


# =============================================================================
# STRATEGIES
# =============================================================================

class ComputeStrategy(ABC):
    """Computes the raw total for one rule type."""

    rule_type: RuleType

    @abstractmethod
    def compute(self, rule: CommissionRule, basis_value: Decimal) -> Decimal:
        ...


class PercentageStrategy(ComputeStrategy):
    rule_type = RuleType.PERCENTAGE

    def compute(self, rule: CommissionRule, basis_value: Decimal) -> Decimal:
        return _pct(basis_value, rule.percentage)


class FixedAmountStrategy(ComputeStrategy):
    rule_type = RuleType.FIXED_AMOUNT

    def compute(self, rule: CommissionRule, basis_value: Decimal) -> Decimal:
        return rule.fixed_amount or ZERO


class TieredStrategy(ComputeStrategy):
    rule_type = RuleType.TIERED

    def compute(self, rule: CommissionRule, basis_value: Decimal) -> Decimal:
        return calculate_tiered_amount(basis_value, rule.tiers)


class HybridStrategy(ComputeStrategy):
    rule_type = RuleType.HYBRID

    def compute(self, rule: CommissionRule, basis_value: Decimal) -> Decimal:
        return (rule.fixed_amount or ZERO) + _pct(basis_value, rule.percentage)


STRATEGIES: Dict[RuleType, ComputeStrategy] = {
    strategy.rule_type: strategy
    for strategy in (
        PercentageStrategy(),
        FixedAmountStrategy(),
        TieredStrategy(),
        HybridStrategy(),
    )
}


class ComputationEngine:
    """Rule + basis value -> rule-level total."""

    def __init__(self, strategies: Optional[Dict[RuleType, ComputeStrategy]] = None):
        self.strategies = strategies or STRATEGIES

    def compute_total(self, rule: CommissionRule, basis_value: Decimal) -> Decimal:
        strategy = self.strategies[RuleType(rule.type)]
        amount = strategy.compute(rule, Decimal(basis_value))
        return apply_limits(amount, rule)
