"""
Level Allocation

Splits a rule-level total across organizational levels:

    share = total * allocation_percentage / 100
    share = max(share, min_amount)   # when min_amount is set
    share = min(share, max_amount)   # when max_amount is set

Levels with no recipient are skipped and their share is not redistributed.
Clamped shares are not renormalized, so the breakdown may not sum to the total
when a clamp fires.
"""

from decimal import Decimal
from typing import Dict, Iterable, List

from commission_engine.schemas.commission import CommissionLevelSchema, LevelBreakdownEntry


HUNDRED = Decimal("100")


class LevelAllocator:
    """Total + levels + recipients -> per-recipient breakdown."""

    def distribute(
        self,
        total: Decimal,
        levels: Iterable[CommissionLevelSchema],
        recipients: Dict[int, str],
    ) -> List[LevelBreakdownEntry]:
        breakdown: List[LevelBreakdownEntry] = []

        for level in sorted(levels, key=lambda lv: lv.level):
            recipient_id = recipients.get(level.level)
            if not recipient_id:
                continue

            share = total * level.allocation_percentage / HUNDRED

            # Zero bounds count as unset
            if level.min_amount and share < level.min_amount:
                share = level.min_amount
            if level.max_amount and share > level.max_amount:
                share = level.max_amount

            breakdown.append(LevelBreakdownEntry(
                level=level.level,
                recipient_id=recipient_id,
                recipient_role=level.role,
                amount=share,
                allocation_percentage=level.allocation_percentage,
            ))

        return breakdown
