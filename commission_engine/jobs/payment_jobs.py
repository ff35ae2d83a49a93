"""
Commission Payment Jobs

Background jobs for commission payouts:
- Period batching: one payment per recipient holding approved calculations
"""

import logging
from typing import Dict, Any, Optional, Tuple
from datetime import date, datetime, timedelta, timezone

from commission_engine.database import async_session_factory
from commission_engine.services.commission import CommissionService, SQLAlchemyCommissionStore
from commission_engine.services.commission.errors import NoEligibleCalculations

logger = logging.getLogger(__name__)


def previous_month_period(today: Optional[date] = None) -> Tuple[date, date]:
    """First and last day of the calendar month before ``today``."""
    today = today or datetime.now(timezone.utc).date()
    period_end = today.replace(day=1) - timedelta(days=1)
    return period_end.replace(day=1), period_end


async def generate_period_payments(period_start: date, period_end: date) -> Dict[str, Any]:
    """
    Generate payments for every recipient with approved calculations.

    Each recipient runs in its own session so one failure does not undo
    or block the others.
    """
    logger.info(f"Starting commission payment batching for {period_start} - {period_end}...")
    start_time = datetime.now(timezone.utc)

    async with async_session_factory() as session:
        service = CommissionService(SQLAlchemyCommissionStore(session))
        recipients = await service.payable_recipients(period_start, period_end)

    summary: Dict[str, Any] = {
        "recipients": len(recipients),
        "payments_created": 0,
        "skipped": 0,
        "failed": 0,
        "payment_ids": [],
    }

    for recipient_id in recipients:
        async with async_session_factory() as session:
            service = CommissionService(SQLAlchemyCommissionStore(session))
            try:
                payment = await service.generate_payment(recipient_id, period_start, period_end)
                summary["payments_created"] += 1
                summary["payment_ids"].append(str(payment.id))
            except NoEligibleCalculations:
                summary["skipped"] += 1
                logger.info(f"No eligible calculations left for {recipient_id}, skipped")
            except Exception as e:
                summary["failed"] += 1
                logger.error(f"Payment generation failed for {recipient_id}: {e}")

    elapsed = (datetime.now(timezone.utc) - start_time).total_seconds()
    logger.info(
        f"Commission payment batching completed: "
        f"{summary['payments_created']} created, {summary['skipped']} skipped, "
        f"{summary['failed']} failed in {elapsed:.2f}s"
    )
    return summary


async def batch_previous_month():
    """Scheduled entry point: batch the previous calendar month."""
    period_start, period_end = previous_month_period()
    return await generate_period_payments(period_start, period_end)
