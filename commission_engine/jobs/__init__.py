"""
Background Jobs Module

Handles scheduled tasks for:
- Monthly commission payment batching
"""

from commission_engine.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler
from commission_engine.jobs.payment_jobs import generate_period_payments, previous_month_period

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
    "generate_period_payments",
    "previous_month_period",
]
