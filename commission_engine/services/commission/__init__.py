"""
Commission Engine Services

- RuleRegistry: validated, versioned rule definitions
- ComputationEngine: rule + basis value -> total
- LevelAllocator: total -> per-recipient breakdown
- CalculationLedger: calculation records and their lifecycle
- PaymentBatcher: approved calculations -> payments
- CommissionService: facade over all of the above
"""

from commission_engine.services.commission.allocation import LevelAllocator
from commission_engine.services.commission.computation import ComputationEngine
from commission_engine.services.commission.ledger import CalculationLedger
from commission_engine.services.commission.payment_batcher import PaymentBatcher
from commission_engine.services.commission.rule_registry import RuleRegistry
from commission_engine.services.commission.service import CommissionService
from commission_engine.services.commission.store import CommissionStore, SQLAlchemyCommissionStore

__all__ = [
    "LevelAllocator",
    "ComputationEngine",
    "CalculationLedger",
    "PaymentBatcher",
    "RuleRegistry",
    "CommissionService",
    "CommissionStore",
    "SQLAlchemyCommissionStore",
]
