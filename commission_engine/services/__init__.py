# Services module
from commission_engine.services.commission import CommissionService, SQLAlchemyCommissionStore

__all__ = [
    "CommissionService",
    "SQLAlchemyCommissionStore",
]
