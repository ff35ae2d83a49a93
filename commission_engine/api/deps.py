from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from commission_engine.database import get_db
from commission_engine.services.commission import CommissionService, SQLAlchemyCommissionStore


# Type alias for database session dependency
DB = Annotated[AsyncSession, Depends(get_db)]


async def get_commission_service(db: DB) -> CommissionService:
    """Dependency to get the commission service bound to the request session."""
    return CommissionService(SQLAlchemyCommissionStore(db))


# Type alias for commission service dependency
Commissions = Annotated[CommissionService, Depends(get_commission_service)]
