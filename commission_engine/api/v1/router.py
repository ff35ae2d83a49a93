from fastapi import APIRouter

from commission_engine.api.v1.endpoints import commissions


api_router = APIRouter(prefix="/api/v1")

# ==================== Commission Engine ====================
api_router.include_router(
    commissions.router,
    prefix="/commissions",
    tags=["Commissions"]
)
