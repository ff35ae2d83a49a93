import os

# Settings are read at import time, so the test database must be set first
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ.setdefault("PAYMENT_BATCH_ENABLED", "false")

import pytest
from httpx import ASGITransport, AsyncClient

from commission_engine.database import async_session_factory, drop_db, engine, init_db
from commission_engine.schemas.commission import CommissionRuleCreate
from commission_engine.services.commission import CommissionService, SQLAlchemyCommissionStore


THREE_LEVELS = [
    {"level": 1, "role": "animator", "allocation_percentage": "70"},
    {"level": 2, "role": "manager", "allocation_percentage": "20"},
    {"level": 3, "role": "director", "allocation_percentage": "10"},
]

TIERS = [
    {"tier_level": 1, "min_value": "0", "max_value": "1000", "rate_percentage": "5"},
    {"tier_level": 2, "min_value": "1000", "max_value": "5000", "rate_percentage": "8"},
    {"tier_level": 3, "min_value": "5000", "rate_percentage": "10"},
]


@pytest.fixture
def three_levels():
    return [dict(level) for level in THREE_LEVELS]


@pytest.fixture
def tiers():
    """0-1000 @5%, 1000-5000 @8%, 5000+ @10%"""
    return [dict(tier) for tier in TIERS]


@pytest.fixture
def make_rule(three_levels):
    """Factory for rule definitions. Defaults to 5% of sales over three levels."""
    def _make(**overrides) -> CommissionRuleCreate:
        data = {
            "name": "Sales 5%",
            "type": "percentage",
            "entity_type": "sale",
            "percentage": "5",
            "levels": three_levels,
        }
        data.update(overrides)
        return CommissionRuleCreate(**data)
    return _make


@pytest.fixture
async def database():
    await init_db()
    yield
    await drop_db()
    # Next test gets a fresh in-memory connection on its own event loop
    await engine.dispose()


@pytest.fixture
async def session(database):
    async with async_session_factory() as session:
        yield session


@pytest.fixture
def store(session) -> SQLAlchemyCommissionStore:
    return SQLAlchemyCommissionStore(session)


@pytest.fixture
def service(store) -> CommissionService:
    return CommissionService(store)


@pytest.fixture
async def client(database):
    from commission_engine.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
