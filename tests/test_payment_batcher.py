"""Payment batching: claims, idempotency and the payment lifecycle."""

import asyncio
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from commission_engine.database import Base, custom_json_dumps
from commission_engine.schemas.commission import CalculationCreate
from commission_engine.services.commission import CommissionService, PaymentBatcher, SQLAlchemyCommissionStore
from commission_engine.services.commission.errors import (
    InvalidPeriod,
    InvalidStatusTransition,
    NoEligibleCalculations,
    PaymentNotFound,
)


TODAY = datetime.now(timezone.utc).date()
PERIOD = (TODAY - timedelta(days=1), TODAY + timedelta(days=1))


class StaleSnapshotStore(SQLAlchemyCommissionStore):
    """Returns candidates read before another batch claimed them."""

    def __init__(self, db, snapshot):
        super().__init__(db)
        self.snapshot = snapshot

    async def find_calculations(self, *args, **kwargs):
        return list(self.snapshot)


async def record(service, rule, entity_id, recipients=None, basis_value="6000", approve=True):
    result = await service.calculate_commission(CalculationCreate(
        rule_id=rule.id,
        entity_type="sale",
        entity_id=entity_id,
        basis_value=basis_value,
        recipients=recipients or {1: "agent-1", 2: "manager-1"},
    ))
    if approve:
        await service.update_calculation_status(result.calculation.id, "approved")
    return result.calculation


@pytest.fixture
async def tiered_rule(service, make_rule, tiers):
    return await service.create_rule(make_rule(name="Tiered sales", type="tiered", percentage=None, tiers=tiers))


async def test_generate_claims_approved_calculations(service, tiered_rule):
    first = await record(service, tiered_rule, "S-1")
    second = await record(service, tiered_rule, "S-2", basis_value="1000")
    pending = await record(service, tiered_rule, "S-3", approve=False)

    payment = await service.generate_payment("agent-1", *PERIOD)

    # 329 + 70% of 50
    assert payment.total_amount == Decimal("364")
    assert payment.total_calculations == 2
    assert payment.status.value == "pending"
    assert payment.currency == "MAD"
    assert len(payment.breakdown_by_rule) == 1
    line = payment.breakdown_by_rule[0]
    assert (line.rule_id, line.rule_name, line.amount, line.count) == (
        tiered_rule.id, "Tiered sales", Decimal("364"), 2,
    )

    for calc_id in (first.id, second.id):
        calc = await service.get_calculation(calc_id)
        assert calc.status.value == "paid"
        assert calc.payment_id == payment.id
        assert calc.payment_date is not None
    assert (await service.get_calculation(pending.id)).status.value == "pending"


async def test_generate_is_idempotent_per_period(service, tiered_rule):
    await record(service, tiered_rule, "S-1")
    await service.generate_payment("agent-1", *PERIOD)

    with pytest.raises(NoEligibleCalculations):
        await service.generate_payment("agent-1", *PERIOD)
    assert len(await service.list_payments_for_recipient("agent-1")) == 1


async def test_claim_is_per_calculation(service, tiered_rule):
    # The whole calculation moves to paid, so the manager's batch finds nothing left
    await record(service, tiered_rule, "S-1")
    await service.generate_payment("agent-1", *PERIOD)

    with pytest.raises(NoEligibleCalculations):
        await service.generate_payment("manager-1", *PERIOD)


async def test_recipient_holding_several_levels(service, tiered_rule):
    await record(service, tiered_rule, "S-1", recipients={1: "solo", 2: "solo"})
    payment = await service.generate_payment("solo", *PERIOD)
    assert payment.total_amount == Decimal("423")


async def test_period_outside_calculations(service, tiered_rule):
    await record(service, tiered_rule, "S-1")
    with pytest.raises(NoEligibleCalculations):
        await service.generate_payment("agent-1", date(2020, 1, 1), date(2020, 1, 31))


async def test_invalid_period(service):
    with pytest.raises(InvalidPeriod):
        await service.generate_payment("agent-1", TODAY, TODAY - timedelta(days=1))


async def test_stale_batch_creates_no_payment(service, session, tiered_rule):
    await record(service, tiered_rule, "S-1")
    snapshot = await service.store.find_calculations("agent-1", status="approved")

    # The first run wins every claim
    await service.generate_payment("agent-1", *PERIOD)

    stale = PaymentBatcher(StaleSnapshotStore(session, snapshot))
    with pytest.raises(NoEligibleCalculations):
        await stale.generate("agent-1", *PERIOD)

    assert len(await service.list_payments_for_recipient("agent-1")) == 1


async def test_partially_stale_batch_keeps_only_claimed_rows(service, session, tiered_rule):
    await record(service, tiered_rule, "S-1")
    snapshot = await service.store.find_calculations("agent-1", status="approved")
    first_payment = await service.generate_payment("agent-1", *PERIOD)

    fresh = await record(service, tiered_rule, "S-2", basis_value="1000")
    snapshot = snapshot + await service.store.find_calculations("agent-1", status="approved")

    payment = await PaymentBatcher(StaleSnapshotStore(session, snapshot)).generate("agent-1", *PERIOD)

    assert payment.total_calculations == 1
    assert payment.total_amount == Decimal("35")
    assert (await service.get_calculation(fresh.id)).payment_id == payment.id
    assert first_payment.id != payment.id


async def test_list_payments_newest_first(service, tiered_rule):
    await record(service, tiered_rule, "S-1")
    older = await service.generate_payment("agent-1", *PERIOD)
    await record(service, tiered_rule, "S-2")
    newer = await service.generate_payment("agent-1", *PERIOD)

    payments = await service.list_payments_for_recipient("agent-1")
    assert [p.id for p in payments] == [newer.id, older.id]
    assert [p.id for p in await service.list_payments_for_recipient("agent-1", limit=1)] == [newer.id]
    assert await service.list_payments_for_recipient("agent-1", status="completed") == []


async def test_failed_payment_insert_releases_claims(service, tiered_rule, monkeypatch):
    calc = await record(service, tiered_rule, "S-1")

    async def failing_add_payment(self, data, rule_lines):
        raise RuntimeError("payment insert failed")

    monkeypatch.setattr(SQLAlchemyCommissionStore, "add_payment", failing_add_payment)

    with pytest.raises(RuntimeError):
        await service.generate_payment("agent-1", *PERIOD)

    stored = await service.get_calculation(calc.id)
    assert stored.status.value == "approved"
    assert stored.payment_id is None
    assert stored.payment_date is None
    assert await service.list_payments_for_recipient("agent-1") == []

    monkeypatch.undo()
    payment = await service.generate_payment("agent-1", *PERIOD)
    assert payment.total_calculations == 1


@pytest.fixture
async def file_sessions(tmp_path):
    """Session factory over a file-backed database, one connection per session."""
    file_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'commissions.db'}",
        json_serializer=custom_json_dumps,
        connect_args={"timeout": 30},
    )
    async with file_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    await file_engine.dispose()


async def test_concurrent_generation_pays_each_calculation_once(file_sessions, make_rule):
    async with file_sessions() as setup_session:
        setup = CommissionService(SQLAlchemyCommissionStore(setup_session))
        rule = await setup.create_rule(make_rule())
        for n in range(5):
            await record(setup, rule, f"S-{n}")

    async def run_batch():
        async with file_sessions() as batch_session:
            batch = CommissionService(SQLAlchemyCommissionStore(batch_session))
            return await batch.generate_payment("agent-1", *PERIOD)

    results = await asyncio.gather(*(run_batch() for _ in range(4)), return_exceptions=True)

    payments = [r for r in results if not isinstance(r, BaseException)]
    assert len(payments) == 1
    assert payments[0].total_calculations == 5
    # Losing batches either find nothing left or hit the write lock
    assert all(
        isinstance(r, (NoEligibleCalculations, OperationalError))
        for r in results if isinstance(r, BaseException)
    )

    async with file_sessions() as check_session:
        check = CommissionService(SQLAlchemyCommissionStore(check_session))
        assert [p.id for p in await check.list_payments_for_recipient("agent-1")] == [payments[0].id]


# ==================== Payment lifecycle ====================

async def test_payment_lifecycle(service, tiered_rule):
    await record(service, tiered_rule, "S-1")
    payment = await service.generate_payment("agent-1", *PERIOD)

    processing = await service.update_payment_status(payment.id, "processing", payment_method="bank_transfer")
    assert processing.processed_at is not None
    assert processing.payment_method == "bank_transfer"

    completed = await service.update_payment_status(payment.id, "completed", payment_reference="TRX-42")
    assert completed.status.value == "completed"
    assert completed.completed_at is not None
    assert completed.payment_reference == "TRX-42"
    assert completed.payment_method == "bank_transfer"


async def test_failed_payment_can_be_retried(service, tiered_rule):
    await record(service, tiered_rule, "S-1")
    payment = await service.generate_payment("agent-1", *PERIOD)

    await service.update_payment_status(payment.id, "processing")
    await service.update_payment_status(payment.id, "failed")
    retried = await service.update_payment_status(payment.id, "processing")
    assert retried.status.value == "processing"


async def test_pending_payment_cannot_complete(service, tiered_rule):
    await record(service, tiered_rule, "S-1")
    payment = await service.generate_payment("agent-1", *PERIOD)

    with pytest.raises(InvalidStatusTransition):
        await service.update_payment_status(payment.id, "completed")


async def test_completion_refused_while_source_not_paid(service, store, tiered_rule):
    calc = await record(service, tiered_rule, "S-1")
    payment = await service.generate_payment("agent-1", *PERIOD)
    await service.update_payment_status(payment.id, "processing")

    # Simulate a source calculation pulled back out of 'paid'
    await store.compare_and_set_calculation_status(calc.id, "paid", "on_hold")
    await store.commit()

    with pytest.raises(InvalidStatusTransition) as exc_info:
        await service.update_payment_status(payment.id, "completed")
    assert exc_info.value.details["unpaid_calculations"] == 1
    assert (await service.get_payment(payment.id)).status.value == "processing"


async def test_unknown_payment(service):
    with pytest.raises(PaymentNotFound):
        await service.get_payment(uuid.uuid4())
    with pytest.raises(PaymentNotFound):
        await service.update_payment_status(uuid.uuid4(), "processing")
