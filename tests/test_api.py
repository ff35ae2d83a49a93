"""HTTP surface tests (httpx AsyncClient over the ASGI app)."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest


BASE = "/api/v1/commissions"

TODAY = datetime.now(timezone.utc).date()


@pytest.fixture
def rule_payload(three_levels, tiers):
    return {
        "name": "Tiered sales",
        "type": "tiered",
        "entity_type": "sale",
        "tiers": tiers,
        "levels": three_levels,
    }


@pytest.fixture
async def rule_id(client, rule_payload):
    response = await client.post(f"{BASE}/rules", json=rule_payload)
    assert response.status_code == 201
    return response.json()["id"]


async def test_health_and_root(client):
    response = await client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["checks"]["database"] == "connected"

    response = await client.get("/")
    assert response.json()["message"] == "Welcome to Commission Engine"


async def test_create_and_fetch_rule(client, rule_id):
    response = await client.get(f"{BASE}/rules/{rule_id}")
    assert response.status_code == 200
    body = response.json()
    assert body["type"] == "tiered"
    assert body["currency"] == "MAD"
    assert body["version"] == 1

    listing = (await client.get(f"{BASE}/rules", params={"active": "true", "entity_type": "sale"})).json()
    assert listing["total_rules"] == 1


async def test_rule_validation_errors(client, rule_payload):
    rule_payload["levels"][0]["allocation_percentage"] = "60"
    response = await client.post(f"{BASE}/rules", json=rule_payload)
    assert response.status_code == 400
    assert response.json()["type"] == "InvalidAllocationSum"

    del rule_payload["name"]
    response = await client.post(f"{BASE}/rules", json=rule_payload)
    assert response.status_code == 400
    body = response.json()
    assert body["type"] == "MissingRequiredField"
    assert body["details"]["fields"] == ["name"]
    assert body["path"] == f"{BASE}/rules"


async def test_unknown_rule_is_404(client):
    response = await client.get(f"{BASE}/rules/{uuid.uuid4()}")
    assert response.status_code == 404
    assert response.json()["type"] == "RuleNotFound"


async def test_rule_versioning(client, rule_id, rule_payload):
    rule_payload["name"] = "Tiered sales v2"
    response = await client.post(f"{BASE}/rules/{rule_id}/versions", json=rule_payload)
    assert response.status_code == 201
    assert response.json()["parent_rule_id"] == rule_id
    assert response.json()["version"] == 2

    previous = (await client.get(f"{BASE}/rules/{rule_id}")).json()
    assert previous["active"] is False


async def test_calculate_with_legacy_fields(client, rule_id):
    response = await client.post(f"{BASE}/calculate", json={
        "rule_id": rule_id,
        "entity_type": "SALE",
        "entity_id": "S-1",
        "basis_value": 6000,
        "animator_id": "agent-1",
        "manager_id": "manager-1",
    })
    assert response.status_code == 201
    body = response.json()
    assert float(body["calculation"]["calculated_amount"]) == 470
    assert [float(b["amount"]) for b in body["calculation"]["level_breakdown"]] == [329, 94]
    assert body["summary"]["recipients_count"] == 2
    assert body["summary"]["currency"] == "MAD"


async def test_calculate_on_inactive_rule(client, rule_id):
    await client.post(f"{BASE}/rules/{rule_id}/deactivate")
    response = await client.post(f"{BASE}/calculate", json={
        "rule_id": rule_id, "entity_type": "sale", "entity_id": "S-1", "basis_value": 100,
    })
    assert response.status_code == 400
    assert response.json()["type"] == "RuleInactive"


async def test_conditions_not_met_is_422(client, rule_payload):
    rule_payload["conditions"] = [{"field": "basis_value", "operator": "gte", "value": 1000}]
    rule_id = (await client.post(f"{BASE}/rules", json=rule_payload)).json()["id"]

    response = await client.post(f"{BASE}/calculate", json={
        "rule_id": rule_id, "entity_type": "sale", "entity_id": "S-1", "basis_value": 500,
    })
    assert response.status_code == 422
    assert response.json()["type"] == "ConditionsNotMet"


async def test_negative_basis_is_schema_error(client, rule_id):
    response = await client.post(f"{BASE}/calculate", json={
        "rule_id": rule_id, "entity_type": "sale", "entity_id": "S-1", "basis_value": -1,
    })
    assert response.status_code == 422


async def test_simulate(client, rule_id):
    response = await client.post(f"{BASE}/simulate", json={
        "rule_id": rule_id, "entity_type": "sale", "basis_value": "6000", "recipients": {"1": "agent-1"},
    })
    assert response.status_code == 200
    body = response.json()
    assert float(body["total_amount"]) == 470
    assert len(body["breakdown"]) == 1
    assert body["rule_name"] == "Tiered sales"


async def test_status_flow_and_payment(client, rule_id):
    calc = (await client.post(f"{BASE}/calculate", json={
        "rule_id": rule_id, "entity_type": "sale", "entity_id": "S-1", "basis_value": 6000,
        "recipients": {"1": "agent-1", "2": "manager-1"},
    })).json()["calculation"]

    response = await client.put(f"{BASE}/calculations/{calc['id']}/status", json={"status": "paid"})
    assert response.status_code == 409
    assert response.json()["type"] == "InvalidStatusTransition"

    response = await client.put(f"{BASE}/calculations/{calc['id']}/status", json={"status": "APPROVED", "reason": "ok"})
    assert response.status_code == 200
    assert response.json()["status"] == "approved"
    assert response.json()["status_reason"] == "ok"

    period = {
        "recipient_id": "agent-1",
        "period_start": str(TODAY - timedelta(days=1)),
        "period_end": str(TODAY),
    }
    response = await client.post(f"{BASE}/payments/generate", json=period)
    assert response.status_code == 201
    payment = response.json()
    assert float(payment["total_amount"]) == 329
    assert payment["breakdown_by_rule"][0]["rule_name"] == "Tiered sales"

    response = await client.post(f"{BASE}/payments/generate", json=period)
    assert response.status_code == 404
    assert response.json()["type"] == "NoEligibleCalculations"

    response = await client.put(f"{BASE}/payments/{payment['id']}/status", json={"status": "processing"})
    assert response.status_code == 200
    assert response.json()["processed_at"] is not None

    response = await client.put(f"{BASE}/payments/{payment['id']}/status", json={"status": "completed"})
    assert response.json()["status"] == "completed"

    response = await client.get(f"{BASE}/calculations/{calc['id']}")
    assert response.json()["status"] == "paid"
    assert response.json()["payment_id"] == payment["id"]

    payments = (await client.get(f"{BASE}/recipients/agent-1/payments")).json()
    assert payments["total_payments"] == 1

    history = (await client.get(f"{BASE}/recipients/agent-1/calculations", params={"status": "paid"})).json()
    assert history["statistics"]["total_calculations"] == 1
    assert history["statistics"]["by_status"]["paid"] == 1
    assert float(history["calculations"][0]["my_amount"]) == 329


async def test_invalid_period_is_400(client):
    response = await client.post(f"{BASE}/payments/generate", json={
        "recipient_id": "agent-1",
        "period_start": str(TODAY),
        "period_end": str(TODAY - timedelta(days=1)),
    })
    assert response.status_code == 400
    assert response.json()["type"] == "InvalidPeriod"


async def test_unknown_calculation_and_payment(client):
    assert (await client.get(f"{BASE}/calculations/{uuid.uuid4()}")).status_code == 404
    assert (await client.get(f"{BASE}/payments/{uuid.uuid4()}")).status_code == 404
