# tests/api/test_locations_inventory_api.py
from __future__ import annotations

import httpx
import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from tests.helpers.fulfillment import audit_actions, ledger_rows, seed_item

from app.models.location import Location

HEADERS = {"X-Actor-Id": "3", "X-Actor-Name": "ops"}


async def _create_location(client: httpx.AsyncClient, code: str, max_capacity: int = 10, **extra) -> dict:
    r = await client.post("/locations", json={"code": code, "max_capacity": max_capacity, **extra}, headers=HEADERS)
    assert r.status_code == 201, r.text
    return r.json()


@pytest.mark.asyncio
async def test_health(client: httpx.AsyncClient):
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True, "db": "up"}


@pytest.mark.asyncio
async def test_location_lifecycle_and_capacity(client: httpx.AsyncClient, session: AsyncSession):
    item = await seed_item(session, code="SKU-LOC")

    loc = await _create_location(client, "A-01", 10)
    assert loc["capacity_status"] == "AVAILABLE"
    assert (loc["current_capacity"], loc["available_capacity"], loc["is_full"]) == (0, 10, False)

    r = await client.post("/locations", json={"code": "A-01", "max_capacity": 5})
    assert r.status_code == 409 and r.json()["error_code"] == "invalid_state"

    r = await client.post("/locations", json={"code": "A-02", "max_capacity": 0})
    assert r.status_code == 422 and r.json()["error_code"] == "validation_error"

    r = await client.post(
        "/inventory/receive",
        json={"item_id": item, "location_id": loc["location_id"], "quantity": 10, "ref": "RCV-001"},
        headers=HEADERS,
    )
    assert r.status_code == 200, r.text
    assert (r.json()["after"], r.json()["location_capacity"]) == (10, 10)

    r = await client.get("/locations/near-full")
    assert r.status_code == 200
    (full,) = r.json()
    assert (full["code"], full["capacity_status"], full["is_full"]) == ("A-01", "FULL", True)

    r = await client.post(
        "/inventory/receive",
        json={"item_id": item, "location_id": loc["location_id"], "quantity": 1, "ref": "RCV-002"},
    )
    assert r.status_code == 409, r.text
    body = r.json()
    assert body["error_code"] == "capacity_exceeded"
    assert body["context"]["available_capacity"] == 0
    assert body["next_actions"][0]["action"] == "choose_other_location"

    r = await client.delete(f"/locations/{loc['location_id']}", headers=HEADERS)
    assert r.status_code == 409 and r.json()["error_code"] == "invalid_state"

    r = await client.get("/locations/utilization")
    assert r.status_code == 200
    util = r.json()
    assert (util["total_locations"], util["full_locations"], util["used_capacity"]) == (1, 1, 10)
    assert util["utilization_percentage"] == 100.0

    await session.rollback()
    rows = await ledger_rows(session, "RCV-001")
    assert [(x.reason, x.delta, x.actor) for x in rows] == [("RECEIPT", 10, "ops#3")]
    assert await ledger_rows(session, "RCV-002") == []


@pytest.mark.asyncio
async def test_delete_empty_location_frees_code(client: httpx.AsyncClient, session: AsyncSession):
    loc = await _create_location(client, "B-01", 20, category="Other")

    r = await client.delete(f"/locations/{loc['location_id']}", headers=HEADERS)
    assert r.status_code == 200, r.text

    again = await _create_location(client, "B-01", 20)
    assert again["location_id"] != loc["location_id"]
    assert again["category"] == "Storage"

    await session.rollback()
    assert await audit_actions(session, "Location", loc["location_id"]) == ["LOCATION_CREATED", "LOCATION_DELETED"]


@pytest.mark.asyncio
async def test_recompute_repairs_drift(client: httpx.AsyncClient, session: AsyncSession):
    item = await seed_item(session, code="SKU-DRIFT")
    loc = await _create_location(client, "C-01", 50)
    r = await client.post(
        "/inventory/receive",
        json={"item_id": item, "location_id": loc["location_id"], "quantity": 12, "ref": "RCV-D"},
    )
    assert r.status_code == 200, r.text

    r = await client.post("/locations/recompute")
    assert r.status_code == 200 and r.json() == []

    # 人为制造漂移
    await session.execute(
        update(Location)
        .where(Location.id == loc["location_id"])
        .values(current_capacity=30)
        .execution_options(synchronize_session=False)
    )
    await session.commit()

    r = await client.post("/locations/recompute")
    assert r.status_code == 200
    assert r.json() == [
        {"location_id": loc["location_id"], "code": "C-01", "stored_capacity": 30, "actual_capacity": 12}
    ]

    r = await client.post(f"/locations/{loc['location_id']}/recompute")
    assert r.status_code == 200
    assert r.json() == {"location_id": loc["location_id"], "current_capacity": 12}


@pytest.mark.asyncio
async def test_inventory_queries_and_move(client: httpx.AsyncClient, session: AsyncSession):
    item = await seed_item(session, code="SKU-Q")
    a = await _create_location(client, "Q-A", 100)
    b = await _create_location(client, "Q-B", 5)
    h = await _create_location(client, "Q-H", 100, category="Other")

    for loc, qty, ref in ((a, 20, "RCV-QA"), (h, 4, "RCV-QH")):
        r = await client.post(
            "/inventory/receive",
            json={"item_id": item, "location_id": loc["location_id"], "quantity": qty, "ref": ref},
        )
        assert r.status_code == 200, r.text

    r = await client.get("/inventory/available", params={"item_id": item})
    assert r.json()["available"] == 24
    r = await client.get("/inventory/available", params={"item_id": item, "category": "Storage"})
    assert r.json() == {"item_id": item, "category": "Storage", "available": 20}

    r = await client.get("/inventory/records", params={"item_id": item})
    assert r.status_code == 200
    assert sorted((x["location_id"], x["quantity"], x["status"]) for x in r.json()) == sorted(
        [(a["location_id"], 20, "Available"), (h["location_id"], 4, "Available")]
    )

    # 目标库位容量不足：不动源库位
    r = await client.post(
        "/inventory/move",
        json={"item_id": item, "from_location_id": a["location_id"], "to_location_id": b["location_id"], "quantity": 6},
    )
    assert r.status_code == 409 and r.json()["error_code"] == "capacity_exceeded"

    r = await client.post(
        "/inventory/move",
        json={
            "item_id": item,
            "from_location_id": a["location_id"],
            "to_location_id": b["location_id"],
            "quantity": 5,
            "ref": "MV-Q",
        },
        headers=HEADERS,
    )
    assert r.status_code == 200, r.text
    mv = r.json()
    assert mv["ref"] == "MV-Q"
    assert (mv["source"]["after"], mv["destination"]["after"]) == (15, 5)
    assert mv["destination"]["location_capacity"] == 5

    r = await client.get("/inventory/low-stock", params={"threshold": 30})
    assert r.status_code == 200
    assert [(x["item_id"], x["total_quantity"], x["threshold"]) for x in r.json()] == [(item, 24, 30)]

    r = await client.get("/inventory/low-stock", params={"threshold": 24})
    assert r.json() == []


@pytest.mark.asyncio
async def test_receive_request_validation(client: httpx.AsyncClient):
    r = await client.post("/inventory/receive", json={"item_id": 1, "location_id": 1, "quantity": 3, "ref": ""})
    assert r.status_code == 422
    body = r.json()
    assert body["error_code"] == "request_validation_error"
    assert [d["path"] for d in body["details"]] == ["ref"]
    assert body["context"]["path"] == "/inventory/receive"


@pytest.mark.asyncio
async def test_putaway_suggestion(client: httpx.AsyncClient, session: AsyncSession):
    item = await seed_item(session, code="SKU-PUT")
    busy = await _create_location(client, "P-01", 20)
    quiet = await _create_location(client, "P-02", 20)

    r = await client.post(
        "/inventory/receive",
        json={"item_id": item, "location_id": busy["location_id"], "quantity": 12, "ref": "RCV-PUT"},
        headers=HEADERS,
    )
    assert r.status_code == 200, r.text

    r = await client.get("/locations/putaway-suggestion", params={"quantity": 5})
    assert r.status_code == 200, r.text
    assert (r.json()["location_id"], r.json()["available_capacity"]) == (quiet["location_id"], 20)

    r = await client.get("/locations/putaway-suggestion", params={"quantity": 21})
    assert r.status_code == 200, r.text
    assert r.json() is None

    r = await client.get("/locations/putaway-suggestion", params={"quantity": 0})
    assert r.status_code == 422 and r.json()["error_code"] == "validation_error"
