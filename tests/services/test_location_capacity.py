# tests/services/test_location_capacity.py
from __future__ import annotations

import logging

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from tests.helpers.fulfillment import (
    ACTOR,
    create_so,
    generate_picking,
    location_capacity,
    receive,
    seed_item,
    seed_location,
)

from app.core.tx import run_tx
from app.models.enums import CapacityStatus, LocationCategory
from app.models.location import Location
from app.services.fulfillment_errors import CapacityExceeded, InvalidState, NotFound, ValidationError
from app.services.location_capacity import LocationCapacityService, load_location
from app.services.picking_service import PickingService


@pytest.mark.asyncio
async def test_reserve_never_partially_applies(session: AsyncSession):
    loc_id = await seed_location(session, code="CAP-1", max_capacity=10)
    svc = LocationCapacityService()

    assert await run_tx(session, lambda s: svc.reserve(s, loc_id, 8)) == 8

    with pytest.raises(CapacityExceeded) as ei:
        await run_tx(session, lambda s: svc.reserve(s, loc_id, 3))
    assert ei.value.context["available_capacity"] == 2

    cur, _ = await location_capacity(session, loc_id)
    assert cur == 8


@pytest.mark.asyncio
async def test_is_full_follows_capacity_mutations(session: AsyncSession):
    loc_id = await seed_location(session, code="CAP-2", max_capacity=10)
    svc = LocationCapacityService()

    await run_tx(session, lambda s: svc.reserve(s, loc_id, 10))
    loc = await load_location(session, loc_id)
    assert loc.is_full is True
    assert loc.available_capacity == 0
    assert loc.capacity_status() == CapacityStatus.FULL

    await run_tx(session, lambda s: svc.release(s, loc_id, 4))
    loc = await load_location(session, loc_id)
    assert loc.is_full is False
    assert loc.capacity_status() == CapacityStatus.HALF


@pytest.mark.asyncio
async def test_release_clamps_at_zero_and_warns(session: AsyncSession, caplog):
    loc_id = await seed_location(session, code="CAP-3", max_capacity=10)
    svc = LocationCapacityService()
    await run_tx(session, lambda s: svc.reserve(s, loc_id, 2))

    with caplog.at_level(logging.WARNING, logger="wms.capacity"):
        assert await run_tx(session, lambda s: svc.release(s, loc_id, 5)) == 0

    assert any("below zero" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_reserve_rejects_non_positive_delta(session: AsyncSession):
    loc_id = await seed_location(session, code="CAP-4", max_capacity=10)
    with pytest.raises(ValidationError):
        await run_tx(session, lambda s: LocationCapacityService().reserve(s, loc_id, 0))


@pytest.mark.asyncio
async def test_recompute_repairs_drift(session: AsyncSession):
    item = await seed_item(session, code="SKU-CAP-5")
    a = await seed_location(session, code="CAP-5A", max_capacity=50)
    b = await seed_location(session, code="CAP-5B", max_capacity=50)
    await receive(session, item_id=item, location_id=a, qty=5)
    await receive(session, item_id=item, location_id=b, qty=7)

    # 人为制造漂移
    await session.execute(update(Location).where(Location.id == a).values(current_capacity=9))
    await session.commit()

    svc = LocationCapacityService()
    drifts = await run_tx(session, lambda s: svc.recompute_all(s))
    assert [(d.location_id, d.stored_capacity, d.actual_capacity) for d in drifts] == [(a, 9, 5)]
    assert drifts[0].drift == 4

    assert await location_capacity(session, a) == (5, 5)
    assert await location_capacity(session, b) == (7, 7)
    assert await run_tx(session, lambda s: svc.recompute(s, b)) == 7


@pytest.mark.asyncio
async def test_create_location_validations(session: AsyncSession):
    await seed_location(session, code="CAP-6", max_capacity=10)
    svc = LocationCapacityService()

    with pytest.raises(InvalidState):
        await run_tx(
            session,
            lambda s: svc.create_location(s, code="CAP-6", name="dup", category="Storage", max_capacity=5, actor=ACTOR),
        )
    with pytest.raises(ValidationError):
        await run_tx(
            session,
            lambda s: svc.create_location(s, code="CAP-6X", name="", category="Storage", max_capacity=0, actor=ACTOR),
        )
    with pytest.raises(ValidationError):
        await run_tx(
            session,
            lambda s: svc.create_location(s, code="CAP-6Y", name="", category="Dock", max_capacity=5, actor=ACTOR),
        )


@pytest.mark.asyncio
async def test_soft_delete_requires_empty_location(session: AsyncSession):
    item = await seed_item(session, code="SKU-CAP-7")
    loc_id = await seed_location(session, code="CAP-7", max_capacity=10)
    await receive(session, item_id=item, location_id=loc_id, qty=1)
    svc = LocationCapacityService()

    with pytest.raises(InvalidState):
        await run_tx(session, lambda s: svc.soft_delete(s, loc_id, actor=ACTOR))

    empty_id = await seed_location(session, code="CAP-7E", max_capacity=10)
    await run_tx(session, lambda s: svc.soft_delete(s, empty_id, actor=ACTOR))

    with pytest.raises(NotFound):
        await load_location(session, empty_id)

    # 已删除库位的编码可以复用
    reused = await seed_location(session, code="CAP-7E", max_capacity=20)
    assert reused != empty_id


@pytest.mark.asyncio
async def test_near_full_and_utilization(session: AsyncSession):
    item = await seed_item(session, code="SKU-CAP-8")
    full = await seed_location(session, code="CAP-8F", max_capacity=10)
    near = await seed_location(session, code="CAP-8N", max_capacity=10)
    low = await seed_location(session, code="CAP-8L", max_capacity=10)
    await seed_location(session, code="CAP-8H", max_capacity=10, category=LocationCategory.OTHER.value)
    await receive(session, item_id=item, location_id=full, qty=10)
    await receive(session, item_id=item, location_id=near, qty=8)
    await receive(session, item_id=item, location_id=low, qty=2)

    svc = LocationCapacityService()
    views = await svc.list_near_full(session)
    assert [v.location_id for v in views] == [full, near]
    assert views[0].capacity_status == CapacityStatus.FULL
    assert views[1].capacity_status == CapacityStatus.NEAR_FULL

    summary = await svc.utilization_summary(session)
    assert summary.total_locations == 4
    assert summary.full_locations == 1
    assert summary.near_full_locations == 1
    assert summary.total_capacity == 40
    assert summary.used_capacity == 20
    assert summary.utilization_percentage == 50.0


@pytest.mark.asyncio
async def test_soft_delete_blocked_while_open_picking_references_location(session: AsyncSession):
    item = await seed_item(session, code="SKU-CAP-9")
    loc_id = await seed_location(session, code="CAP-9", max_capacity=50)
    holding = await seed_location(session, code="CAP-9H", max_capacity=50, category=LocationCategory.OTHER.value)
    await receive(session, item_id=item, location_id=loc_id, qty=40)
    so_id = await create_so(session, holding_location_id=holding, lines=[(item, 40)])
    pid, (detail_id,) = await generate_picking(session, so_id)
    await run_tx(session, lambda s: PickingService(s).record_pick(detail_id=detail_id, quantity=40, actor=ACTOR))

    # 库位已被拣空，但拣货单未关闭
    assert await location_capacity(session, loc_id) == (0, 0)
    svc = LocationCapacityService()
    with pytest.raises(InvalidState) as ei:
        await run_tx(session, lambda s: svc.soft_delete(s, loc_id, actor=ACTOR))
    assert ei.value.context["open_picking_details"] == 1

    # 库位仍在，取消可以把 40 件退回
    res = await run_tx(session, lambda s: PickingService(s).cancel(picking_id=pid, actor=ACTOR))
    assert res.restored_quantity == 40
    assert await location_capacity(session, loc_id) == (40, 40)
    assert (await load_location(session, loc_id)).is_deleted is False


@pytest.mark.asyncio
async def test_soft_delete_allowed_after_picking_completed(session: AsyncSession):
    item = await seed_item(session, code="SKU-CAP-10")
    loc_id = await seed_location(session, code="CAP-10", max_capacity=50)
    holding = await seed_location(session, code="CAP-10H", max_capacity=50, category=LocationCategory.OTHER.value)
    await receive(session, item_id=item, location_id=loc_id, qty=15)
    so_id = await create_so(session, holding_location_id=holding, lines=[(item, 15)])
    pid, (detail_id,) = await generate_picking(session, so_id)
    await run_tx(session, lambda s: PickingService(s).record_pick(detail_id=detail_id, quantity=15, actor=ACTOR))
    await run_tx(session, lambda s: PickingService(s).complete(picking_id=pid, actor=ACTOR))

    await run_tx(session, lambda s: LocationCapacityService().soft_delete(s, loc_id, actor=ACTOR))
    with pytest.raises(NotFound):
        await load_location(session, loc_id)


@pytest.mark.asyncio
async def test_suggest_putaway_prefers_lowest_utilisation_with_room(session: AsyncSession):
    item = await seed_item(session, code="SKU-CAP-11")
    busy = await seed_location(session, code="CAP-11B", max_capacity=100)
    quiet = await seed_location(session, code="CAP-11Q", max_capacity=100)
    small = await seed_location(session, code="CAP-11S", max_capacity=10)
    await seed_location(session, code="CAP-11X", max_capacity=100, is_active=False)
    await seed_location(session, code="CAP-11H", max_capacity=100, category=LocationCategory.OTHER.value)
    await receive(session, item_id=item, location_id=busy, qty=60)
    await receive(session, item_id=item, location_id=quiet, qty=20)
    svc = LocationCapacityService()

    # small 利用率 0% 但放不下 30 件；停用库位 / 非存储位不参与
    view = await svc.suggest_putaway_location(session, quantity=30)
    assert view is not None
    assert (view.location_id, view.available_capacity) == (quiet, 80)

    view = await svc.suggest_putaway_location(session, quantity=5)
    assert view is not None and view.location_id == small

    assert await svc.suggest_putaway_location(session, quantity=81) is None

    other = await svc.suggest_putaway_location(session, quantity=30, category="Other")
    assert other is not None and other.category == "Other"

    with pytest.raises(ValidationError):
        await svc.suggest_putaway_location(session, quantity=0)
