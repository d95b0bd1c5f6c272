# tests/services/test_inventory_ledger.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from tests.helpers.fulfillment import (
    ACTOR,
    ledger_rows,
    location_capacity,
    qty_at,
    receive,
    seed_item,
    seed_location,
    set_age,
)

from app.core.tx import run_tx
from app.models.enums import LocationCategory, MovementType
from app.services.fulfillment_errors import (
    CapacityExceeded,
    InsufficientStock,
    InvalidQuantity,
    InvalidState,
    NotFound,
    ValidationError,
)
from app.services.inventory_ledger import InventoryLedgerService

UTC = timezone.utc


def _naive_utc(dt: datetime) -> datetime:
    # sqlite 取回的是 naive，PG 取回的是 aware
    return dt.astimezone(UTC).replace(tzinfo=None) if dt.tzinfo else dt


@pytest.mark.asyncio
async def test_adjust_over_decrement_fails_closed(session: AsyncSession):
    item = await seed_item(session, code="SKU-LG-1")
    loc = await seed_location(session, code="LG-1", max_capacity=50)
    await receive(session, item_id=item, location_id=loc, qty=5, ref="RCV-LG-1")
    ledger = InventoryLedgerService()

    with pytest.raises(InsufficientStock) as ei:
        await run_tx(
            session,
            lambda s: ledger.adjust(
                s, item_id=item, location_id=loc, delta=-6, reason=MovementType.ADJUSTMENT, ref="ADJ-LG-1", actor=ACTOR
            ),
        )
    detail = ei.value.details[0]
    assert detail["required_qty"] == 6 and detail["available_qty"] == 5 and detail["short_qty"] == 1

    assert await qty_at(session, item_id=item, location_id=loc) == 5
    assert await location_capacity(session, loc) == (5, 5)
    assert await ledger_rows(session, "ADJ-LG-1") == []


@pytest.mark.asyncio
async def test_adjust_missing_record_cannot_go_negative(session: AsyncSession):
    item = await seed_item(session, code="SKU-LG-2")
    loc = await seed_location(session, code="LG-2", max_capacity=50)

    with pytest.raises(InsufficientStock):
        await run_tx(
            session,
            lambda s: InventoryLedgerService().adjust(
                s, item_id=item, location_id=loc, delta=-1, reason=MovementType.ADJUSTMENT, ref="ADJ-LG-2", actor=ACTOR
            ),
        )
    with pytest.raises(ValidationError):
        await run_tx(
            session,
            lambda s: InventoryLedgerService().adjust(
                s, item_id=item, location_id=loc, delta=0, reason=MovementType.ADJUSTMENT, ref="ADJ-LG-2", actor=ACTOR
            ),
        )


@pytest.mark.asyncio
async def test_adjust_respects_location_capacity(session: AsyncSession):
    item = await seed_item(session, code="SKU-LG-3")
    loc = await seed_location(session, code="LG-3", max_capacity=10)
    await receive(session, item_id=item, location_id=loc, qty=8)

    with pytest.raises(CapacityExceeded):
        await receive(session, item_id=item, location_id=loc, qty=3)

    assert await qty_at(session, item_id=item, location_id=loc) == 8
    assert await location_capacity(session, loc) == (8, 8)


@pytest.mark.asyncio
async def test_capacity_equals_ledger_sum_after_each_commit(session: AsyncSession):
    i1 = await seed_item(session, code="SKU-LG-4A")
    i2 = await seed_item(session, code="SKU-LG-4B")
    a = await seed_location(session, code="LG-4A", max_capacity=100)
    b = await seed_location(session, code="LG-4B", max_capacity=100)
    ledger = InventoryLedgerService()

    await receive(session, item_id=i1, location_id=a, qty=30)
    assert await location_capacity(session, a) == (30, 30)

    await receive(session, item_id=i2, location_id=a, qty=12)
    assert await location_capacity(session, a) == (42, 42)

    await run_tx(
        session,
        lambda s: ledger.adjust(
            s, item_id=i1, location_id=a, delta=-7, reason=MovementType.ADJUSTMENT, ref="ADJ-LG-4", actor=ACTOR
        ),
    )
    assert await location_capacity(session, a) == (35, 35)

    await run_tx(
        session,
        lambda s: ledger.move(s, item_id=i2, from_location_id=a, to_location_id=b, quantity=12, actor=ACTOR),
    )
    assert await location_capacity(session, a) == (23, 23)
    assert await location_capacity(session, b) == (12, 12)


@pytest.mark.asyncio
async def test_move_checks_destination_before_touching_source(session: AsyncSession):
    item = await seed_item(session, code="SKU-LG-5")
    src = await seed_location(session, code="LG-5S", max_capacity=100)
    dst = await seed_location(session, code="LG-5D", max_capacity=5)
    await receive(session, item_id=item, location_id=src, qty=20)

    with pytest.raises(CapacityExceeded):
        await run_tx(
            session,
            lambda s: InventoryLedgerService().move(
                s, item_id=item, from_location_id=src, to_location_id=dst, quantity=6, actor=ACTOR, ref="MOVE-LG-5"
            ),
        )

    assert await qty_at(session, item_id=item, location_id=src) == 20
    assert await qty_at(session, item_id=item, location_id=dst) == 0
    assert await location_capacity(session, src) == (20, 20)
    assert await ledger_rows(session, "MOVE-LG-5") == []


@pytest.mark.asyncio
async def test_move_writes_paired_ledger_rows_and_keeps_age(session: AsyncSession):
    item = await seed_item(session, code="SKU-LG-6")
    src = await seed_location(session, code="LG-6S", max_capacity=100)
    dst = await seed_location(session, code="LG-6D", max_capacity=100)
    await receive(session, item_id=item, location_id=src, qty=20)
    old = datetime(2024, 1, 1, tzinfo=UTC)
    await set_age(session, item_id=item, location_id=src, when=old)

    ledger = InventoryLedgerService()
    res = await run_tx(
        session,
        lambda s: ledger.move(s, item_id=item, from_location_id=src, to_location_id=dst, quantity=8, actor=ACTOR),
    )
    assert res.ref.startswith("MOVE-")
    assert (res.source.after, res.destination.after) == (12, 8)

    rows = await ledger_rows(session, res.ref)
    assert [(r.reason, r.ref_line, r.delta, r.after_qty) for r in rows] == [
        ("TRANSFER_OUT", 1, -8, 12),
        ("TRANSFER_IN", 2, 8, 8),
    ]
    assert all(r.actor == ACTOR.label for r in rows)

    # 移库不刷新库龄：目标新记录沿用源库存的库龄
    cands = await ledger.fifo_candidates(session, item, LocationCategory.STORAGE, for_update=True)
    ages = {c.location_id: _naive_utc(c.last_updated) for c in cands}
    assert ages[src] == _naive_utc(old)
    assert ages[dst] == _naive_utc(old)


@pytest.mark.asyncio
async def test_move_validations(session: AsyncSession):
    item = await seed_item(session, code="SKU-LG-7")
    src = await seed_location(session, code="LG-7S", max_capacity=100)
    dst = await seed_location(session, code="LG-7D", max_capacity=100, is_active=False)
    await receive(session, item_id=item, location_id=src, qty=3)
    ledger = InventoryLedgerService()

    with pytest.raises(InvalidQuantity):
        await run_tx(
            session,
            lambda s: ledger.move(s, item_id=item, from_location_id=src, to_location_id=dst, quantity=0, actor=ACTOR),
        )
    with pytest.raises(ValidationError):
        await run_tx(
            session,
            lambda s: ledger.move(s, item_id=item, from_location_id=src, to_location_id=src, quantity=1, actor=ACTOR),
        )
    with pytest.raises(InvalidState):
        await run_tx(
            session,
            lambda s: ledger.move(s, item_id=item, from_location_id=src, to_location_id=dst, quantity=1, actor=ACTOR),
        )
    with pytest.raises(NotFound):
        await run_tx(
            session,
            lambda s: ledger.move(s, item_id=item, from_location_id=src, to_location_id=9999, quantity=1, actor=ACTOR),
        )


@pytest.mark.asyncio
async def test_fifo_candidates_oldest_first_storage_only(session: AsyncSession):
    item = await seed_item(session, code="SKU-LG-8")
    newer = await seed_location(session, code="LG-8A", max_capacity=100)
    older = await seed_location(session, code="LG-8B", max_capacity=100)
    emptied = await seed_location(session, code="LG-8C", max_capacity=100)
    holding = await seed_location(session, code="LG-8H", max_capacity=100, category=LocationCategory.OTHER.value)

    await receive(session, item_id=item, location_id=newer, qty=10)
    await receive(session, item_id=item, location_id=older, qty=10)
    await receive(session, item_id=item, location_id=emptied, qty=4)
    await receive(session, item_id=item, location_id=holding, qty=10)

    now = datetime.now(UTC)
    await set_age(session, item_id=item, location_id=newer, when=now - timedelta(days=1))
    await set_age(session, item_id=item, location_id=older, when=now - timedelta(days=9))
    await set_age(session, item_id=item, location_id=emptied, when=now - timedelta(days=30))

    ledger = InventoryLedgerService()
    await run_tx(
        session,
        lambda s: ledger.adjust(
            s, item_id=item, location_id=emptied, delta=-4, reason=MovementType.ADJUSTMENT, ref="ADJ-LG-8", actor=ACTOR
        ),
    )

    cands = await ledger.fifo_candidates(session, item, LocationCategory.STORAGE)
    assert [c.location_id for c in cands] == [older, newer]

    with_empty = await ledger.fifo_candidates(session, item, LocationCategory.STORAGE, exclude_empty=False)
    assert [c.location_id for c in with_empty] == [emptied, older, newer]

    assert await ledger.get_available(session, item, LocationCategory.STORAGE) == 20
    assert await ledger.get_available(session, item, LocationCategory.OTHER) == 10
    assert await ledger.get_available(session, item) == 30


@pytest.mark.asyncio
async def test_receive_validations_and_low_stock(session: AsyncSession):
    plenty = await seed_item(session, code="SKU-LG-9A")
    scarce = await seed_item(session, code="SKU-LG-9B")
    retired = await seed_item(session, code="SKU-LG-9C", is_active=False)
    loc = await seed_location(session, code="LG-9", max_capacity=100)
    off = await seed_location(session, code="LG-9OFF", max_capacity=100, is_active=False)

    await receive(session, item_id=plenty, location_id=loc, qty=50)
    await receive(session, item_id=scarce, location_id=loc, qty=3)

    with pytest.raises(InvalidQuantity):
        await receive(session, item_id=plenty, location_id=loc, qty=0)
    with pytest.raises(ValidationError):
        await receive(session, item_id=retired, location_id=loc, qty=1)
    with pytest.raises(InvalidState):
        await receive(session, item_id=plenty, location_id=off, qty=1)
    with pytest.raises(NotFound):
        await receive(session, item_id=9999, location_id=loc, qty=1)

    low = await InventoryLedgerService().low_stock(session, threshold=10)
    assert [(x.item_id, x.total_quantity) for x in low] == [(scarce, 3)]

    rows = await ledger_rows(session, "RCV-UT")
    assert {r.reason for r in rows} == {"RECEIPT"}
