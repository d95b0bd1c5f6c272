# tests/concurrency/test_adjust_concurrency_pg.py
from __future__ import annotations

import asyncio
import os

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from tests.helpers.fulfillment import (
    ACTOR,
    create_so,
    generate_picking,
    ledger_rows,
    location_capacity,
    qty_at,
    receive,
    seed_item,
    seed_location,
)

from app.core.tx import run_tx
from app.models.enums import LocationCategory, MovementType
from app.services.fulfillment_errors import AlreadyExists, InsufficientStock, InvalidQuantity
from app.services.inventory_ledger import InventoryLedgerService
from app.services.picking_service import PickingService

pytestmark = [
    pytest.mark.postgres,
    pytest.mark.skipif(
        not os.getenv("WMS_TEST_DATABASE_URL", "").startswith("postgresql"),
        reason="行锁并发用例需要 WMS_TEST_DATABASE_URL 指向 PostgreSQL",
    ),
]


async def _gather(*coros):
    return await asyncio.gather(*coros, return_exceptions=True)


@pytest.mark.asyncio
async def test_two_concurrent_decrements_only_one_wins(session: AsyncSession, async_session_maker):
    """50 件，两个并发 -30：只能成功一个，另一个 fail closed。"""
    item = await seed_item(session, code="SKU-CC")
    loc = await seed_location(session, code="CC-1", max_capacity=100)
    await receive(session, item_id=item, location_id=loc, qty=50)

    async def worker(i: int):
        async with async_session_maker() as s:
            return await run_tx(
                s,
                lambda tx: InventoryLedgerService().adjust(
                    tx,
                    item_id=item,
                    location_id=loc,
                    delta=-30,
                    reason=MovementType.ADJUSTMENT,
                    ref=f"CC-ADJ-{i}",
                    actor=ACTOR,
                ),
            )

    results = await _gather(worker(1), worker(2))
    ok = [r for r in results if not isinstance(r, BaseException)]
    failed = [r for r in results if isinstance(r, BaseException)]

    assert len(ok) == 1
    assert len(failed) == 1 and isinstance(failed[0], InsufficientStock)
    assert ok[0].after == 20

    assert await qty_at(session, item_id=item, location_id=loc) == 20
    assert await location_capacity(session, loc) == (20, 20)
    rows = await ledger_rows(session, "CC-ADJ-1") + await ledger_rows(session, "CC-ADJ-2")
    assert len(rows) == 1


@pytest.mark.asyncio
async def test_concurrent_generate_creates_single_picking(session: AsyncSession, async_session_maker):
    item = await seed_item(session, code="SKU-CG")
    loc = await seed_location(session, code="CG-1", max_capacity=100)
    holding = await seed_location(session, code="CG-H", category=LocationCategory.OTHER.value)
    await receive(session, item_id=item, location_id=loc, qty=30)
    so_id = await create_so(session, holding_location_id=holding, lines=[(item, 10)])

    async def worker():
        async with async_session_maker() as s:

            async def _run(tx: AsyncSession) -> int:
                p = await PickingService(tx).generate(sales_order_id=so_id, actor=ACTOR)
                return int(p.id)

            return await run_tx(s, _run)

    results = await _gather(worker(), worker())
    ok = [r for r in results if isinstance(r, int)]
    failed = [r for r in results if isinstance(r, BaseException)]

    assert len(ok) == 1
    assert len(failed) == 1 and isinstance(failed[0], AlreadyExists)


@pytest.mark.asyncio
async def test_concurrent_record_pick_only_one_wins(session: AsyncSession, async_session_maker):
    """同一明细 10 件，两个并发各拣 6：行锁串行化后第二个超出剩余量。"""
    item = await seed_item(session, code="SKU-CP")
    loc = await seed_location(session, code="CP-1", max_capacity=100)
    holding = await seed_location(session, code="CP-H", category=LocationCategory.OTHER.value)
    await receive(session, item_id=item, location_id=loc, qty=10)
    so_id = await create_so(session, holding_location_id=holding, lines=[(item, 10)])
    _, (detail_id,) = await generate_picking(session, so_id)

    async def worker():
        async with async_session_maker() as s:
            return await run_tx(
                s, lambda tx: PickingService(tx).record_pick(detail_id=detail_id, quantity=6, actor=ACTOR)
            )

    results = await _gather(worker(), worker())
    ok = [r for r in results if not isinstance(r, BaseException)]
    failed = [r for r in results if isinstance(r, BaseException)]

    assert len(ok) == 1 and ok[0].remaining_quantity == 4
    assert len(failed) == 1 and isinstance(failed[0], InvalidQuantity)

    assert await qty_at(session, item_id=item, location_id=loc) == 4
    assert await location_capacity(session, loc) == (4, 4)
