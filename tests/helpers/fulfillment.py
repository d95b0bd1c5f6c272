# tests/helpers/fulfillment.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.audit import Actor
from app.core.tx import run_tx
from app.models.audit_event import AuditEvent
from app.models.enums import LocationCategory
from app.models.inventory import InventoryRecord
from app.models.item import Item
from app.models.location import Location
from app.models.picking import Picking, PickingDetail
from app.models.sales_order import SalesOrder
from app.models.stock_ledger import StockLedger
from app.services.inventory_ledger import InventoryLedgerService
from app.services.location_capacity import LocationCapacityService
from app.services.picking_service import PickingService
from app.services.sales_order_service import SalesOrderLineInput, SalesOrderService

__all__ = [
    "ACTOR",
    "seed_item",
    "seed_location",
    "receive",
    "set_age",
    "create_so",
    "generate_picking",
    "qty_at",
    "location_capacity",
    "ledger_total",
    "so_status",
    "picking_status",
    "count_pickings",
    "count_details",
    "ledger_rows",
    "audit_actions",
]

ACTOR = Actor(actor_id=7, name="tester")


# ------------------------------------------------------------------------------
# 造数：商品 / 库位 / 入库 / 销售单 / 拣货单
# ------------------------------------------------------------------------------


async def seed_item(
    session: AsyncSession,
    *,
    code: str,
    price: str = "10.00",
    is_active: bool = True,
) -> int:
    it = Item(code=code, name=f"UT-{code}", unit="PCS", standard_price=Decimal(price), is_active=is_active)
    session.add(it)
    await session.commit()
    return int(it.id)


async def seed_location(
    session: AsyncSession,
    *,
    code: str,
    max_capacity: int = 100,
    category: str = LocationCategory.STORAGE.value,
    is_active: bool = True,
) -> int:
    async def _run(s: AsyncSession) -> int:
        loc = await LocationCapacityService().create_location(
            s,
            code=code,
            name=code,
            category=category,
            max_capacity=max_capacity,
            is_active=is_active,
            actor=ACTOR,
        )
        return int(loc.id)

    return await run_tx(session, _run)


async def receive(session: AsyncSession, *, item_id: int, location_id: int, qty: int, ref: str = "RCV-UT") -> None:
    async def _run(s: AsyncSession) -> None:
        await InventoryLedgerService().receive(
            s,
            item_id=item_id,
            location_id=location_id,
            quantity=qty,
            ref=ref,
            actor=ACTOR,
        )

    await run_tx(session, _run)


async def set_age(session: AsyncSession, *, item_id: int, location_id: int, when: datetime) -> None:
    """直接改库龄（FIFO 排序用例造数）。"""
    await session.execute(
        update(InventoryRecord)
        .where(InventoryRecord.item_id == item_id, InventoryRecord.location_id == location_id)
        .values(last_updated=when)
        .execution_options(synchronize_session=False)
    )
    await session.commit()


async def create_so(
    session: AsyncSession,
    *,
    holding_location_id: int,
    lines: Sequence[Tuple[int, int]],
    customer_id: int = 1,
    notes: Optional[str] = None,
) -> int:
    async def _run(s: AsyncSession) -> int:
        so = await SalesOrderService(s).create(
            customer_id=customer_id,
            holding_location_id=holding_location_id,
            lines=[SalesOrderLineInput(item_id=i, quantity=q) for i, q in lines],
            notes=notes,
            actor=ACTOR,
        )
        return int(so.id)

    return await run_tx(session, _run)


async def generate_picking(session: AsyncSession, sales_order_id: int) -> Tuple[int, List[int]]:
    """返回 (picking_id, [detail_id...])"""

    async def _run(s: AsyncSession) -> Tuple[int, List[int]]:
        p = await PickingService(s).generate(sales_order_id=sales_order_id, actor=ACTOR)
        return int(p.id), [int(d.id) for d in p.details]

    return await run_tx(session, _run)


# ------------------------------------------------------------------------------
# 查询
# ------------------------------------------------------------------------------


async def qty_at(session: AsyncSession, *, item_id: int, location_id: int) -> int:
    v = await session.scalar(
        select(InventoryRecord.quantity).where(
            InventoryRecord.item_id == item_id,
            InventoryRecord.location_id == location_id,
        )
    )
    return int(v or 0)


async def location_capacity(session: AsyncSession, location_id: int) -> Tuple[int, int]:
    """返回 (current_capacity, 台账实际数量)"""
    cur = await session.scalar(select(Location.current_capacity).where(Location.id == location_id))
    actual = await session.scalar(
        select(func.coalesce(func.sum(InventoryRecord.quantity), 0)).where(
            InventoryRecord.location_id == location_id
        )
    )
    return int(cur or 0), int(actual or 0)


async def ledger_total(session: AsyncSession, item_id: int) -> int:
    v = await session.scalar(
        select(func.coalesce(func.sum(InventoryRecord.quantity), 0)).where(InventoryRecord.item_id == item_id)
    )
    return int(v or 0)


async def so_status(session: AsyncSession, sales_order_id: int) -> str:
    return str(await session.scalar(select(SalesOrder.status).where(SalesOrder.id == sales_order_id)))


async def picking_status(session: AsyncSession, picking_id: int) -> str:
    return str(await session.scalar(select(Picking.status).where(Picking.id == picking_id)))


async def count_pickings(session: AsyncSession, sales_order_id: int) -> int:
    v = await session.scalar(select(func.count(Picking.id)).where(Picking.sales_order_id == sales_order_id))
    return int(v or 0)


async def count_details(session: AsyncSession) -> int:
    return int(await session.scalar(select(func.count(PickingDetail.id))) or 0)


async def ledger_rows(session: AsyncSession, ref: str) -> List[StockLedger]:
    rows = await session.execute(select(StockLedger).where(StockLedger.ref == ref).order_by(StockLedger.id))
    return list(rows.scalars().all())


async def audit_actions(session: AsyncSession, entity_type: str, entity_id: int) -> List[str]:
    rows = await session.execute(
        select(AuditEvent.action)
        .where(AuditEvent.entity_type == entity_type, AuditEvent.entity_id == entity_id)
        .order_by(AuditEvent.id)
    )
    return [str(r) for r in rows.scalars().all()]
