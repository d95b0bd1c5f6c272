# app/services/picking_loaders.py
from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.enums import PickingStatus
from app.models.picking import Picking, PickingDetail
from app.models.sales_order import SalesOrder
from app.services.fulfillment_errors import NotFound

# 加锁顺序（所有写路径一致）：
#   SalesOrder → Picking → PickingDetail → Location → InventoryRecord


async def load_sales_order(
    session: AsyncSession,
    sales_order_id: int,
    *,
    for_update: bool = False,
) -> SalesOrder:
    stmt = (
        select(SalesOrder)
        .options(selectinload(SalesOrder.lines))
        .where(SalesOrder.id == int(sales_order_id))
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()

    so = (await session.execute(stmt)).scalars().first()
    if so is None:
        raise NotFound(f"销售单不存在：id={sales_order_id}", context={"sales_order_id": int(sales_order_id)})
    return so


async def load_picking(
    session: AsyncSession,
    picking_id: int,
    *,
    for_update: bool = False,
) -> Picking:
    stmt = (
        select(Picking)
        .options(selectinload(Picking.details))
        .where(Picking.id == int(picking_id))
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()

    picking = (await session.execute(stmt)).scalars().first()
    if picking is None:
        raise NotFound(f"拣货单不存在：id={picking_id}", context={"picking_id": int(picking_id)})
    return picking


async def load_detail(
    session: AsyncSession,
    detail_id: int,
    *,
    for_update: bool = False,
) -> PickingDetail:
    stmt = (
        select(PickingDetail)
        .where(PickingDetail.id == int(detail_id))
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()

    detail = (await session.execute(stmt)).scalars().first()
    if detail is None:
        raise NotFound(f"拣货明细不存在：id={detail_id}", context={"picking_detail_id": int(detail_id)})
    return detail


async def find_live_picking(
    session: AsyncSession,
    sales_order_id: int,
    *,
    for_update: bool = False,
) -> Optional[Picking]:
    """存活（未取消，含 Completed）的拣货单；没有返回 None。"""
    stmt = (
        select(Picking)
        .options(selectinload(Picking.details))
        .where(
            Picking.sales_order_id == int(sales_order_id),
            Picking.status != PickingStatus.CANCELLED.value,
        )
        .order_by(Picking.id.desc())
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()
    return (await session.execute(stmt)).scalars().first()
