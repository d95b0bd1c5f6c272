# app/services/doc_numbers.py
from __future__ import annotations

from datetime import date

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.picking import Picking
from app.models.sales_order import SalesOrder


def format_picking_number(day: date, seq: int) -> str:
    return f"PKG-{day:%Y-%m-%d}-{int(seq):03d}"


def format_so_number(day: date, seq: int) -> str:
    return f"SO-{day:%Y%m%d}-{int(seq):03d}"


async def next_picking_number(session: AsyncSession, day: date) -> str:
    """
    当日序号 = 当日已有拣货单数 + 1（含已取消）。
    并发下可能撞号：由 pickings.picking_number 唯一约束兜底 → ConcurrencyConflict → 重试。
    """
    count = await session.scalar(select(func.count(Picking.id)).where(Picking.picking_date == day))
    return format_picking_number(day, int(count or 0) + 1)


async def next_so_number(session: AsyncSession, day: date) -> str:
    prefix = f"SO-{day:%Y%m%d}-"
    count = await session.scalar(
        select(func.count(SalesOrder.id)).where(SalesOrder.so_number.like(prefix + "%"))
    )
    return format_so_number(day, int(count or 0) + 1)
