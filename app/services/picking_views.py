# app/services/picking_views.py
from __future__ import annotations

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.picking import Picking
from app.services.picking_loaders import load_picking
from app.services.picking_types import PickingDetailView, PickingSummary


def build_summary(picking: Picking) -> PickingSummary:
    details = [
        PickingDetailView(
            id=int(d.id),
            sales_order_line_id=int(d.sales_order_line_id),
            item_id=int(d.item_id),
            location_id=int(d.location_id),
            quantity_required=int(d.quantity_required),
            quantity_picked=int(d.quantity_picked),
            remaining_quantity=int(d.remaining_quantity),
            status=d.status,
        )
        for d in picking.details or []
    ]
    return PickingSummary(
        id=int(picking.id),
        picking_number=picking.picking_number,
        sales_order_id=int(picking.sales_order_id),
        status=picking.status,
        total_required=picking.total_required,
        total_picked=picking.total_picked,
        completion_percentage=picking.completion_percentage,
        location_count=len({d.location_id for d in details}),
        item_count=len({d.item_id for d in details}),
        has_short_lines=any(d.remaining_quantity > 0 for d in details),
        details=details,
        completed_at=picking.completed_at.isoformat() if picking.completed_at else None,
        cancelled_at=picking.cancelled_at.isoformat() if picking.cancelled_at else None,
    )


async def get_summary(session: AsyncSession, *, picking_id: int) -> PickingSummary:
    return build_summary(await load_picking(session, picking_id))


async def list_summaries(
    session: AsyncSession,
    *,
    status: Optional[str] = None,
    limit: int = 100,
) -> List[PickingSummary]:
    stmt = select(Picking).order_by(Picking.id.desc()).limit(int(limit))
    if status:
        stmt = stmt.where(Picking.status == status)
    rows = (await session.execute(stmt)).scalars().all()
    return [build_summary(p) for p in rows]
