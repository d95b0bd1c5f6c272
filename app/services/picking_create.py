# app/services/picking_create.py
from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.audit import Actor
from app.core.tx import flush_or_conflict
from app.db.base import utcnow
from app.models.enums import PickingStatus, SalesOrderStatus
from app.models.picking import Picking, PickingDetail
from app.services.audit_writer import AuditEventWriter
from app.services.doc_numbers import next_picking_number
from app.services.fifo_allocator import FifoAllocator, ItemCandidates, plan_fifo
from app.services.fulfillment_errors import (
    AlreadyExists,
    InsufficientStock,
    InvalidState,
    ValidationError,
    shortage_detail,
)
from app.services.picking_loaders import find_live_picking, load_sales_order

logger = logging.getLogger("wms.picking")


async def generate_for_order(
    session: AsyncSession,
    *,
    sales_order_id: int,
    actor: Actor,
    allocator: FifoAllocator,
    trace_id: Optional[str] = None,
) -> Picking:
    """
    由销售单生成拣货单（全有或全无）：

    1) 锁销售单；已有存活拣货单 → AlreadyExists；销售单非 Pending → InvalidState
    2) 按商品汇总需求，锁定 Storage 候选，先整体校验（任一商品不足 → InsufficientStock，不落任何行）
    3) 逐行按 FIFO 切片生成明细；同一商品多行时累计已分配量，不会重复分配同一库位的同一批货
    4) 销售单 → InProgress
    """
    so = await load_sales_order(session, sales_order_id, for_update=True)

    live = await find_live_picking(session, so.id)
    if live is not None:
        raise AlreadyExists(
            f"销售单 {so.so_number} 已存在拣货单 {live.picking_number}。",
            context={"sales_order_id": int(so.id), "picking_id": int(live.id)},
        )
    if so.status != SalesOrderStatus.PENDING.value:
        raise InvalidState(
            f"销售单 {so.so_number} 状态为 {so.status}，只有 Pending 才能生成拣货单。",
            context={"sales_order_id": int(so.id), "status": so.status},
        )

    lines = [ln for ln in (so.lines or []) if int(ln.quantity) > 0]
    if not lines:
        raise ValidationError(
            f"销售单 {so.so_number} 没有可拣货的明细。",
            context={"sales_order_id": int(so.id)},
        )

    demand: Dict[int, int] = defaultdict(int)
    for ln in lines:
        demand[int(ln.item_id)] += int(ln.quantity)

    # 按 item_id 升序加锁，固定顺序
    candidates: Dict[int, ItemCandidates] = {}
    shortages: List[dict] = []
    for item_id in sorted(demand):
        ic = await allocator.load_candidates(session, item_id, for_update=True)
        candidates[item_id] = ic
        available = ic.total_available()
        if available < demand[item_id]:
            shortages.append(
                shortage_detail(
                    item_id=item_id,
                    required_qty=demand[item_id],
                    available_qty=available,
                    path=f"items[{item_id}]",
                )
            )
    if shortages:
        raise InsufficientStock(
            f"销售单 {so.so_number} 存储位库存不足，无法生成拣货单。",
            context={"sales_order_id": int(so.id)},
            details=shortages,
        )

    today = utcnow().date()
    picking = Picking(
        picking_number=await next_picking_number(session, today),
        sales_order_id=int(so.id),
        status=PickingStatus.PENDING.value,
        picking_date=today,
        created_by=actor.label,
        details=[],
    )
    session.add(picking)

    consumed: Dict[int, Dict[int, int]] = defaultdict(dict)
    for ln in lines:
        item_id = int(ln.item_id)
        ic = candidates[item_id]
        slices, shortfall = plan_fifo(
            ic.candidates,
            int(ln.quantity),
            committed=ic.committed,
            consumed=consumed[item_id],
        )
        if shortfall > 0:
            # 汇总校验已通过，这里不应出现
            raise InsufficientStock(
                "分配过程中库存不足。",
                context={"sales_order_id": int(so.id), "sales_order_line_id": int(ln.id)},
            )
        for s in slices:
            picking.details.append(
                PickingDetail(
                    sales_order_line_id=int(ln.id),
                    item_id=item_id,
                    location_id=s.location_id,
                    quantity_required=s.quantity_allocated,
                    quantity_picked=0,
                )
            )
            used = consumed[item_id]
            used[s.location_id] = used.get(s.location_id, 0) + s.quantity_allocated

    so_before = so.status
    so.status = SalesOrderStatus.IN_PROGRESS.value

    await flush_or_conflict(session)

    await AuditEventWriter.write(
        session,
        action="PICKING_GENERATED",
        entity_type="Picking",
        entity_id=picking.id,
        actor=actor,
        after={
            "picking_number": picking.picking_number,
            "sales_order_id": int(so.id),
            "details": [
                {
                    "item_id": d.item_id,
                    "location_id": d.location_id,
                    "quantity_required": d.quantity_required,
                }
                for d in picking.details
            ],
        },
        trace_id=trace_id,
    )
    await AuditEventWriter.write(
        session,
        action="SO_STATUS_CHANGED",
        entity_type="SalesOrder",
        entity_id=so.id,
        actor=actor,
        before={"status": so_before},
        after={"status": so.status, "picking_id": int(picking.id)},
        trace_id=trace_id,
    )

    logger.info(
        "picking generated: %s for so=%s (%d details)",
        picking.picking_number,
        so.so_number,
        len(picking.details),
    )
    return picking
