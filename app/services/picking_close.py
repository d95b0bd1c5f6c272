# app/services/picking_close.py
from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.audit import Actor
from app.core.config import get_settings
from app.core.tx import flush_or_conflict
from app.db.base import utcnow
from app.models.enums import MovementType, PickingStatus, SalesOrderStatus
from app.models.picking import Picking
from app.models.sales_order import SalesOrder
from app.services.audit_writer import AuditEventWriter
from app.services.fulfillment_errors import InvalidState, NothingPicked
from app.services.inventory_ledger import InventoryLedgerService
from app.services.picking_loaders import load_picking, load_sales_order
from app.services.picking_types import CancelResult, CompletionResult, RestoredLine
from app.services.sales_order_notes import format_cancellation_notes

logger = logging.getLogger("wms.picking")

_OPEN = (PickingStatus.PENDING.value, PickingStatus.IN_PROGRESS.value)


async def _lock_order_and_picking(session: AsyncSession, picking_id: int):
    # 先锁销售单再锁拣货单（与取消销售单路径一致）
    head = await load_picking(session, picking_id)
    so = await load_sales_order(session, head.sales_order_id, for_update=True)
    picking = await load_picking(session, picking_id, for_update=True)
    return so, picking


async def complete_picking(
    session: AsyncSession,
    *,
    picking_id: int,
    actor: Actor,
    trace_id: Optional[str] = None,
) -> CompletionResult:
    """
    完成拣货单：只要求“有拣过”（总拣货量 > 0），不要求每行拣满。
    有未拣满明细时照常完成，但打 WARNING 并在结果里标记 has_short_lines。
    """
    so, picking = await _lock_order_and_picking(session, picking_id)

    if picking.status not in _OPEN:
        raise InvalidState(
            f"拣货单 {picking.picking_number} 状态为 {picking.status}，不能完成。",
            context={"picking_id": int(picking.id), "status": picking.status},
        )

    total_picked = picking.total_picked
    if total_picked <= 0:
        raise NothingPicked(
            f"拣货单 {picking.picking_number} 尚未拣货，不能完成。",
            context={"picking_id": int(picking.id)},
        )

    if so.status != SalesOrderStatus.IN_PROGRESS.value:
        raise InvalidState(
            f"销售单 {so.so_number} 状态为 {so.status}，不能推进到 Picked。",
            context={"sales_order_id": int(so.id), "status": so.status},
        )

    picking_before = picking.status
    so_before = so.status
    short_ids: List[int] = [
        int(d.id) for d in picking.details if int(d.quantity_picked) < int(d.quantity_required)
    ]

    picking.status = PickingStatus.COMPLETED.value
    picking.completed_at = utcnow()
    so.status = SalesOrderStatus.PICKED.value

    await flush_or_conflict(session)

    if short_ids:
        logger.warning(
            "picking completed with short lines: %s so=%s picked=%s/%s short_details=%s",
            picking.picking_number,
            so.so_number,
            total_picked,
            picking.total_required,
            short_ids,
        )

    await AuditEventWriter.write(
        session,
        action="PICKING_COMPLETED",
        entity_type="Picking",
        entity_id=picking.id,
        actor=actor,
        before={"status": picking_before},
        after={
            "status": picking.status,
            "total_picked": total_picked,
            "total_required": picking.total_required,
            "short_detail_ids": short_ids,
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
        after={"status": so.status},
        trace_id=trace_id,
    )

    return CompletionResult(
        picking_id=int(picking.id),
        status=picking.status,
        sales_order_id=int(so.id),
        sales_order_status=so.status,
        total_required=picking.total_required,
        total_picked=total_picked,
        completion_percentage=picking.completion_percentage,
        has_short_lines=bool(short_ids),
        short_detail_ids=short_ids,
    )


async def cancel_locked(
    session: AsyncSession,
    *,
    picking: Picking,
    actor: Actor,
    ledger: InventoryLedgerService,
    trace_id: Optional[str] = None,
) -> List[RestoredLine]:
    """
    取消已加锁的拣货单：把每行已拣数量回补到原库位（reason=PICK_CANCEL，不刷新库龄）。
    销售单状态由调用方处理。
    """
    if picking.status not in _OPEN:
        raise InvalidState(
            f"拣货单 {picking.picking_number} 状态为 {picking.status}，不能取消。",
            context={"picking_id": int(picking.id), "status": picking.status},
        )

    restored: List[RestoredLine] = []
    # 按库位 id 升序回补，保持加锁顺序
    for d in sorted(picking.details, key=lambda x: (int(x.location_id), int(x.id))):
        qty = int(d.quantity_picked)
        if qty <= 0:
            continue
        await ledger.adjust(
            session,
            item_id=d.item_id,
            location_id=d.location_id,
            delta=qty,
            reason=MovementType.PICK_CANCEL,
            ref=picking.picking_number,
            ref_line=int(d.id),
            actor=actor,
            refresh_age=False,
            trace_id=trace_id,
        )
        restored.append(
            RestoredLine(
                detail_id=int(d.id),
                item_id=int(d.item_id),
                location_id=int(d.location_id),
                quantity=qty,
            )
        )

    before_status = picking.status
    picking.status = PickingStatus.CANCELLED.value
    picking.cancelled_at = utcnow()

    await AuditEventWriter.write(
        session,
        action="PICKING_CANCELLED",
        entity_type="Picking",
        entity_id=picking.id,
        actor=actor,
        before={"status": before_status},
        after={
            "status": picking.status,
            "restored": [
                {"location_id": r.location_id, "item_id": r.item_id, "quantity": r.quantity}
                for r in restored
            ],
        },
        trace_id=trace_id,
    )
    return restored


def apply_order_cancellation(so: SalesOrder, reason: str) -> None:
    s = get_settings()
    so.status = SalesOrderStatus.CANCELLED.value
    so.cancelled_at = utcnow()
    so.notes = format_cancellation_notes(so.notes, reason, s.CANCEL_NOTES_MAX_LEN)


async def cancel_picking(
    session: AsyncSession,
    *,
    picking_id: int,
    actor: Actor,
    ledger: InventoryLedgerService,
    reopen_order: bool = False,
    reason: Optional[str] = None,
    trace_id: Optional[str] = None,
) -> CancelResult:
    """
    取消拣货单（Pending / InProgress）：

    - 回补全部已拣数量
    - 默认连同销售单一起取消（原因写入备注）
    - reopen_order=True：销售单回到 Pending，可重新生成拣货单
    """
    so, picking = await _lock_order_and_picking(session, picking_id)

    restored = await cancel_locked(
        session,
        picking=picking,
        actor=actor,
        ledger=ledger,
        trace_id=trace_id,
    )

    so_before = so.status
    if so.status == SalesOrderStatus.IN_PROGRESS.value:
        if reopen_order:
            so.status = SalesOrderStatus.PENDING.value
        else:
            apply_order_cancellation(
                so,
                (reason or "").strip() or f"拣货单 {picking.picking_number} 已取消",
            )
    else:
        logger.warning(
            "picking %s cancelled while so=%s status=%s (order left unchanged)",
            picking.picking_number,
            so.so_number,
            so.status,
        )

    await flush_or_conflict(session)

    if so.status != so_before:
        await AuditEventWriter.write(
            session,
            action="SO_STATUS_CHANGED",
            entity_type="SalesOrder",
            entity_id=so.id,
            actor=actor,
            before={"status": so_before},
            after={"status": so.status, "notes": so.notes},
            trace_id=trace_id,
        )

    logger.info(
        "picking cancelled: %s restored=%s so=%s -> %s",
        picking.picking_number,
        sum(r.quantity for r in restored),
        so.so_number,
        so.status,
    )
    return CancelResult(
        picking_id=int(picking.id),
        status=picking.status,
        sales_order_id=int(so.id),
        sales_order_status=so.status,
        restored_quantity=sum(r.quantity for r in restored),
        restored=restored,
    )
