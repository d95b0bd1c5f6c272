# app/services/picking_record.py
from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.audit import Actor
from app.core.tx import flush_or_conflict
from app.models.enums import MovementType, PickingStatus
from app.models.picking import Picking, PickingDetail
from app.services.audit_writer import AuditEventWriter
from app.services.fulfillment_errors import InvalidQuantity, InvalidState, ValidationError
from app.services.inventory_ledger import InventoryLedgerService
from app.services.picking_loaders import load_detail, load_picking
from app.services.picking_types import BulkPickResult, PickLine, PickResult


def _ensure_open(picking: Picking) -> None:
    if picking.status not in (PickingStatus.PENDING.value, PickingStatus.IN_PROGRESS.value):
        raise InvalidState(
            f"拣货单 {picking.picking_number} 状态为 {picking.status}，不能继续拣货。",
            context={"picking_id": int(picking.id), "status": picking.status},
        )


def _ensure_within_remaining(detail: PickingDetail, qty: int) -> None:
    remaining = int(detail.remaining_quantity)
    if qty > remaining:
        raise InvalidQuantity(
            f"拣货数量 {qty} 超过剩余数量 {remaining}。",
            context={
                "picking_detail_id": int(detail.id),
                "quantity": qty,
                "remaining_quantity": remaining,
            },
        )


async def _apply_pick(
    session: AsyncSession,
    *,
    picking: Picking,
    detail: PickingDetail,
    qty: int,
    actor: Actor,
    ledger: InventoryLedgerService,
    trace_id: Optional[str],
) -> PickResult:
    before = {"quantity_picked": int(detail.quantity_picked), "status": detail.status}

    await ledger.adjust(
        session,
        item_id=detail.item_id,
        location_id=detail.location_id,
        delta=-qty,
        reason=MovementType.PICK,
        ref=picking.picking_number,
        ref_line=int(detail.id),
        actor=actor,
        trace_id=trace_id,
    )

    detail.quantity_picked = int(detail.quantity_picked) + qty
    if picking.status == PickingStatus.PENDING.value:
        picking.status = PickingStatus.IN_PROGRESS.value

    await flush_or_conflict(session)

    await AuditEventWriter.write(
        session,
        action="PICK_RECORDED",
        entity_type="PickingDetail",
        entity_id=detail.id,
        actor=actor,
        before=before,
        after={
            "quantity_picked": int(detail.quantity_picked),
            "status": detail.status,
            "picking_status": picking.status,
        },
        trace_id=trace_id,
    )

    return PickResult(
        detail_id=int(detail.id),
        picking_id=int(picking.id),
        quantity_picked=int(detail.quantity_picked),
        quantity_required=int(detail.quantity_required),
        remaining_quantity=int(detail.remaining_quantity),
        detail_status=detail.status,
        picking_status=picking.status,
    )


async def record_pick(
    session: AsyncSession,
    *,
    detail_id: int,
    quantity: int,
    actor: Actor,
    ledger: InventoryLedgerService,
    trace_id: Optional[str] = None,
) -> PickResult:
    """
    记录一次拣货（可多次累加）：

    - quantity <= 0 或 > 剩余量 → InvalidQuantity（不改任何状态）
    - 库位实际库存不足（并发被扣走）→ InsufficientStock（由 ledger.adjust 抛出）
    - 成功：扣减库存（reason=PICK）、累加 quantity_picked、Pending 拣货单 → InProgress
    """
    qty = int(quantity)
    if qty <= 0:
        raise InvalidQuantity("拣货数量必须为正数。", context={"quantity": qty})

    head = await load_detail(session, detail_id)
    picking = await load_picking(session, head.picking_id, for_update=True)
    detail = await load_detail(session, detail_id, for_update=True)

    _ensure_open(picking)
    _ensure_within_remaining(detail, qty)

    return await _apply_pick(
        session,
        picking=picking,
        detail=detail,
        qty=qty,
        actor=actor,
        ledger=ledger,
        trace_id=trace_id,
    )


async def record_picks(
    session: AsyncSession,
    *,
    picking_id: int,
    picks: Sequence[PickLine],
    actor: Actor,
    ledger: InventoryLedgerService,
    trace_id: Optional[str] = None,
) -> BulkPickResult:
    """
    批量拣货：同一拣货单的多条明细一次提交。

    - quantity == 0 的行跳过；< 0 → InvalidQuantity
    - 同一明细出现多次时数量累加后再校验剩余量
    - 明细不属于该拣货单 → ValidationError
    - 任一行失败整批不生效（调用方 run_tx 回滚）
    - 按 (location_id, detail_id) 顺序扣减，与单条拣货的加锁顺序一致
    """
    wanted: Dict[int, int] = {}
    for p in picks:
        qty = int(p.quantity)
        if qty < 0:
            raise InvalidQuantity(
                "拣货数量不能为负数。",
                context={"picking_detail_id": int(p.detail_id), "quantity": qty},
            )
        if qty == 0:
            continue
        wanted[int(p.detail_id)] = wanted.get(int(p.detail_id), 0) + qty

    if not wanted:
        raise ValidationError("批量拣货至少需要一行正数量。", context={"picking_id": int(picking_id)})

    picking = await load_picking(session, picking_id, for_update=True)
    _ensure_open(picking)

    own = {int(d.id) for d in picking.details}
    foreign = sorted(set(wanted) - own)
    if foreign:
        raise ValidationError(
            f"明细不属于拣货单 {picking.picking_number}：{foreign}",
            context={"picking_id": int(picking.id), "picking_detail_ids": foreign},
        )

    details: List[PickingDetail] = []
    for did in sorted(wanted):
        details.append(await load_detail(session, did, for_update=True))
    for d in details:
        _ensure_within_remaining(d, wanted[int(d.id)])

    results: List[PickResult] = []
    for d in sorted(details, key=lambda x: (int(x.location_id), int(x.id))):
        results.append(
            await _apply_pick(
                session,
                picking=picking,
                detail=d,
                qty=wanted[int(d.id)],
                actor=actor,
                ledger=ledger,
                trace_id=trace_id,
            )
        )

    return BulkPickResult(
        picking_id=int(picking.id),
        picking_status=picking.status,
        total_quantity=sum(wanted.values()),
        results=results,
    )
