# app/services/sales_order_service.py
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.audit import Actor
from app.core.config import AppSettings, get_settings
from app.core.tx import flush_or_conflict
from app.db.base import utcnow
from app.models.enums import LocationCategory, MovementType, PickingStatus, SalesOrderStatus
from app.models.sales_order import SalesOrder, SalesOrderLine
from app.services.audit_writer import AuditEventWriter
from app.services.doc_numbers import next_so_number
from app.services.fifo_allocator import FifoAllocator
from app.services.fulfillment_errors import (
    InsufficientStock,
    InvalidQuantity,
    InvalidState,
    NoHoldingStock,
    NotFound,
    ValidationError,
    shortage_detail,
)
from app.services.inventory_ledger import InventoryLedgerService
from app.services.location_capacity import load_location
from app.services.master_data import MasterDataService
from app.services.picking_close import apply_order_cancellation, cancel_locked
from app.services.picking_loaders import find_live_picking, load_sales_order
from app.services.picking_types import RestoredLine

logger = logging.getLogger("wms.sales_order")


@dataclass
class SalesOrderLineInput:
    item_id: int
    quantity: int
    unit_price: Optional[Decimal] = None


@dataclass
class ShippedLine:
    item_id: int
    quantity: int
    remaining_at_holding: int


@dataclass
class ShipResult:
    sales_order_id: int
    so_number: str
    status: str
    holding_location_id: int
    lines: List[ShippedLine] = field(default_factory=list)


@dataclass
class SalesOrderCancelResult:
    sales_order_id: int
    status: str
    notes: str
    picking_id: Optional[int] = None
    restored: List[RestoredLine] = field(default_factory=list)


def _aggregate(lines: Sequence[SalesOrderLine]) -> Dict[int, int]:
    demand: Dict[int, int] = defaultdict(int)
    for ln in lines:
        demand[int(ln.item_id)] += int(ln.quantity)
    return dict(demand)


class SalesOrderService:
    """
    订单履约协调：

        Pending --generate picking--> InProgress --complete picking--> Picked --ship--> Shipped
        Pending|InProgress --cancel(reason)--> Cancelled

    写方法不 commit，由外层 run_tx 控制事务。
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        ledger: Optional[InventoryLedgerService] = None,
        settings: Optional[AppSettings] = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.ledger = ledger or InventoryLedgerService(settings=self.settings)
        self.allocator = FifoAllocator(self.ledger, self.settings)
        self.master = MasterDataService()

    # ---------------------------------------------------------------
    # 查询
    # ---------------------------------------------------------------
    async def get(self, sales_order_id: int) -> SalesOrder:
        return await load_sales_order(self.session, sales_order_id)

    async def list_orders(self, *, status: Optional[str] = None, limit: int = 100) -> List[SalesOrder]:
        stmt = select(SalesOrder).order_by(SalesOrder.id.desc()).limit(int(limit))
        if status:
            stmt = stmt.where(SalesOrder.status == status)
        return list((await self.session.execute(stmt)).scalars().all())

    # ---------------------------------------------------------------
    # 创建
    # ---------------------------------------------------------------
    async def create(
        self,
        *,
        customer_id: int,
        holding_location_id: int,
        lines: Sequence[SalesOrderLineInput],
        actor: Actor,
        notes: Optional[str] = None,
        trace_id: Optional[str] = None,
    ) -> SalesOrder:
        if int(customer_id) <= 0:
            raise ValidationError("customer_id 不合法。", context={"customer_id": int(customer_id)})
        if not lines:
            raise ValidationError("销售单至少需要一行明细。")

        holding = await load_location(self.session, holding_location_id)
        if holding.category != LocationCategory.OTHER.value:
            raise ValidationError(
                f"库位 {holding.code} 不是非存储（Other）库位，不能作为发货待运位。",
                context={"location_id": int(holding.id), "category": holding.category},
            )
        if not holding.is_active:
            raise InvalidState(f"库位 {holding.code} 已停用。", context={"location_id": int(holding.id)})

        for idx, ln in enumerate(lines):
            if int(ln.quantity) <= 0:
                raise InvalidQuantity(
                    "明细数量必须为正数。",
                    context={"path": f"lines[{idx}]", "quantity": int(ln.quantity)},
                )
            if ln.unit_price is not None and Decimal(ln.unit_price) < 0:
                raise ValidationError("单价不能为负数。", context={"path": f"lines[{idx}]"})

        items = await self.master.get_items(self.session, [ln.item_id for ln in lines])
        for idx, ln in enumerate(lines):
            info = items.get(int(ln.item_id))
            if info is None:
                raise NotFound(
                    f"商品不存在：item_id={ln.item_id}",
                    context={"path": f"lines[{idx}]", "item_id": int(ln.item_id)},
                )
            if not info.is_active:
                raise ValidationError(
                    f"商品已停用：{info.code}",
                    context={"path": f"lines[{idx}]", "item_id": int(ln.item_id)},
                )

        demand: Dict[int, int] = defaultdict(int)
        for ln in lines:
            demand[int(ln.item_id)] += int(ln.quantity)

        shortages = []
        for item_id in sorted(demand):
            ic = await self.allocator.load_candidates(self.session, item_id)
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
            raise InsufficientStock("存储位库存不足，不能创建销售单。", details=shortages)

        order_lines: List[SalesOrderLine] = []
        total = Decimal("0")
        for ln in lines:
            price = Decimal(ln.unit_price) if ln.unit_price is not None else items[int(ln.item_id)].standard_price
            line_total = price * int(ln.quantity)
            total += line_total
            order_lines.append(
                SalesOrderLine(
                    item_id=int(ln.item_id),
                    quantity=int(ln.quantity),
                    unit_price=price,
                    total_price=line_total,
                )
            )

        now = utcnow()
        note_val = (notes or "").strip() or None
        if note_val and len(note_val) > self.settings.CANCEL_NOTES_MAX_LEN:
            raise ValidationError(
                f"备注不能超过 {self.settings.CANCEL_NOTES_MAX_LEN} 个字符。",
                context={"length": len(note_val)},
            )

        so = SalesOrder(
            so_number=await next_so_number(self.session, now.date()),
            customer_id=int(customer_id),
            holding_location_id=int(holding.id),
            status=SalesOrderStatus.PENDING.value,
            total_amount=total,
            notes=note_val,
            created_by=actor.label,
            order_date=now,
            lines=order_lines,
        )
        self.session.add(so)
        await flush_or_conflict(self.session)

        await AuditEventWriter.write(
            self.session,
            action="SO_CREATED",
            entity_type="SalesOrder",
            entity_id=so.id,
            actor=actor,
            after={
                "so_number": so.so_number,
                "customer_id": so.customer_id,
                "holding_location_id": so.holding_location_id,
                "total_amount": so.total_amount,
                "lines": [{"item_id": x.item_id, "quantity": x.quantity} for x in order_lines],
            },
            trace_id=trace_id,
        )
        logger.info("sales order created: %s (%d lines, total=%s)", so.so_number, len(order_lines), total)
        return so

    # ---------------------------------------------------------------
    # 取消
    # ---------------------------------------------------------------
    async def cancel(
        self,
        *,
        sales_order_id: int,
        reason: str,
        actor: Actor,
        trace_id: Optional[str] = None,
    ) -> SalesOrderCancelResult:
        """
        取消销售单：

        - 无存活拣货单：销售单必须是 Pending
        - 有存活拣货单：销售单必须是 InProgress 且拣货单仍是 Pending，
          先取消拣货单（回补已拣库存），再取消销售单；
          拣货单已开拣 / 已完成 → InvalidState（需先显式处理库存）
        """
        reason_val = (reason or "").strip()
        max_len = self.settings.CANCEL_NOTES_MAX_LEN
        if not reason_val:
            raise ValidationError("取消原因不能为空。")
        if len(reason_val) > max_len:
            raise ValidationError(
                f"取消原因不能超过 {max_len} 个字符。",
                context={"length": len(reason_val), "max_length": max_len},
            )

        so = await load_sales_order(self.session, sales_order_id, for_update=True)
        live = await find_live_picking(self.session, so.id, for_update=True)
        so_before = so.status
        restored: List[RestoredLine] = []

        if live is None:
            if so.status != SalesOrderStatus.PENDING.value:
                raise InvalidState(
                    f"销售单 {so.so_number} 状态为 {so.status}，不能取消。",
                    context={"sales_order_id": int(so.id), "status": so.status},
                )
        else:
            if so.status != SalesOrderStatus.IN_PROGRESS.value or live.status != PickingStatus.PENDING.value:
                raise InvalidState(
                    f"销售单 {so.so_number}（{so.status}）的拣货单 {live.picking_number} "
                    f"状态为 {live.status}，不能直接取消。",
                    context={
                        "sales_order_id": int(so.id),
                        "status": so.status,
                        "picking_id": int(live.id),
                        "picking_status": live.status,
                    },
                )
            restored = await cancel_locked(
                self.session,
                picking=live,
                actor=actor,
                ledger=self.ledger,
                trace_id=trace_id,
            )

        apply_order_cancellation(so, reason_val)
        await flush_or_conflict(self.session)

        await AuditEventWriter.write(
            self.session,
            action="SO_CANCELLED",
            entity_type="SalesOrder",
            entity_id=so.id,
            actor=actor,
            before={"status": so_before},
            after={
                "status": so.status,
                "reason": reason_val,
                "picking_id": int(live.id) if live is not None else None,
            },
            trace_id=trace_id,
        )
        logger.info("sales order cancelled: %s (from %s)", so.so_number, so_before)

        return SalesOrderCancelResult(
            sales_order_id=int(so.id),
            status=so.status,
            notes=so.notes or "",
            picking_id=int(live.id) if live is not None else None,
            restored=restored,
        )

    # ---------------------------------------------------------------
    # 发货
    # ---------------------------------------------------------------
    async def ship(
        self,
        *,
        sales_order_id: int,
        actor: Actor,
        trace_id: Optional[str] = None,
    ) -> ShipResult:
        """
        发货：只允许 Picked。先对所有商品校验 holding 位库存，
        全部满足后再逐个扣减（reason=SHIPMENT），任何一项不满足都不落写入。
        """
        so = await load_sales_order(self.session, sales_order_id, for_update=True)
        if so.status != SalesOrderStatus.PICKED.value:
            raise InvalidState(
                f"销售单 {so.so_number} 状态为 {so.status}，只有 Picked 才能发货。",
                context={"sales_order_id": int(so.id), "status": so.status},
            )

        holding = await load_location(self.session, so.holding_location_id, for_update=True)
        demand = _aggregate(so.lines or [])

        for item_id in sorted(demand):
            need = demand[item_id]
            rec = await self.ledger.get_record(self.session, item_id, holding.id, for_update=True)
            on_hand = int(rec.quantity) if rec is not None else 0
            if on_hand <= 0:
                raise NoHoldingStock(
                    f"待运库位 {holding.code} 没有商品 {item_id} 的库存。",
                    context={"sales_order_id": int(so.id), "location_id": int(holding.id)},
                    details=[
                        shortage_detail(
                            item_id=item_id,
                            required_qty=need,
                            available_qty=0,
                            location_id=int(holding.id),
                            path=f"items[{item_id}]",
                        )
                    ],
                )
            if on_hand < need:
                raise InsufficientStock(
                    f"待运库位 {holding.code} 商品 {item_id} 库存不足：现有 {on_hand}，需要 {need}。",
                    context={"sales_order_id": int(so.id), "location_id": int(holding.id)},
                    details=[
                        shortage_detail(
                            item_id=item_id,
                            required_qty=need,
                            available_qty=on_hand,
                            location_id=int(holding.id),
                            path=f"items[{item_id}]",
                        )
                    ],
                )

        shipped: List[ShippedLine] = []
        for idx, item_id in enumerate(sorted(demand), start=1):
            res = await self.ledger.adjust(
                self.session,
                item_id=item_id,
                location_id=holding.id,
                delta=-demand[item_id],
                reason=MovementType.SHIPMENT,
                ref=so.so_number,
                ref_line=idx,
                actor=actor,
                trace_id=trace_id,
            )
            shipped.append(ShippedLine(item_id=item_id, quantity=demand[item_id], remaining_at_holding=res.after))

        so_before = so.status
        so.status = SalesOrderStatus.SHIPPED.value
        so.shipped_at = utcnow()
        await flush_or_conflict(self.session)

        await AuditEventWriter.write(
            self.session,
            action="SO_SHIPPED",
            entity_type="SalesOrder",
            entity_id=so.id,
            actor=actor,
            before={"status": so_before},
            after={
                "status": so.status,
                "holding_location_id": int(holding.id),
                "lines": [{"item_id": s.item_id, "quantity": s.quantity} for s in shipped],
            },
            trace_id=trace_id,
        )
        logger.info("sales order shipped: %s", so.so_number)

        return ShipResult(
            sales_order_id=int(so.id),
            so_number=so.so_number,
            status=so.status,
            holding_location_id=int(holding.id),
            lines=shipped,
        )
