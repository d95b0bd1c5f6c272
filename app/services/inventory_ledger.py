# app/services/inventory_ledger.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Union
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.audit import Actor
from app.core.config import AppSettings, get_settings
from app.core.tx import flush_or_conflict
from app.db.base import utcnow
from app.models.enums import LocationCategory, MovementType
from app.models.inventory import InventoryRecord
from app.models.item import Item
from app.models.location import Location
from app.services.fulfillment_errors import (
    CapacityExceeded,
    InsufficientStock,
    InvalidQuantity,
    InvalidState,
    ValidationError,
    shortage_detail,
)
from app.services.ledger_writer import write_ledger
from app.services.location_capacity import LocationCapacityService, load_location, lock_locations
from app.services.master_data import MasterDataService

logger = logging.getLogger("wms.ledger")


@dataclass(frozen=True)
class FifoCandidate:
    record_id: int
    location_id: int
    location_code: str
    quantity: int
    last_updated: datetime


@dataclass(frozen=True)
class AdjustResult:
    record_id: int
    item_id: int
    location_id: int
    before: int
    delta: int
    after: int
    location_capacity: int


@dataclass(frozen=True)
class MoveResult:
    ref: str
    source: AdjustResult
    destination: AdjustResult


@dataclass(frozen=True)
class LowStockItem:
    item_id: int
    code: str
    name: str
    total_quantity: int
    threshold: int


class InventoryLedgerService:
    """
    库存台账（InventoryRecord 为唯一真实来源）：

    - adjust 为唯一写入口：先锁库位、再锁库存记录，检查不为负，
      同事务内联动容量（reserve/release），写 stock_ledger
    - fifo_candidates 按 last_updated ASC, id ASC 排序（越老越先出）
    - 不 commit：事务由外层控制

        async with session.begin():
            await ledger.adjust(session, ...)
    """

    def __init__(
        self,
        capacity: Optional[LocationCapacityService] = None,
        settings: Optional[AppSettings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.capacity = capacity or LocationCapacityService(self.settings)
        self.master = MasterDataService()

    # ---------------------------------------------------------------
    # 查询
    # ---------------------------------------------------------------
    async def get_available(
        self,
        session: AsyncSession,
        item_id: int,
        category: Optional[Union[LocationCategory, str]] = None,
    ) -> int:
        """Available 记录数量之和；category=None 表示不限库位类别。"""
        stmt = (
            select(func.coalesce(func.sum(InventoryRecord.quantity), 0))
            .select_from(InventoryRecord)
            .join(Location, Location.id == InventoryRecord.location_id)
            .where(
                InventoryRecord.item_id == int(item_id),
                InventoryRecord.quantity > 0,
                Location.is_deleted.is_(False),
                Location.is_active.is_(True),
            )
        )
        if category is not None:
            stmt = stmt.where(Location.category == str(category))
        return int(await session.scalar(stmt) or 0)

    async def fifo_candidates(
        self,
        session: AsyncSession,
        item_id: int,
        category: Union[LocationCategory, str] = LocationCategory.STORAGE,
        *,
        exclude_empty: bool = True,
        for_update: bool = False,
    ) -> List[FifoCandidate]:
        """
        FIFO 候选：last_updated ASC（最老在前），id ASC 作稳定 tie-breaker。

        for_update=True 时锁定候选记录（事务内一致快照）；否则仅为预览。
        """
        stmt = (
            select(InventoryRecord, Location.code)
            .join(Location, Location.id == InventoryRecord.location_id)
            .where(
                InventoryRecord.item_id == int(item_id),
                Location.category == str(category),
                Location.is_deleted.is_(False),
                Location.is_active.is_(True),
            )
            .order_by(InventoryRecord.last_updated.asc(), InventoryRecord.id.asc())
        )
        if exclude_empty:
            stmt = stmt.where(InventoryRecord.quantity > 0)
        if for_update:
            stmt = stmt.with_for_update(of=InventoryRecord).execution_options(populate_existing=True)

        rows = (await session.execute(stmt)).all()
        return [
            FifoCandidate(
                record_id=int(rec.id),
                location_id=int(rec.location_id),
                location_code=str(code),
                quantity=int(rec.quantity),
                last_updated=rec.last_updated,
            )
            for rec, code in rows
        ]

    async def get_record(
        self,
        session: AsyncSession,
        item_id: int,
        location_id: int,
        *,
        for_update: bool = False,
    ) -> Optional[InventoryRecord]:
        stmt = select(InventoryRecord).where(
            InventoryRecord.item_id == int(item_id),
            InventoryRecord.location_id == int(location_id),
        )
        if for_update:
            stmt = stmt.with_for_update()
        stmt = stmt.execution_options(populate_existing=True)
        return (await session.execute(stmt)).scalars().first()

    async def list_records(
        self,
        session: AsyncSession,
        *,
        item_id: Optional[int] = None,
        location_id: Optional[int] = None,
    ) -> List[InventoryRecord]:
        stmt = select(InventoryRecord).order_by(InventoryRecord.id)
        if item_id is not None:
            stmt = stmt.where(InventoryRecord.item_id == int(item_id))
        if location_id is not None:
            stmt = stmt.where(InventoryRecord.location_id == int(location_id))
        return list((await session.execute(stmt)).scalars().all())

    async def low_stock(self, session: AsyncSession, threshold: Optional[int] = None) -> List[LowStockItem]:
        th = int(self.settings.LOW_STOCK_THRESHOLD if threshold is None else threshold)

        totals = (
            select(
                InventoryRecord.item_id.label("item_id"),
                func.sum(InventoryRecord.quantity).label("qty"),
            )
            .join(Location, Location.id == InventoryRecord.location_id)
            .where(Location.is_deleted.is_(False))
            .group_by(InventoryRecord.item_id)
            .subquery()
        )
        total_qty = func.coalesce(totals.c.qty, 0)
        rows = (
            await session.execute(
                select(Item.id, Item.code, Item.name, total_qty.label("total"))
                .outerjoin(totals, totals.c.item_id == Item.id)
                .where(Item.is_active.is_(True), total_qty < th)
                .order_by(total_qty.asc(), Item.id.asc())
            )
        ).all()
        return [
            LowStockItem(
                item_id=int(r.id),
                code=str(r.code),
                name=str(r.name),
                total_quantity=int(r.total or 0),
                threshold=th,
            )
            for r in rows
        ]

    # ---------------------------------------------------------------
    # adjust：唯一写入口
    # ---------------------------------------------------------------
    async def adjust(
        self,
        session: AsyncSession,
        *,
        item_id: int,
        location_id: int,
        delta: int,
        reason: Union[MovementType, str],
        ref: str,
        actor: Actor,
        ref_line: int = 1,
        refresh_age: Optional[bool] = None,
        new_record_age: Optional[datetime] = None,
        trace_id: Optional[str] = None,
    ) -> AdjustResult:
        """
        原子增减 (item, location) 数量：

        - delta == 0 → ValidationError
        - 结果为负 → InsufficientStock（不落任何写入）
        - delta > 0 → 容量 reserve（可能 CapacityExceeded）；delta < 0 → 容量 release
        - refresh_age：是否刷新 last_updated（默认仅入库刷新；取消回补 / 移库不刷新）
        """
        delta = int(delta)
        if delta == 0:
            raise ValidationError("库存调整数量不能为 0。", context={"item_id": int(item_id)})

        reason_val = reason.value if isinstance(reason, MovementType) else str(reason)
        now = utcnow()

        # 加锁顺序：库位 → 库存记录
        loc = await load_location(session, location_id, for_update=True)
        rec = await self.get_record(session, item_id, loc.id, for_update=True)

        if rec is None:
            if delta < 0:
                raise InsufficientStock(
                    f"库位 {loc.code} 没有该商品库存。",
                    context={"item_id": int(item_id), "location_id": int(loc.id)},
                    details=[
                        shortage_detail(
                            item_id=int(item_id),
                            required_qty=-delta,
                            available_qty=0,
                            location_id=int(loc.id),
                            path="ledger.adjust",
                        )
                    ],
                )
            rec = InventoryRecord(
                item_id=int(item_id),
                location_id=int(loc.id),
                quantity=0,
                last_updated=new_record_age or now,
            )
            session.add(rec)

        before = int(rec.quantity or 0)
        after = before + delta
        if after < 0:
            raise InsufficientStock(
                f"库位 {loc.code} 库存不足：现有 {before}，需要 {-delta}。",
                context={"item_id": int(item_id), "location_id": int(loc.id)},
                details=[
                    shortage_detail(
                        item_id=int(item_id),
                        required_qty=-delta,
                        available_qty=before,
                        location_id=int(loc.id),
                        path="ledger.adjust",
                    )
                ],
            )

        if delta > 0:
            cap = await self.capacity.reserve(session, loc.id, delta, location=loc)
        else:
            cap = await self.capacity.release(session, loc.id, -delta, location=loc)

        rec.quantity = after
        if refresh_age is None:
            refresh_age = delta > 0
        if refresh_age:
            rec.last_updated = now
        elif before == 0 and new_record_age is not None:
            # 空记录被移库补货：沿用源库存的库龄
            rec.last_updated = new_record_age

        write_ledger(
            session,
            item_id=int(item_id),
            location_id=int(loc.id),
            reason=reason_val,
            delta=delta,
            after_qty=after,
            ref=ref,
            ref_line=ref_line,
            actor=actor.label,
            occurred_at=now,
            trace_id=trace_id,
        )

        await flush_or_conflict(session)

        logger.debug(
            "ledger adjust item=%s loc=%s %s%s -> %s (%s %s)",
            item_id,
            loc.id,
            "+" if delta > 0 else "",
            delta,
            after,
            reason_val,
            ref,
        )
        return AdjustResult(
            record_id=int(rec.id),
            item_id=int(item_id),
            location_id=int(loc.id),
            before=before,
            delta=delta,
            after=after,
            location_capacity=int(cap),
        )

    # ---------------------------------------------------------------
    # move：目标容量先校验，再扣源
    # ---------------------------------------------------------------
    async def move(
        self,
        session: AsyncSession,
        *,
        item_id: int,
        from_location_id: int,
        to_location_id: int,
        quantity: int,
        actor: Actor,
        ref: Optional[str] = None,
        trace_id: Optional[str] = None,
    ) -> MoveResult:
        qty = int(quantity)
        if qty <= 0:
            raise InvalidQuantity("移库数量必须为正数。", context={"quantity": qty})
        if int(from_location_id) == int(to_location_id):
            raise ValidationError(
                "源库位与目标库位不能相同。",
                context={"location_id": int(from_location_id)},
            )

        locs = await lock_locations(session, [from_location_id, to_location_id])
        src_loc = locs[int(from_location_id)]
        dst_loc = locs[int(to_location_id)]

        if not dst_loc.is_active:
            raise InvalidState(f"目标库位 {dst_loc.code} 已停用。", context={"location_id": int(dst_loc.id)})

        src = await self.get_record(session, item_id, src_loc.id, for_update=True)
        available = int(src.quantity) if src is not None else 0
        if available < qty:
            raise InsufficientStock(
                f"源库位 {src_loc.code} 库存不足：现有 {available}，需要 {qty}。",
                context={"item_id": int(item_id), "location_id": int(src_loc.id)},
                details=[
                    shortage_detail(
                        item_id=int(item_id),
                        required_qty=qty,
                        available_qty=available,
                        location_id=int(src_loc.id),
                        path="ledger.move",
                    )
                ],
            )

        if int(dst_loc.current_capacity) + qty > int(dst_loc.max_capacity):
            raise CapacityExceeded(
                f"目标库位 {dst_loc.code} 容量不足。",
                context={
                    "location_id": int(dst_loc.id),
                    "current_capacity": int(dst_loc.current_capacity),
                    "max_capacity": int(dst_loc.max_capacity),
                    "requested": qty,
                },
            )

        ref_val = ref or f"MOVE-{uuid4().hex[:12]}"
        src_age = src.last_updated

        out_res = await self.adjust(
            session,
            item_id=item_id,
            location_id=src_loc.id,
            delta=-qty,
            reason=MovementType.TRANSFER_OUT,
            ref=ref_val,
            ref_line=1,
            actor=actor,
            refresh_age=False,
            trace_id=trace_id,
        )
        in_res = await self.adjust(
            session,
            item_id=item_id,
            location_id=dst_loc.id,
            delta=qty,
            reason=MovementType.TRANSFER_IN,
            ref=ref_val,
            ref_line=2,
            actor=actor,
            refresh_age=False,
            new_record_age=src_age,
            trace_id=trace_id,
        )
        return MoveResult(ref=ref_val, source=out_res, destination=in_res)

    # ---------------------------------------------------------------
    # receive：入库 / 上架
    # ---------------------------------------------------------------
    async def receive(
        self,
        session: AsyncSession,
        *,
        item_id: int,
        location_id: int,
        quantity: int,
        ref: str,
        actor: Actor,
        trace_id: Optional[str] = None,
    ) -> AdjustResult:
        qty = int(quantity)
        if qty <= 0:
            raise InvalidQuantity("入库数量必须为正数。", context={"quantity": qty})

        await self.master.get_item(session, item_id)
        loc = await load_location(session, location_id, for_update=True)
        if not loc.is_active:
            raise InvalidState(f"库位 {loc.code} 已停用。", context={"location_id": int(loc.id)})

        return await self.adjust(
            session,
            item_id=item_id,
            location_id=loc.id,
            delta=qty,
            reason=MovementType.RECEIPT,
            ref=ref,
            actor=actor,
            trace_id=trace_id,
        )
