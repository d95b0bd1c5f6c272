# app/services/location_capacity.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.audit import Actor
from app.core.config import AppSettings, get_settings
from app.core.tx import flush_or_conflict
from app.models.enums import OPEN_PICKING_STATUSES, CapacityStatus, LocationCategory
from app.models.inventory import InventoryRecord
from app.models.location import Location
from app.models.picking import Picking, PickingDetail
from app.services.audit_writer import AuditEventWriter
from app.services.fulfillment_errors import (
    CapacityExceeded,
    InvalidState,
    NotFound,
    ValidationError,
)

logger = logging.getLogger("wms.capacity")


@dataclass(frozen=True)
class CapacityDrift:
    location_id: int
    code: str
    stored_capacity: int
    actual_capacity: int

    @property
    def drift(self) -> int:
        return self.stored_capacity - self.actual_capacity


@dataclass(frozen=True)
class LocationCapacityView:
    location_id: int
    code: str
    category: str
    current_capacity: int
    max_capacity: int
    available_capacity: int
    capacity_percentage: float
    capacity_status: CapacityStatus
    is_full: bool


@dataclass(frozen=True)
class UtilizationSummary:
    total_locations: int
    full_locations: int
    near_full_locations: int
    total_capacity: int
    used_capacity: int
    utilization_percentage: float


def _snapshot(loc: Location) -> Dict[str, object]:
    return {
        "code": loc.code,
        "category": loc.category,
        "current_capacity": int(loc.current_capacity),
        "max_capacity": int(loc.max_capacity),
        "is_active": bool(loc.is_active),
        "is_deleted": bool(loc.is_deleted),
    }


async def load_location(
    session: AsyncSession,
    location_id: int,
    *,
    for_update: bool = False,
    include_deleted: bool = False,
) -> Location:
    loc = await session.get(
        Location,
        int(location_id),
        with_for_update=True if for_update else None,
        populate_existing=True,
    )
    if loc is None or (loc.is_deleted and not include_deleted):
        raise NotFound(f"库位不存在：location_id={location_id}", context={"location_id": int(location_id)})
    return loc


async def lock_locations(session: AsyncSession, location_ids: Iterable[int]) -> Dict[int, Location]:
    """按 id 升序逐个加锁（固定加锁顺序，避免死锁）。"""
    out: Dict[int, Location] = {}
    for lid in sorted({int(x) for x in location_ids}):
        out[lid] = await load_location(session, lid, for_update=True)
    return out


class LocationCapacityService:
    """
    库位容量跟踪：

    - reserve / release 只改 Location.current_capacity，不碰 InventoryRecord
      （库存记录由 InventoryLedgerService 在同一事务内维护）
    - is_full 等为派生字段，随 current_capacity 变化自然更新
    - 不 commit：事务由外层 run_tx 控制
    """

    def __init__(self, settings: Optional[AppSettings] = None) -> None:
        self.settings = settings or get_settings()

    # ---------------------------------------------------------------
    # reserve / release
    # ---------------------------------------------------------------
    async def reserve(
        self,
        session: AsyncSession,
        location_id: int,
        delta: int,
        *,
        location: Optional[Location] = None,
    ) -> int:
        """
        占用容量：current + delta > max → CapacityExceeded（不做部分占用）。
        返回新的 current_capacity。
        """
        if int(delta) <= 0:
            raise ValidationError("容量占用数量必须为正数。", context={"delta": int(delta)})

        loc = location or await load_location(session, location_id, for_update=True)
        current = int(loc.current_capacity)
        maximum = int(loc.max_capacity)

        if current + int(delta) > maximum:
            raise CapacityExceeded(
                f"库位 {loc.code} 容量不足：当前 {current}/{maximum}，需要 {int(delta)}。",
                context={
                    "location_id": int(loc.id),
                    "code": loc.code,
                    "current_capacity": current,
                    "max_capacity": maximum,
                    "requested": int(delta),
                    "available_capacity": max(0, maximum - current),
                },
            )

        loc.current_capacity = current + int(delta)
        return int(loc.current_capacity)

    async def release(
        self,
        session: AsyncSession,
        location_id: int,
        delta: int,
        *,
        location: Optional[Location] = None,
    ) -> int:
        """释放容量；低于 0 时夹到 0 并告警（说明已有漂移，需 recompute）。"""
        if int(delta) <= 0:
            raise ValidationError("容量释放数量必须为正数。", context={"delta": int(delta)})

        loc = location or await load_location(session, location_id, for_update=True)
        new_val = int(loc.current_capacity) - int(delta)
        if new_val < 0:
            logger.warning(
                "capacity release below zero: location=%s code=%s current=%s delta=%s (clamped)",
                loc.id,
                loc.code,
                loc.current_capacity,
                delta,
            )
            new_val = 0
        loc.current_capacity = new_val
        return new_val

    # ---------------------------------------------------------------
    # recompute（漂移修复）
    # ---------------------------------------------------------------
    async def _actual_capacity(self, session: AsyncSession, location_id: int) -> int:
        total = await session.scalar(
            select(func.coalesce(func.sum(InventoryRecord.quantity), 0)).where(
                InventoryRecord.location_id == int(location_id)
            )
        )
        return int(total or 0)

    async def recompute(self, session: AsyncSession, location_id: int) -> int:
        loc = await load_location(session, location_id, for_update=True)
        actual = await self._actual_capacity(session, loc.id)
        if actual != int(loc.current_capacity):
            logger.warning(
                "capacity drift: location=%s code=%s stored=%s actual=%s",
                loc.id,
                loc.code,
                loc.current_capacity,
                actual,
            )
            loc.current_capacity = actual
            await flush_or_conflict(session)
        return actual

    async def recompute_all(self, session: AsyncSession) -> List[CapacityDrift]:
        ids = (
            await session.execute(
                select(Location.id).where(Location.is_deleted.is_(False)).order_by(Location.id)
            )
        ).scalars().all()

        drifts: List[CapacityDrift] = []
        for lid in ids:
            loc = await load_location(session, lid, for_update=True)
            stored = int(loc.current_capacity)
            actual = await self._actual_capacity(session, lid)
            if stored != actual:
                logger.warning(
                    "capacity drift: location=%s code=%s stored=%s actual=%s",
                    lid,
                    loc.code,
                    stored,
                    actual,
                )
                loc.current_capacity = actual
                drifts.append(
                    CapacityDrift(
                        location_id=int(lid),
                        code=loc.code,
                        stored_capacity=stored,
                        actual_capacity=actual,
                    )
                )
        if drifts:
            await flush_or_conflict(session)
        return drifts

    # ---------------------------------------------------------------
    # 库位管理
    # ---------------------------------------------------------------
    async def create_location(
        self,
        session: AsyncSession,
        *,
        code: str,
        name: str,
        category: LocationCategory | str,
        max_capacity: int,
        actor: Actor,
        is_active: bool = True,
        trace_id: Optional[str] = None,
    ) -> Location:
        code_norm = (code or "").strip()
        if not code_norm:
            raise ValidationError("库位编码不能为空。")
        if int(max_capacity) <= 0:
            raise ValidationError("最大容量必须大于 0。", context={"max_capacity": int(max_capacity)})
        try:
            cat = LocationCategory(str(category))
        except ValueError:
            raise ValidationError(f"未知库位类别：{category}", context={"category": str(category)})

        exists = await session.scalar(
            select(Location.id).where(Location.code == code_norm, Location.is_deleted.is_(False))
        )
        if exists is not None:
            raise InvalidState(f"库位编码已存在：{code_norm}", context={"code": code_norm})

        loc = Location(
            code=code_norm,
            name=(name or code_norm).strip(),
            category=cat.value,
            max_capacity=int(max_capacity),
            current_capacity=0,
            is_active=bool(is_active),
            is_deleted=False,
        )
        session.add(loc)
        await flush_or_conflict(session)

        await AuditEventWriter.write(
            session,
            action="LOCATION_CREATED",
            entity_type="Location",
            entity_id=loc.id,
            actor=actor,
            after=_snapshot(loc),
            trace_id=trace_id,
        )
        return loc

    async def soft_delete(
        self,
        session: AsyncSession,
        location_id: int,
        *,
        actor: Actor,
        trace_id: Optional[str] = None,
    ) -> Location:
        loc = await load_location(session, location_id, for_update=True)
        if int(loc.current_capacity) != 0:
            raise InvalidState(
                f"库位 {loc.code} 仍有库存（{loc.current_capacity}），不能删除。",
                context={"location_id": int(loc.id), "current_capacity": int(loc.current_capacity)},
            )
        held = await self._actual_capacity(session, loc.id)
        if held != 0:
            raise InvalidState(
                f"库位 {loc.code} 台账仍有库存（{held}），请先 recompute。",
                context={"location_id": int(loc.id), "ledger_quantity": held},
            )
        # 未关闭拣货单的明细仍指向该库位：取消时需把已拣数量退回这里
        open_details = await session.scalar(
            select(func.count(PickingDetail.id))
            .join(Picking, Picking.id == PickingDetail.picking_id)
            .where(
                PickingDetail.location_id == int(loc.id),
                Picking.status.in_([s.value for s in OPEN_PICKING_STATUSES]),
            )
        )
        if int(open_details or 0) > 0:
            raise InvalidState(
                f"库位 {loc.code} 仍被未关闭的拣货单引用，不能删除。",
                context={"location_id": int(loc.id), "open_picking_details": int(open_details)},
            )

        before = _snapshot(loc)
        loc.is_deleted = True
        loc.is_active = False
        await flush_or_conflict(session)

        await AuditEventWriter.write(
            session,
            action="LOCATION_DELETED",
            entity_type="Location",
            entity_id=loc.id,
            actor=actor,
            before=before,
            after=_snapshot(loc),
            trace_id=trace_id,
        )
        return loc

    # ---------------------------------------------------------------
    # 查询
    # ---------------------------------------------------------------
    def to_view(self, loc: Location) -> LocationCapacityView:
        return LocationCapacityView(
            location_id=int(loc.id),
            code=loc.code,
            category=loc.category,
            current_capacity=int(loc.current_capacity),
            max_capacity=int(loc.max_capacity),
            available_capacity=int(loc.available_capacity),
            capacity_percentage=round(float(loc.capacity_percentage), 2),
            capacity_status=loc.capacity_status(
                near_full_ratio=self.settings.LOCATION_NEAR_FULL_RATIO,
                half_ratio=self.settings.LOCATION_HALF_RATIO,
            ),
            is_full=bool(loc.is_full),
        )

    async def list_near_full(self, session: AsyncSession) -> List[LocationCapacityView]:
        threshold = float(self.settings.LOCATION_NEAR_FULL_RATIO) * 100.0
        rows = (
            await session.execute(
                select(Location)
                .where(
                    Location.is_deleted.is_(False),
                    Location.is_active.is_(True),
                    Location.capacity_percentage >= threshold,
                )
                .order_by(Location.capacity_percentage.desc(), Location.id)
            )
        ).scalars().all()
        return [self.to_view(r) for r in rows]

    async def suggest_putaway_location(
        self,
        session: AsyncSession,
        *,
        quantity: int,
        category: LocationCategory | str = LocationCategory.STORAGE,
    ) -> Optional[LocationCapacityView]:
        """
        上架推荐：在启用且未删除的同类库位中，选剩余容量足够、当前利用率最低的一个
        （利用率相同按 id）。没有合适库位时返回 None。
        """
        qty = int(quantity)
        if qty <= 0:
            raise ValidationError("上架数量必须为正数。", context={"quantity": qty})
        try:
            cat = LocationCategory(str(category.value if isinstance(category, LocationCategory) else category))
        except ValueError:
            raise ValidationError(f"未知库位类别：{category}", context={"category": str(category)})

        loc = (
            await session.execute(
                select(Location)
                .where(
                    Location.is_deleted.is_(False),
                    Location.is_active.is_(True),
                    Location.category == cat.value,
                    Location.available_capacity >= qty,
                )
                .order_by(Location.capacity_percentage.asc(), Location.id)
                .limit(1)
            )
        ).scalars().first()

        if loc is None:
            logger.warning("putaway suggestion: no %s location can take quantity=%s", cat.value, qty)
            return None
        logger.info(
            "putaway suggestion: quantity=%s -> location=%s code=%s available=%s",
            qty,
            loc.id,
            loc.code,
            loc.available_capacity,
        )
        return self.to_view(loc)

    async def utilization_summary(self, session: AsyncSession) -> UtilizationSummary:
        rows = (
            await session.execute(
                select(Location.current_capacity, Location.max_capacity).where(
                    Location.is_deleted.is_(False),
                    Location.is_active.is_(True),
                )
            )
        ).all()

        near = self.settings.LOCATION_NEAR_FULL_RATIO
        total_cap = sum(int(r.max_capacity) for r in rows)
        used_cap = sum(int(r.current_capacity) for r in rows)
        full = sum(1 for r in rows if int(r.current_capacity) >= int(r.max_capacity))
        near_full = sum(
            1
            for r in rows
            if int(r.current_capacity) < int(r.max_capacity)
            and int(r.current_capacity) >= near * int(r.max_capacity)
        )
        return UtilizationSummary(
            total_locations=len(rows),
            full_locations=full,
            near_full_locations=near_full,
            total_capacity=total_cap,
            used_capacity=used_cap,
            utilization_percentage=round(used_cap * 100.0 / total_cap, 2) if total_cap else 0.0,
        )
