# app/services/fifo_allocator.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import AppSettings, get_settings
from app.models.enums import OPEN_PICKING_STATUSES, LocationCategory
from app.models.picking import Picking, PickingDetail
from app.services.fulfillment_errors import InsufficientStock, InvalidQuantity, shortage_detail
from app.services.inventory_ledger import FifoCandidate, InventoryLedgerService


@dataclass(frozen=True)
class AllocationSlice:
    location_id: int
    location_code: str
    quantity_allocated: int
    location_available: int


@dataclass
class ItemCandidates:
    """某商品的 FIFO 候选 + 在途拣货单已占用数量（按库位）。"""

    item_id: int
    candidates: List[FifoCandidate]
    committed: Dict[int, int] = field(default_factory=dict)

    def available_at(self, location_id: int, consumed: Optional[Mapping[int, int]] = None) -> int:
        qty = 0
        for c in self.candidates:
            if c.location_id == location_id:
                qty = c.quantity
                break
        used = self.committed.get(location_id, 0) + (consumed or {}).get(location_id, 0)
        return max(0, qty - used)

    def total_available(self) -> int:
        return sum(self.available_at(c.location_id) for c in self.candidates)


def plan_fifo(
    candidates: Sequence[FifoCandidate],
    need: int,
    *,
    committed: Optional[Mapping[int, int]] = None,
    consumed: Optional[Mapping[int, int]] = None,
) -> Tuple[List[AllocationSlice], int]:
    """
    贪心切片（纯函数）：按候选顺序从前往后取，直到满足 need。

    - committed：在途拣货单已占用（按库位）
    - consumed：本次分配中前面的行已经取走的（按库位）
    返回 (slices, shortfall)；shortfall > 0 表示库存不够。
    """
    committed = committed or {}
    consumed = consumed or {}

    remaining = int(need)
    slices: List[AllocationSlice] = []
    for c in candidates:
        if remaining <= 0:
            break
        avail = int(c.quantity) - int(committed.get(c.location_id, 0)) - int(consumed.get(c.location_id, 0))
        if avail <= 0:
            continue
        take = min(remaining, avail)
        slices.append(
            AllocationSlice(
                location_id=c.location_id,
                location_code=c.location_code,
                quantity_allocated=take,
                location_available=avail,
            )
        )
        remaining -= take
    return slices, max(0, remaining)


class FifoAllocator:
    """
    FIFO 分配器：

    • 候选来源：InventoryLedgerService.fifo_candidates(item, Storage)
      - last_updated ASC（最老库存先出），id ASC 作 tie-breaker
    • 可选扣除在途拣货单（Pending/InProgress）尚未拣的数量，避免两张拣货单分到同一批货
    • suggest：只读预览（不加锁，可返回不足量的部分方案）
    • allocate：事务内加锁计算，不足直接 InsufficientStock

    使用方式（必须由外层控制事务）：

        async with session.begin():
            slices = await allocator.allocate(session, item_id=..., quantity=...)
    """

    def __init__(
        self,
        ledger: Optional[InventoryLedgerService] = None,
        settings: Optional[AppSettings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.ledger = ledger or InventoryLedgerService(settings=self.settings)

    async def open_allocations(self, session: AsyncSession, item_id: int) -> Dict[int, int]:
        if not self.settings.ALLOCATION_NET_OF_OPEN_PICKINGS:
            return {}
        rows = (
            await session.execute(
                select(
                    PickingDetail.location_id,
                    func.sum(PickingDetail.quantity_required - PickingDetail.quantity_picked),
                )
                .join(Picking, Picking.id == PickingDetail.picking_id)
                .where(
                    PickingDetail.item_id == int(item_id),
                    Picking.status.in_([s.value for s in OPEN_PICKING_STATUSES]),
                )
                .group_by(PickingDetail.location_id)
            )
        ).all()
        return {int(loc): int(qty or 0) for loc, qty in rows if int(qty or 0) > 0}

    async def load_candidates(
        self,
        session: AsyncSession,
        item_id: int,
        *,
        for_update: bool = False,
    ) -> ItemCandidates:
        candidates = await self.ledger.fifo_candidates(
            session,
            item_id,
            LocationCategory.STORAGE,
            exclude_empty=True,
            for_update=for_update,
        )
        committed = await self.open_allocations(session, item_id)
        return ItemCandidates(item_id=int(item_id), candidates=candidates, committed=committed)

    async def suggest(self, session: AsyncSession, *, item_id: int, quantity: int) -> List[AllocationSlice]:
        """只读预览：与 allocate 同样的排序与切分；库存不足时返回能覆盖的部分。"""
        if int(quantity) <= 0:
            raise InvalidQuantity("建议数量必须为正数。", context={"quantity": int(quantity)})
        ic = await self.load_candidates(session, item_id, for_update=False)
        slices, _ = plan_fifo(ic.candidates, int(quantity), committed=ic.committed)
        return slices

    async def allocate(
        self,
        session: AsyncSession,
        *,
        item_id: int,
        quantity: int,
        consumed: Optional[Mapping[int, int]] = None,
    ) -> List[AllocationSlice]:
        if int(quantity) <= 0:
            raise InvalidQuantity("分配数量必须为正数。", context={"quantity": int(quantity)})
        ic = await self.load_candidates(session, item_id, for_update=True)
        slices, shortfall = plan_fifo(ic.candidates, int(quantity), committed=ic.committed, consumed=consumed)
        if shortfall > 0:
            available = int(quantity) - shortfall
            raise InsufficientStock(
                "存储位库存不足，无法生成 FIFO 分配方案。",
                context={"item_id": int(item_id)},
                details=[
                    shortage_detail(
                        item_id=int(item_id),
                        required_qty=int(quantity),
                        available_qty=available,
                        path="fifo.allocate",
                    )
                ],
            )
        return slices
