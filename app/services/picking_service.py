# app/services/picking_service.py
from __future__ import annotations

from typing import List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.audit import Actor
from app.core.config import AppSettings, get_settings
from app.models.picking import Picking
from app.services.fifo_allocator import AllocationSlice, FifoAllocator
from app.services.inventory_ledger import InventoryLedgerService
from app.services.picking_close import cancel_picking as _cancel_picking
from app.services.picking_close import complete_picking as _complete_picking
from app.services.picking_create import generate_for_order as _generate_for_order
from app.services.picking_record import record_pick as _record_pick
from app.services.picking_record import record_picks as _record_picks
from app.services.picking_types import (
    BulkPickResult,
    CancelResult,
    CompletionResult,
    PickingSummary,
    PickLine,
    PickResult,
)
from app.services.picking_views import get_summary as _get_summary
from app.services.picking_views import list_summaries as _list_summaries


class PickingService:
    """
    拣货分配引擎门面：

        Pending --record_pick(s)--> InProgress --complete--> Completed
        Pending|InProgress --cancel--> Cancelled

    所有写方法都不 commit，必须由外层（run_tx）控制事务。
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

    async def suggest_locations(self, *, item_id: int, quantity: int) -> List[AllocationSlice]:
        return await self.allocator.suggest(self.session, item_id=item_id, quantity=quantity)

    async def generate(
        self,
        *,
        sales_order_id: int,
        actor: Actor,
        trace_id: Optional[str] = None,
    ) -> Picking:
        return await _generate_for_order(
            self.session,
            sales_order_id=sales_order_id,
            actor=actor,
            allocator=self.allocator,
            trace_id=trace_id,
        )

    async def record_pick(
        self,
        *,
        detail_id: int,
        quantity: int,
        actor: Actor,
        trace_id: Optional[str] = None,
    ) -> PickResult:
        return await _record_pick(
            self.session,
            detail_id=detail_id,
            quantity=quantity,
            actor=actor,
            ledger=self.ledger,
            trace_id=trace_id,
        )

    async def record_picks(
        self,
        *,
        picking_id: int,
        picks: Sequence[PickLine],
        actor: Actor,
        trace_id: Optional[str] = None,
    ) -> BulkPickResult:
        return await _record_picks(
            self.session,
            picking_id=picking_id,
            picks=picks,
            actor=actor,
            ledger=self.ledger,
            trace_id=trace_id,
        )

    async def complete(
        self,
        *,
        picking_id: int,
        actor: Actor,
        trace_id: Optional[str] = None,
    ) -> CompletionResult:
        return await _complete_picking(
            self.session,
            picking_id=picking_id,
            actor=actor,
            trace_id=trace_id,
        )

    async def cancel(
        self,
        *,
        picking_id: int,
        actor: Actor,
        reopen_order: bool = False,
        reason: Optional[str] = None,
        trace_id: Optional[str] = None,
    ) -> CancelResult:
        return await _cancel_picking(
            self.session,
            picking_id=picking_id,
            actor=actor,
            ledger=self.ledger,
            reopen_order=reopen_order,
            reason=reason,
            trace_id=trace_id,
        )

    async def get_summary(self, *, picking_id: int) -> PickingSummary:
        return await _get_summary(self.session, picking_id=picking_id)

    async def list_pickings(self, *, status: Optional[str] = None, limit: int = 100) -> List[PickingSummary]:
        return await _list_summaries(self.session, status=status, limit=limit)
