# app/api/routers/inventory.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import commit_or_problem, get_actor, get_trace, read_or_problem
from app.api.routers.inventory_schemas import (
    AdjustOut,
    AvailableOut,
    InventoryRecordOut,
    LowStockOut,
    MoveIn,
    MoveOut,
    ReceiveIn,
)
from app.core.audit import Actor, TraceContext
from app.db.session import get_session
from app.services.inventory_ledger import InventoryLedgerService

router = APIRouter(prefix="/inventory", tags=["inventory"])


@router.get("/available", response_model=AvailableOut)
async def get_available(
    item_id: int = Query(...),
    category: Optional[str] = Query(default=None, description="Storage / Other；缺省不限"),
    session: AsyncSession = Depends(get_session),
    trace: TraceContext = Depends(get_trace),
) -> AvailableOut:
    async def _run(sess: AsyncSession) -> AvailableOut:
        qty = await InventoryLedgerService().get_available(sess, item_id, category)
        return AvailableOut(item_id=item_id, category=category, available=qty)

    return await read_or_problem(session, _run, trace=trace)


@router.get("/records", response_model=List[InventoryRecordOut])
async def list_records(
    item_id: Optional[int] = Query(default=None),
    location_id: Optional[int] = Query(default=None),
    session: AsyncSession = Depends(get_session),
    trace: TraceContext = Depends(get_trace),
) -> List[InventoryRecordOut]:
    async def _run(sess: AsyncSession) -> List[InventoryRecordOut]:
        rows = await InventoryLedgerService().list_records(sess, item_id=item_id, location_id=location_id)
        return [InventoryRecordOut.model_validate(r) for r in rows]

    return await read_or_problem(session, _run, trace=trace)


@router.get("/low-stock", response_model=List[LowStockOut])
async def low_stock(
    threshold: Optional[int] = Query(default=None, ge=0),
    session: AsyncSession = Depends(get_session),
    trace: TraceContext = Depends(get_trace),
) -> List[LowStockOut]:
    async def _run(sess: AsyncSession) -> List[LowStockOut]:
        rows = await InventoryLedgerService().low_stock(sess, threshold)
        return [LowStockOut.model_validate(r) for r in rows]

    return await read_or_problem(session, _run, trace=trace)


@router.post("/receive", response_model=AdjustOut)
async def receive(
    payload: ReceiveIn,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_actor),
    trace: TraceContext = Depends(get_trace),
) -> AdjustOut:
    async def _run(sess: AsyncSession) -> AdjustOut:
        res = await InventoryLedgerService().receive(
            sess,
            item_id=payload.item_id,
            location_id=payload.location_id,
            quantity=payload.quantity,
            ref=payload.ref,
            actor=actor,
            trace_id=trace.trace_id,
        )
        return AdjustOut.model_validate(res)

    return await commit_or_problem(session, _run, trace=trace)


@router.post("/move", response_model=MoveOut)
async def move(
    payload: MoveIn,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_actor),
    trace: TraceContext = Depends(get_trace),
) -> MoveOut:
    async def _run(sess: AsyncSession) -> MoveOut:
        res = await InventoryLedgerService().move(
            sess,
            item_id=payload.item_id,
            from_location_id=payload.from_location_id,
            to_location_id=payload.to_location_id,
            quantity=payload.quantity,
            ref=payload.ref,
            actor=actor,
            trace_id=trace.trace_id,
        )
        return MoveOut.model_validate(res)

    return await commit_or_problem(session, _run, trace=trace)
