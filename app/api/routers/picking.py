# app/api/routers/picking.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import commit_or_problem, get_actor, get_trace, read_or_problem
from app.api.routers.picking_schemas import (
    BulkPickOut,
    CancelPickingIn,
    CancelPickingOut,
    CompletionOut,
    PickingSummaryOut,
    PickResultOut,
    RecordPickIn,
    RecordPicksIn,
    SuggestionIn,
    SuggestionOut,
)
from app.core.audit import Actor, TraceContext
from app.db.session import get_session
from app.services.picking_service import PickingService
from app.services.picking_types import PickLine

router = APIRouter(prefix="/picking", tags=["picking"])


@router.post("/suggestions", response_model=List[SuggestionOut])
async def suggest_locations(
    payload: SuggestionIn,
    session: AsyncSession = Depends(get_session),
    trace: TraceContext = Depends(get_trace),
) -> List[SuggestionOut]:
    async def _run(sess: AsyncSession) -> List[SuggestionOut]:
        slices = await PickingService(sess).suggest_locations(item_id=payload.item_id, quantity=payload.quantity)
        return [SuggestionOut.model_validate(s) for s in slices]

    return await read_or_problem(session, _run, trace=trace)


@router.get("", response_model=List[PickingSummaryOut])
async def list_pickings(
    status: Optional[str] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
    trace: TraceContext = Depends(get_trace),
) -> List[PickingSummaryOut]:
    async def _run(sess: AsyncSession) -> List[PickingSummaryOut]:
        rows = await PickingService(sess).list_pickings(status=status, limit=limit)
        return [PickingSummaryOut.model_validate(r) for r in rows]

    return await read_or_problem(session, _run, trace=trace)


@router.get("/{picking_id}", response_model=PickingSummaryOut)
async def get_picking(
    picking_id: int,
    session: AsyncSession = Depends(get_session),
    trace: TraceContext = Depends(get_trace),
) -> PickingSummaryOut:
    async def _run(sess: AsyncSession) -> PickingSummaryOut:
        return PickingSummaryOut.model_validate(await PickingService(sess).get_summary(picking_id=picking_id))

    return await read_or_problem(session, _run, trace=trace)


@router.post("/details/{detail_id}/pick", response_model=PickResultOut)
async def record_pick(
    detail_id: int,
    payload: RecordPickIn,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_actor),
    trace: TraceContext = Depends(get_trace),
) -> PickResultOut:
    async def _run(sess: AsyncSession) -> PickResultOut:
        res = await PickingService(sess).record_pick(
            detail_id=detail_id,
            quantity=payload.quantity,
            actor=actor,
            trace_id=trace.trace_id,
        )
        return PickResultOut.model_validate(res)

    return await commit_or_problem(session, _run, trace=trace)


@router.post("/{picking_id}/picks", response_model=BulkPickOut)
async def record_picks(
    picking_id: int,
    payload: RecordPicksIn,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_actor),
    trace: TraceContext = Depends(get_trace),
) -> BulkPickOut:
    async def _run(sess: AsyncSession) -> BulkPickOut:
        res = await PickingService(sess).record_picks(
            picking_id=picking_id,
            picks=[PickLine(detail_id=p.detail_id, quantity=p.quantity) for p in payload.picks],
            actor=actor,
            trace_id=trace.trace_id,
        )
        return BulkPickOut.model_validate(res)

    return await commit_or_problem(session, _run, trace=trace)


@router.post("/{picking_id}/complete", response_model=CompletionOut)
async def complete_picking(
    picking_id: int,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_actor),
    trace: TraceContext = Depends(get_trace),
) -> CompletionOut:
    async def _run(sess: AsyncSession) -> CompletionOut:
        res = await PickingService(sess).complete(picking_id=picking_id, actor=actor, trace_id=trace.trace_id)
        return CompletionOut.model_validate(res)

    return await commit_or_problem(session, _run, trace=trace)


@router.post("/{picking_id}/cancel", response_model=CancelPickingOut)
async def cancel_picking(
    picking_id: int,
    payload: Optional[CancelPickingIn] = None,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_actor),
    trace: TraceContext = Depends(get_trace),
) -> CancelPickingOut:
    body = payload or CancelPickingIn()

    async def _run(sess: AsyncSession) -> CancelPickingOut:
        res = await PickingService(sess).cancel(
            picking_id=picking_id,
            actor=actor,
            reopen_order=body.reopen_order,
            reason=body.reason,
            trace_id=trace.trace_id,
        )
        return CancelPickingOut.model_validate(res)

    return await commit_or_problem(session, _run, trace=trace)
