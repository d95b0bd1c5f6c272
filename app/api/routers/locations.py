# app/api/routers/locations.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import commit_or_problem, get_actor, get_trace, read_or_problem
from app.api.routers.locations_schemas import (
    CapacityDriftOut,
    LocationCapacityOut,
    LocationCreateIn,
    RecomputeOut,
    UtilizationOut,
)
from app.core.audit import Actor, TraceContext
from app.db.session import get_session
from app.services.location_capacity import LocationCapacityService

router = APIRouter(prefix="/locations", tags=["locations"])


@router.post("", response_model=LocationCapacityOut, status_code=status.HTTP_201_CREATED)
async def create_location(
    payload: LocationCreateIn,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_actor),
    trace: TraceContext = Depends(get_trace),
) -> LocationCapacityOut:
    svc = LocationCapacityService()

    async def _run(sess: AsyncSession) -> LocationCapacityOut:
        loc = await svc.create_location(
            sess,
            code=payload.code,
            name=payload.name,
            category=payload.category,
            max_capacity=payload.max_capacity,
            is_active=payload.is_active,
            actor=actor,
            trace_id=trace.trace_id,
        )
        return LocationCapacityOut.model_validate(svc.to_view(loc))

    return await commit_or_problem(session, _run, trace=trace)


@router.delete("/{location_id}", response_model=LocationCapacityOut)
async def delete_location(
    location_id: int,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_actor),
    trace: TraceContext = Depends(get_trace),
) -> LocationCapacityOut:
    svc = LocationCapacityService()

    async def _run(sess: AsyncSession) -> LocationCapacityOut:
        loc = await svc.soft_delete(sess, location_id, actor=actor, trace_id=trace.trace_id)
        return LocationCapacityOut.model_validate(svc.to_view(loc))

    return await commit_or_problem(session, _run, trace=trace)


@router.get("/near-full", response_model=List[LocationCapacityOut])
async def list_near_full(
    session: AsyncSession = Depends(get_session),
    trace: TraceContext = Depends(get_trace),
) -> List[LocationCapacityOut]:
    svc = LocationCapacityService()

    async def _run(sess: AsyncSession) -> List[LocationCapacityOut]:
        return [LocationCapacityOut.model_validate(v) for v in await svc.list_near_full(sess)]

    return await read_or_problem(session, _run, trace=trace)


@router.get("/putaway-suggestion", response_model=Optional[LocationCapacityOut])
async def suggest_putaway_location(
    quantity: int = Query(..., description="待上架数量（必须为正）"),
    category: str = Query(default="Storage"),
    session: AsyncSession = Depends(get_session),
    trace: TraceContext = Depends(get_trace),
) -> Optional[LocationCapacityOut]:
    svc = LocationCapacityService()

    async def _run(sess: AsyncSession) -> Optional[LocationCapacityOut]:
        view = await svc.suggest_putaway_location(sess, quantity=quantity, category=category)
        return LocationCapacityOut.model_validate(view) if view is not None else None

    return await read_or_problem(session, _run, trace=trace)


@router.get("/utilization", response_model=UtilizationOut)
async def utilization(
    session: AsyncSession = Depends(get_session),
    trace: TraceContext = Depends(get_trace),
) -> UtilizationOut:
    svc = LocationCapacityService()

    async def _run(sess: AsyncSession) -> UtilizationOut:
        return UtilizationOut.model_validate(await svc.utilization_summary(sess))

    return await read_or_problem(session, _run, trace=trace)


@router.post("/recompute", response_model=List[CapacityDriftOut])
async def recompute_all(
    session: AsyncSession = Depends(get_session),
    trace: TraceContext = Depends(get_trace),
) -> List[CapacityDriftOut]:
    svc = LocationCapacityService()

    async def _run(sess: AsyncSession) -> List[CapacityDriftOut]:
        return [CapacityDriftOut.model_validate(d) for d in await svc.recompute_all(sess)]

    return await commit_or_problem(session, _run, trace=trace)


@router.post("/{location_id}/recompute", response_model=RecomputeOut)
async def recompute_one(
    location_id: int,
    session: AsyncSession = Depends(get_session),
    trace: TraceContext = Depends(get_trace),
) -> RecomputeOut:
    svc = LocationCapacityService()

    async def _run(sess: AsyncSession) -> RecomputeOut:
        cap = await svc.recompute(sess, location_id)
        return RecomputeOut(location_id=location_id, current_capacity=cap)

    return await commit_or_problem(session, _run, trace=trace)
