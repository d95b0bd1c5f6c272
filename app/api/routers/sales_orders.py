# app/api/routers/sales_orders.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import commit_or_problem, get_actor, get_trace, read_or_problem
from app.api.routers.picking_schemas import GeneratePickingOut
from app.api.routers.sales_orders_schemas import (
    SalesOrderCancelIn,
    SalesOrderCancelOut,
    SalesOrderCreateIn,
    SalesOrderOut,
    ShipOut,
)
from app.core.audit import Actor, TraceContext
from app.db.session import get_session
from app.services.picking_service import PickingService
from app.services.sales_order_service import SalesOrderLineInput, SalesOrderService

router = APIRouter(prefix="/sales-orders", tags=["sales-orders"])


@router.post("", response_model=SalesOrderOut, status_code=status.HTTP_201_CREATED)
async def create_sales_order(
    payload: SalesOrderCreateIn,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_actor),
    trace: TraceContext = Depends(get_trace),
) -> SalesOrderOut:
    async def _run(sess: AsyncSession) -> SalesOrderOut:
        so = await SalesOrderService(sess).create(
            customer_id=payload.customer_id,
            holding_location_id=payload.holding_location_id,
            lines=[
                SalesOrderLineInput(item_id=ln.item_id, quantity=ln.quantity, unit_price=ln.unit_price)
                for ln in payload.lines
            ],
            notes=payload.notes,
            actor=actor,
            trace_id=trace.trace_id,
        )
        return SalesOrderOut.model_validate(so)

    return await commit_or_problem(session, _run, trace=trace)


@router.get("", response_model=List[SalesOrderOut])
async def list_sales_orders(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
    trace: TraceContext = Depends(get_trace),
) -> List[SalesOrderOut]:
    async def _run(sess: AsyncSession) -> List[SalesOrderOut]:
        rows = await SalesOrderService(sess).list_orders(status=status_filter, limit=limit)
        return [SalesOrderOut.model_validate(r) for r in rows]

    return await read_or_problem(session, _run, trace=trace)


@router.get("/{sales_order_id}", response_model=SalesOrderOut)
async def get_sales_order(
    sales_order_id: int,
    session: AsyncSession = Depends(get_session),
    trace: TraceContext = Depends(get_trace),
) -> SalesOrderOut:
    async def _run(sess: AsyncSession) -> SalesOrderOut:
        return SalesOrderOut.model_validate(await SalesOrderService(sess).get(sales_order_id))

    return await read_or_problem(session, _run, trace=trace)


@router.post("/{sales_order_id}/picking", response_model=GeneratePickingOut, status_code=status.HTTP_201_CREATED)
async def generate_picking(
    sales_order_id: int,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_actor),
    trace: TraceContext = Depends(get_trace),
) -> GeneratePickingOut:
    async def _run(sess: AsyncSession) -> GeneratePickingOut:
        picking = await PickingService(sess).generate(
            sales_order_id=sales_order_id,
            actor=actor,
            trace_id=trace.trace_id,
        )
        return GeneratePickingOut(
            picking_id=int(picking.id),
            picking_number=picking.picking_number,
            sales_order_id=int(picking.sales_order_id),
            detail_count=len(picking.details),
        )

    return await commit_or_problem(session, _run, trace=trace)


@router.post("/{sales_order_id}/cancel", response_model=SalesOrderCancelOut)
async def cancel_sales_order(
    sales_order_id: int,
    payload: SalesOrderCancelIn,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_actor),
    trace: TraceContext = Depends(get_trace),
) -> SalesOrderCancelOut:
    async def _run(sess: AsyncSession) -> SalesOrderCancelOut:
        res = await SalesOrderService(sess).cancel(
            sales_order_id=sales_order_id,
            reason=payload.reason,
            actor=actor,
            trace_id=trace.trace_id,
        )
        return SalesOrderCancelOut(
            sales_order_id=res.sales_order_id,
            status=res.status,
            notes=res.notes,
            picking_id=res.picking_id,
            restored_quantity=sum(r.quantity for r in res.restored),
        )

    return await commit_or_problem(session, _run, trace=trace)


@router.post("/{sales_order_id}/ship", response_model=ShipOut)
async def ship_sales_order(
    sales_order_id: int,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_actor),
    trace: TraceContext = Depends(get_trace),
) -> ShipOut:
    async def _run(sess: AsyncSession) -> ShipOut:
        res = await SalesOrderService(sess).ship(
            sales_order_id=sales_order_id,
            actor=actor,
            trace_id=trace.trace_id,
        )
        return ShipOut.model_validate(res)

    return await commit_or_problem(session, _run, trace=trace)
