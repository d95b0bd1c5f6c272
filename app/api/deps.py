# app/api/deps.py
from __future__ import annotations

from typing import Awaitable, Callable, Optional, TypeVar

from fastapi import Header
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.problem import raise_from_error
from app.core.audit import SYSTEM_ACTOR, Actor, TraceContext, ensure_trace
from app.core.tx import run_tx
from app.services.fulfillment_errors import FulfillmentError

T = TypeVar("T")


def get_actor(
    x_actor_id: Optional[int] = Header(default=None),
    x_actor_name: Optional[str] = Header(default=None),
) -> Actor:
    """操作人来自请求头（鉴权不在本服务范围内）；缺省为 system。"""
    name = (x_actor_name or "").strip()
    if x_actor_id is None and not name:
        return SYSTEM_ACTOR
    return Actor(actor_id=x_actor_id, name=name or f"user-{x_actor_id}")


def get_trace(x_trace_id: Optional[str] = Header(default=None)) -> TraceContext:
    tid = (x_trace_id or "").strip()
    if tid:
        return TraceContext(trace_id=tid[:64], source="http")
    return ensure_trace(None, "http")


async def commit_or_problem(
    session: AsyncSession,
    fn: Callable[[AsyncSession], Awaitable[T]],
    *,
    trace: TraceContext,
) -> T:
    """run_tx（提交 / 回滚 / 冲突重试）+ 业务异常 Problem 化。"""
    try:
        return await run_tx(session, fn)
    except FulfillmentError as e:
        raise_from_error(e, trace_id=trace.trace_id)


async def read_or_problem(
    session: AsyncSession,
    fn: Callable[[AsyncSession], Awaitable[T]],
    *,
    trace: TraceContext,
) -> T:
    """只读查询：不提交；业务异常 Problem 化。"""
    try:
        return await fn(session)
    except FulfillmentError as e:
        raise_from_error(e, trace_id=trace.trace_id)
    finally:
        if session.in_transaction():
            await session.rollback()
