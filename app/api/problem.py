# app/api/problem.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, NoReturn, Optional, Sequence, TypedDict

from fastapi import HTTPException

from app.services.fulfillment_errors import (
    CapacityExceeded,
    ConcurrencyConflict,
    FulfillmentError,
    InsufficientStock,
    Unavailable,
)


class ProblemDetail(TypedDict, total=False):
    # 必填
    type: str  # validation|shortage|state|timeout
    # 可选：用于行内定位
    path: str  # e.g. items[3]
    # 常用字段（按需）
    reason: str
    item_id: int
    location_id: int

    required_qty: int
    available_qty: int
    short_qty: int


class NextAction(TypedDict, total=False):
    action: str
    label: str


@dataclass(frozen=True)
class Problem:
    error_code: str
    message: str
    http_status: int
    context: Optional[Dict[str, Any]] = None
    details: Optional[List[ProblemDetail]] = None
    next_actions: Optional[List[NextAction]] = None
    trace_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "error_code": self.error_code,
            "message": self.message,
            "http_status": int(self.http_status),
        }
        if self.context:
            out["context"] = self.context
        if self.details:
            out["details"] = self.details
        if self.next_actions:
            out["next_actions"] = self.next_actions
        if self.trace_id:
            out["trace_id"] = self.trace_id
        return out


def make_problem(
    *,
    status_code: int,
    error_code: str,
    message: str,
    context: Optional[Dict[str, Any]] = None,
    details: Optional[Sequence[ProblemDetail]] = None,
    next_actions: Optional[Sequence[NextAction]] = None,
    trace_id: Optional[str] = None,
) -> Dict[str, Any]:
    p = Problem(
        error_code=str(error_code),
        message=str(message),
        http_status=int(status_code),
        context=context,
        details=list(details) if details else None,
        next_actions=list(next_actions) if next_actions else None,
        trace_id=trace_id,
    )
    return p.to_dict()


def raise_problem(
    *,
    status_code: int,
    error_code: str,
    message: str,
    context: Optional[Dict[str, Any]] = None,
    details: Optional[Sequence[ProblemDetail]] = None,
    next_actions: Optional[Sequence[NextAction]] = None,
    trace_id: Optional[str] = None,
) -> NoReturn:
    raise HTTPException(
        status_code=int(status_code),
        detail=make_problem(
            status_code=int(status_code),
            error_code=error_code,
            message=message,
            context=context,
            details=details,
            next_actions=next_actions,
            trace_id=trace_id,
        ),
    )


def _next_actions_for(err: FulfillmentError) -> List[NextAction]:
    if isinstance(err, InsufficientStock):
        return [
            {"action": "rescan_stock", "label": "刷新库存"},
            {"action": "adjust_to_available", "label": "按可用库存调整数量"},
        ]
    if isinstance(err, CapacityExceeded):
        return [{"action": "choose_other_location", "label": "选择其他库位"}]
    if isinstance(err, (ConcurrencyConflict, Unavailable)):
        return [{"action": "retry", "label": "稍后重试"}]
    return []


def raise_from_error(err: FulfillmentError, *, trace_id: Optional[str] = None) -> NoReturn:
    """业务异常 → Problem（error_code / http_status 取自异常类）。"""
    context = dict(err.context)
    context.setdefault("kind", err.kind)
    raise_problem(
        status_code=err.http_status,
        error_code=err.error_code,
        message=err.message,
        context=context,
        details=err.details or None,
        next_actions=_next_actions_for(err) or None,
        trace_id=trace_id,
    )
