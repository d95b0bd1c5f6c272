# app/services/fulfillment_errors.py
from __future__ import annotations

from typing import Any, Dict, List, Optional


class FulfillmentError(Exception):
    """
    履约引擎业务异常基类。

    - error_code：稳定的机器可读错误码（前端/调用方按它分支）
    - http_status：路由层 Problem 化时使用的状态码
    - context / details：Problem 的附加字段（details 形状见 app.api.problem.ProblemDetail）

    服务层只抛不接；事务由外层 run_tx 回滚。
    """

    error_code: str = "fulfillment_error"
    http_status: int = 400
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        context: Optional[Dict[str, Any]] = None,
        details: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = dict(context or {})
        self.details: List[Dict[str, Any]] = list(details or [])

    @property
    def kind(self) -> str:
        # 一级分类名（ValidationError / NotFound / ...），子类沿用父类的分类
        for cls in type(self).__mro__:
            if cls.__base__ is FulfillmentError:
                return cls.__name__
        return type(self).__name__


class ValidationError(FulfillmentError):
    error_code = "validation_error"
    http_status = 422


class InvalidQuantity(ValidationError):
    error_code = "invalid_quantity"


class NotFound(FulfillmentError):
    error_code = "not_found"
    http_status = 404


class InvalidState(FulfillmentError):
    error_code = "invalid_state"
    http_status = 409


class AlreadyExists(InvalidState):
    error_code = "picking_already_exists"


class NothingPicked(InvalidState):
    error_code = "nothing_picked"


class InsufficientStock(FulfillmentError):
    error_code = "insufficient_stock"
    http_status = 409


class NoHoldingStock(InsufficientStock):
    error_code = "no_holding_stock"


class CapacityExceeded(FulfillmentError):
    error_code = "capacity_exceeded"
    http_status = 409


class ConcurrencyConflict(FulfillmentError):
    error_code = "concurrency_conflict"
    http_status = 409
    retryable = True


class Unavailable(FulfillmentError):
    error_code = "unavailable"
    http_status = 503


def shortage_detail(
    *,
    item_id: int,
    required_qty: int,
    available_qty: int,
    path: str,
    location_id: Optional[int] = None,
) -> Dict[str, Any]:
    short_qty = max(0, int(required_qty) - int(available_qty))
    out: Dict[str, Any] = {
        "type": "shortage",
        "path": path,
        "item_id": int(item_id),
        "required_qty": int(required_qty),
        "available_qty": int(available_qty),
        "short_qty": int(short_qty),
        "reason": "insufficient_stock",
    }
    if location_id is not None:
        out["location_id"] = int(location_id)
    return out


def state_detail(path: str, reason: str) -> Dict[str, Any]:
    return {"type": "state", "path": path, "reason": reason}
