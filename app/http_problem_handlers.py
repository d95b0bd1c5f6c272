# app/http_problem_handlers.py
from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.api.problem import make_problem, raise_from_error
from app.core.audit import new_trace
from app.services.fulfillment_errors import FulfillmentError

logger = logging.getLogger("wms")


def _trace_id(req: Request) -> str:
    tid = (req.headers.get("x-trace-id") or "").strip()
    return tid[:64] if tid else new_trace("http").trace_id


def _req_ctx(req: Request) -> Dict[str, Any]:
    return {"path": getattr(req.url, "path", ""), "method": req.method}


def _problem_from_http_exc(req: Request, exc: HTTPException) -> Dict[str, Any]:
    """
    统一将 HTTPException.detail 翻译为 Problem 形状：
    - 已是 Problem（路由层 raise_problem 抛出）：补齐 http_status / trace_id / context
    - str / 其它：兜底为 http_error
    """
    status_code = int(exc.status_code)
    ctx = _req_ctx(req)
    d = exc.detail

    if isinstance(d, dict) and "error_code" in d and "message" in d:
        out = dict(d)
        out.setdefault("http_status", status_code)
        out.setdefault("trace_id", _trace_id(req))
        merged = dict(ctx)
        if isinstance(out.get("context"), dict):
            merged.update(out["context"])
        out["context"] = merged
        return out

    msg = str(d) if d is not None else "请求被拒绝"
    return make_problem(
        status_code=status_code,
        error_code="http_error",
        message=msg,
        context=ctx,
        details=[{"type": "state", "reason": msg}],
        trace_id=_trace_id(req),
    )


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(Exception)
    async def _unhandled_exc(req: Request, exc: Exception):
        trace_id = _trace_id(req)
        logger.exception("UNHANDLED_EXC[%s]: %s", trace_id, exc)
        content = make_problem(
            status_code=500,
            error_code="internal_error",
            message="系统异常，请稍后重试",
            context=_req_ctx(req),
            trace_id=trace_id,
        )
        return JSONResponse(status_code=500, content=content)

    @app.exception_handler(FulfillmentError)
    async def _fulfillment_exc(req: Request, exc: FulfillmentError):
        # 路由未包 commit_or_problem 时的兜底
        try:
            raise_from_error(exc, trace_id=_trace_id(req))
        except HTTPException as http_exc:
            content = _problem_from_http_exc(req, http_exc)
            return JSONResponse(status_code=int(http_exc.status_code), content=content)

    @app.exception_handler(RequestValidationError)
    async def _validation_exc(req: Request, exc: RequestValidationError):
        details: List[Dict[str, Any]] = []
        for i, e in enumerate(exc.errors()):
            if not isinstance(e, dict):
                continue
            loc = ".".join(str(p) for p in (e.get("loc") or ()) if p != "body")
            details.append(
                {
                    "type": "validation",
                    "path": loc or f"validation[{i}]",
                    "reason": str(e.get("msg") or e.get("type") or "invalid"),
                }
            )

        content = make_problem(
            status_code=422,
            error_code="request_validation_error",
            message="请求参数不合法",
            context=_req_ctx(req),
            details=details,
            trace_id=_trace_id(req),
        )
        return JSONResponse(status_code=422, content=content)

    @app.exception_handler(HTTPException)
    async def _http_exc(req: Request, exc: HTTPException):
        content = _problem_from_http_exc(req, exc)
        return JSONResponse(status_code=int(exc.status_code), content=content)
