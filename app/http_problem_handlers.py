# app/http_problem_handlers.py
from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.api.problem import RETRY_ACTION, make_problem, new_trace_id, request_context, validation_details
from app.obs.metrics import consistency_violations_total
from app.services.inventory_errors import (
    ConcurrencyConflict,
    ConsistencyViolation,
    InventoryError,
    NotFound,
    ValidationFailed,
)

logger = logging.getLogger("stockunits.http")


def _problem_from_http_exc(req: Request, exc: HTTPException) -> Dict[str, Any]:
    """
    统一将 HTTPException.detail 翻译为 Problem 形状。
    兼容形态：
    - str
    - list（例如 RequestValidationError safe list）
    - {"error_code","message",...}（已是 Problem）
    """
    status_code = int(exc.status_code)
    ctx = request_context(req)
    d = exc.detail

    # 1) 已是 Problem：补齐 http_status / trace_id，context 合并请求信息
    if isinstance(d, dict) and "error_code" in d and "message" in d:
        out = dict(d)
        out.setdefault("http_status", status_code)
        out.setdefault("trace_id", new_trace_id())
        if isinstance(out.get("context"), dict):
            ctx.update(out["context"])
        out["context"] = ctx
        return out

    # 2) detail=list：当作 validation 详情
    if isinstance(d, list):
        return make_problem(
            status_code=status_code,
            error_code="request_validation_error",
            message="请求参数不合法",
            context=ctx,
            details=validation_details(d),
        )

    # 3) detail=str / 其它：兜底为 state
    msg = str(d) if d is not None else "请求被拒绝"
    return make_problem(
        status_code=status_code,
        error_code="http_error",
        message=msg,
        context=ctx,
        details=[{"type": "state", "reason": msg}],
    )


def _status_for(exc: InventoryError) -> int:
    if isinstance(exc, NotFound):
        return 404
    if isinstance(exc, ValidationFailed):
        return 422
    if isinstance(exc, ConcurrencyConflict):
        return 503
    return 500


def _problem_from_inventory_error(req: Request, exc: InventoryError) -> Dict[str, Any]:
    """
    库存内核异常 → Problem：
    - NotFound 404 / ValidationFailed 422（details 带失败的 rule）
    - ConcurrencyConflict 503，next_actions 提示重试
    - ConsistencyViolation 500，记 error 日志并计数
    """
    trace_id = new_trace_id()
    ctx = request_context(req)
    ctx.update(exc.context)

    details = None
    next_actions = None
    if isinstance(exc, ValidationFailed):
        details = [{"type": "validation", "reason": exc.rule}]
    elif isinstance(exc, ConcurrencyConflict):
        ctx["op"] = exc.op
        next_actions = [RETRY_ACTION]
    elif isinstance(exc, ConsistencyViolation):
        ctx["kind"] = exc.kind
        consistency_violations_total.labels("surfaced").inc()
        logger.error("CONSISTENCY_VIOLATION[%s] kind=%s: %s", trace_id, exc.kind, exc.message, exc_info=exc)

    return make_problem(
        status_code=_status_for(exc),
        error_code=exc.error_code,
        message=exc.message,
        context=ctx,
        details=details,
        next_actions=next_actions,
        trace_id=trace_id,
    )


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(Exception)
    async def _unhandled_exc(req: Request, exc: Exception):
        trace_id = new_trace_id()
        logger.exception("UNHANDLED_EXC[%s]: %s", trace_id, exc)
        content = make_problem(
            status_code=500,
            error_code="internal_error",
            message="系统异常，请稍后重试",
            context=request_context(req),
            trace_id=trace_id,
        )
        return JSONResponse(status_code=500, content=content)

    @app.exception_handler(RequestValidationError)
    async def _validation_exc(req: Request, exc: RequestValidationError):
        content = make_problem(
            status_code=422,
            error_code="request_validation_error",
            message="请求参数不合法",
            context=request_context(req),
            details=validation_details(exc.errors()),
        )
        return JSONResponse(status_code=422, content=content)

    @app.exception_handler(InventoryError)
    async def _inventory_exc(req: Request, exc: InventoryError):
        content = _problem_from_inventory_error(req, exc)
        return JSONResponse(status_code=int(content["http_status"]), content=content)

    @app.exception_handler(HTTPException)
    async def _http_exc(req: Request, exc: HTTPException):
        content = _problem_from_http_exc(req, exc)
        return JSONResponse(status_code=int(exc.status_code), content=content)
