# app/api/problem.py
"""
stockunits 的错误响应形状（Problem）：

    {
      "error_code": "not_found" | "validation_failed" | "concurrency_conflict" | ...,
      "message": "...",
      "http_status": 404,
      "context": {"path": "...", "method": "...", ...},
      "details": [{"type": "validation", "path": "validation[0]", "reason": "..."}],
      "next_actions": [{"action": "retry", "label": "..."}],
      "trace_id": "t_xxxxxxxxxxxx"
    }

空字段不输出。
"""

from __future__ import annotations

import uuid
from typing import Any, Dict, Iterable, List, Optional, Sequence, TypedDict

from fastapi import Request


class ProblemDetail(TypedDict, total=False):
    type: str  # validation|state
    path: str  # validation[0]
    reason: str  # 失败的规则名，如 move_to_same_location


class NextAction(TypedDict, total=False):
    action: str
    label: str


RETRY_ACTION: NextAction = {"action": "retry", "label": "稍后重试"}


def new_trace_id() -> str:
    return f"t_{uuid.uuid4().hex[:12]}"


def request_context(req: Request) -> Dict[str, Any]:
    return {"path": getattr(req.url, "path", ""), "method": req.method}


def validation_details(errors: Iterable[Any]) -> List[ProblemDetail]:
    """pydantic / FastAPI 的 errors() 列表 → details；非 dict 项按字符串收。"""
    out: List[ProblemDetail] = []
    for i, e in enumerate(errors):
        if isinstance(e, dict):
            reason = str(e.get("msg") or e.get("type") or "invalid")
        else:
            reason = str(e)
        out.append({"type": "validation", "path": f"validation[{i}]", "reason": reason})
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
    out: Dict[str, Any] = {
        "error_code": str(error_code),
        "message": str(message),
        "http_status": int(status_code),
    }
    if context:
        out["context"] = dict(context)
    if details:
        out["details"] = list(details)
    if next_actions:
        out["next_actions"] = list(next_actions)
    out["trace_id"] = trace_id or new_trace_id()
    return out
