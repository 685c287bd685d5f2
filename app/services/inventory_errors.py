# app/services/inventory_errors.py
from __future__ import annotations

from typing import Any, Dict, Optional


class InventoryError(Exception):
    """库存内核错误基类：error_code + message + context，由 http_problem_handlers 翻译成 Problem。"""

    error_code = "inventory_error"

    def __init__(self, message: str, *, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = dict(context or {})


class NotFound(InventoryError):
    """Item / Location / Unit / PoolBarcode 不存在；不重试。"""

    error_code = "not_found"


class ValidationFailed(InventoryError):
    """输入或约束不合法；调用方修正后可重试。rule 指明失败的具体规则。"""

    error_code = "validation_failed"

    def __init__(self, message: str, *, rule: str, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, context=context)
        self.rule = rule


class SameLocationError(ValidationFailed):
    """移库的源库位与目标库位相同。"""

    def __init__(self, location_barcode: str) -> None:
        super().__init__(
            f"unit is already at location {location_barcode}",
            rule="move_to_same_location",
            context={"location_barcode": location_barcode},
        )
        self.location_barcode = location_barcode


class ConcurrencyConflict(InventoryError):
    """唯一约束竞争 / 锁等待超时，组件内已重试一次仍失败；属于瞬时故障。"""

    error_code = "concurrency_conflict"

    def __init__(self, op: str, *, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(f"concurrent modification while running {op}; retry later", context=context)
        self.op = op


class ConsistencyViolation(InventoryError):
    """不变量被破坏（序号撞车、空桶残留等）；理论不可达，必须上报。"""

    error_code = "consistency_violation"

    def __init__(self, message: str, *, kind: str, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, context=context)
        self.kind = kind
