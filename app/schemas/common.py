# app/schemas/common.py
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Generic, Optional, TypeVar

from pydantic import AfterValidator, BaseModel, ConfigDict

from app.utils.time import as_utc

T = TypeVar("T")


# ========= 通用基类 =========
class _Base(BaseModel):
    """
    - from_attributes: 允许 ORM 对象 / dataclass 直接序列化
    - extra="ignore": 忽略冗余字段（对旧客户端更宽容）
    - populate_by_name: 支持别名/字段名互填
    """

    model_config = ConfigDict(
        from_attributes=True,
        extra="ignore",
        populate_by_name=True,
    )


# SQLite 读回的时间是 naive，对外一律带 UTC 时区输出
UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


class Envelope(BaseModel, Generic[T]):
    """对外响应外壳：{"data": ..., "message": ...}"""

    data: T
    message: Optional[str] = None


__all__ = ["_Base", "UtcDatetime", "Envelope"]
