# app/schemas/item.py
from __future__ import annotations

from typing import Annotated, List, Optional

from pydantic import Field, field_validator

from app.schemas.common import UtcDatetime, _Base


# ========= 创建 =========
class ItemCreate(_Base):
    name: Annotated[str, Field(min_length=1, max_length=255)]
    description: Annotated[Optional[str], Field(default=None)] = None
    category_id: Annotated[Optional[int], Field(default=None, gt=0)] = None

    @field_validator("name", "description", mode="before")
    @classmethod
    def _trim_text(cls, v):
        return v.strip() if isinstance(v, str) else v

    model_config = _Base.model_config | {
        "json_schema_extra": {"example": {"name": "USB-C cable 1m", "description": "braided", "category_id": 1}}
    }


# ========= 输出 =========
class ItemBrief(_Base):
    id: int
    name: str
    barcode: str
    description: Optional[str] = None


class ItemOut(ItemBrief):
    category_id: Optional[int] = None
    total_quantity: int = 0
    created_at: Optional[UtcDatetime] = None


class LocationBrief(_Base):
    id: int
    name: str
    barcode: str
    description: Optional[str] = None


class ItemLocationOut(_Base):
    location: LocationBrief
    quantity: int
    added_at: Optional[UtcDatetime] = None


class ItemDetailOut(ItemBrief):
    total_quantity: int
    locations: List[ItemLocationOut] = Field(default_factory=list)


# ========= 条码池 =========
class PoolStatsOut(_Base):
    total: int
    in_use: int
    available: int
    utilization_percent: float


class PoolEnsureIn(_Base):
    target: Annotated[Optional[int], Field(default=None, ge=0, description="目标容量；缺省用 POOL_PREWARM_DEFAULT")] = None


class PoolEnsureOut(PoolStatsOut):
    created: int


__all__ = [
    "ItemCreate",
    "ItemBrief",
    "ItemOut",
    "LocationBrief",
    "ItemLocationOut",
    "ItemDetailOut",
    "PoolStatsOut",
    "PoolEnsureIn",
    "PoolEnsureOut",
]
