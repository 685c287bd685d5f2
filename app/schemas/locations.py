# app/schemas/locations.py
from __future__ import annotations

from typing import Annotated, List, Optional

from pydantic import Field, field_validator

from app.schemas.common import UtcDatetime, _Base
from app.schemas.item import ItemBrief


# ========= 库位（Location） =========
class LocationCreate(_Base):
    name: Annotated[str, Field(min_length=1, max_length=255, description="库位名称")]
    description: Annotated[Optional[str], Field(default=None, description="说明（可选）")] = None

    @field_validator("name", "description", mode="before")
    @classmethod
    def _trim_text(cls, v):
        return v.strip() if isinstance(v, str) else v

    model_config = _Base.model_config | {
        "json_schema_extra": {"example": {"name": "Shelf A-3", "description": "garage, left wall"}}
    }


class LocationOut(_Base):
    id: int
    name: str
    barcode: str
    description: Optional[str] = None
    created_at: Optional[UtcDatetime] = None


class LocationItemOut(_Base):
    item: ItemBrief
    quantity: int
    added_at: Optional[UtcDatetime] = None


class LocationDetailOut(LocationOut):
    total_items: int
    inventory_items: List[LocationItemOut] = Field(default_factory=list)


# ========= 分类（Category） =========
class CategoryCreate(_Base):
    name: Annotated[str, Field(min_length=1, max_length=128)]
    # 长度上限由服务层校验（ValidationFailed → 422）
    description: Annotated[Optional[str], Field(default=None)] = None

    @field_validator("name", "description", mode="before")
    @classmethod
    def _trim_text(cls, v):
        return v.strip() if isinstance(v, str) else v


class CategoryOut(_Base):
    id: int
    name: str
    description: Optional[str] = None


__all__ = [
    "LocationCreate",
    "LocationOut",
    "LocationItemOut",
    "LocationDetailOut",
    "CategoryCreate",
    "CategoryOut",
]
