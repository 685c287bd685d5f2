# app/schemas/inventory.py
from __future__ import annotations

from typing import Annotated, List, Literal, Optional

from pydantic import Field, field_validator

from app.schemas.common import UtcDatetime, _Base
from app.schemas.item import ItemBrief, LocationBrief


# ========= 入参 =========
class AddItemIn(_Base):
    item_barcode: Annotated[str, Field(min_length=1, description="商品条码 / 单件条码 / 老标签")]
    location_barcode: Annotated[str, Field(min_length=1)]
    added_at: Optional[UtcDatetime] = None
    notes: Optional[str] = None

    @field_validator("item_barcode", "location_barcode", mode="before")
    @classmethod
    def _trim_text(cls, v):
        return v.strip() if isinstance(v, str) else v


class RemoveItemIn(_Base):
    item_barcode: Annotated[str, Field(min_length=1)]
    location_barcode: Annotated[str, Field(min_length=1)]
    policy: Literal["fifo", "lifo"] = "fifo"
    unit_barcode: Optional[str] = None

    @field_validator("item_barcode", "location_barcode", "unit_barcode", mode="before")
    @classmethod
    def _trim_text(cls, v):
        return v.strip() if isinstance(v, str) else v


class MoveItemIn(_Base):
    unit_barcode: Annotated[str, Field(min_length=1)]
    to_location_barcode: Annotated[str, Field(min_length=1)]

    @field_validator("unit_barcode", "to_location_barcode", mode="before")
    @classmethod
    def _trim_text(cls, v):
        return v.strip() if isinstance(v, str) else v


# ========= 输出 =========
class AggregateOut(_Base):
    id: int
    quantity: int
    added_at: Optional[UtcDatetime] = None


class IndividualItemOut(_Base):
    individual_barcode: str
    is_legacy_barcode: bool
    sequence_number: int
    added_at: UtcDatetime


class AddItemOut(_Base):
    inventory_item: AggregateOut
    individual_item: IndividualItemOut
    location: LocationBrief
    item: ItemBrief


class RemovedUnitOut(_Base):
    individual_barcode: str
    sequence_number: int
    was_legacy_barcode: bool
    added_at: UtcDatetime
    storage_days: float
    policy: str


class RemoveItemOut(_Base):
    completely_removed: bool
    removed_quantity: int = 1
    inventory_item: Optional[AggregateOut] = None
    removed_individual_item: RemovedUnitOut
    location: LocationBrief
    item: ItemBrief


class MoveItemOut(_Base):
    moved_item: IndividualItemOut
    source_inventory_item: Optional[AggregateOut] = None
    destination_inventory_item: AggregateOut
    from_location: LocationBrief
    to_location: LocationBrief
    item: ItemBrief


class ResolveOut(_Base):
    item: ItemBrief
    matched_by: str
    pool_barcode: Optional[str] = None
    pool_barcode_in_use: Optional[bool] = None


# ========= 查询 =========
class InventoryRowOut(_Base):
    id: int
    item: ItemBrief
    location: LocationBrief
    quantity: int
    added_at: Optional[UtcDatetime] = None


class AgedRowOut(InventoryRowOut):
    storage_days: Optional[float] = None
    aging: str


class OldestReportOut(_Base):
    warning_days: int
    danger_days: int
    older_than_warning: int
    older_than_danger: int
    rows: List[AgedRowOut] = Field(default_factory=list)


class UnitOut(_Base):
    id: int
    barcode: str
    sequence_number: int
    added_at: UtcDatetime
    storage_days: float
    notes: Optional[str] = None


__all__ = [
    "AddItemIn",
    "RemoveItemIn",
    "MoveItemIn",
    "AggregateOut",
    "IndividualItemOut",
    "AddItemOut",
    "RemovedUnitOut",
    "RemoveItemOut",
    "MoveItemOut",
    "ResolveOut",
    "InventoryRowOut",
    "AgedRowOut",
    "OldestReportOut",
    "UnitOut",
]
