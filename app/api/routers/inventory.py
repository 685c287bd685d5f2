# app/api/routers/inventory.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_inventory_service, get_session
from app.models.item import Item
from app.models.location import Location
from app.models.stock_aggregate import StockAggregate
from app.models.unit import Unit
from app.schemas.common import Envelope
from app.schemas.inventory import (
    AddItemIn,
    AddItemOut,
    AgedRowOut,
    AggregateOut,
    IndividualItemOut,
    InventoryRowOut,
    MoveItemIn,
    MoveItemOut,
    OldestReportOut,
    RemovedUnitOut,
    RemoveItemIn,
    RemoveItemOut,
    ResolveOut,
    UnitOut,
)
from app.schemas.item import ItemBrief, LocationBrief
from app.services.barcode_pool import is_legacy_barcode
from app.services.inventory_errors import NotFound
from app.services.inventory_query import aggregate_units, oldest_report, search_inventory
from app.services.inventory_service import InventoryService
from app.services.stock_aggregate_service import RemovalPolicy
from app.services.uow import UnitOfWork

router = APIRouter(prefix="/api/v1", tags=["inventory"])


def _unit_out(unit: Unit, item: Item) -> IndividualItemOut:
    return IndividualItemOut(
        individual_barcode=unit.barcode,
        is_legacy_barcode=is_legacy_barcode(unit.barcode, item.barcode),
        sequence_number=unit.sequence_number,
        added_at=unit.added_at,
    )


def _row_out(agg: StockAggregate) -> InventoryRowOut:
    return InventoryRowOut(
        id=agg.id,
        item=ItemBrief.model_validate(agg.item),
        location=LocationBrief.model_validate(agg.location),
        quantity=agg.quantity,
        added_at=agg.added_at,
    )


# ---------------------------------------------------------
# 1) 放入 / 取出 / 移库
# ---------------------------------------------------------
@router.post("/add-item", response_model=Envelope[AddItemOut])
async def add_item(
    body: AddItemIn,
    session: AsyncSession = Depends(get_session),
    svc: InventoryService = Depends(get_inventory_service),
):
    async with UnitOfWork(session):
        res = await svc.add_unit(
            session,
            item_code=body.item_barcode,
            location_barcode=body.location_barcode,
            added_at=body.added_at,
            notes=body.notes,
        )
        unit_out = _unit_out(res.unit, res.item)
        data = AddItemOut(
            inventory_item=AggregateOut.model_validate(res.aggregate),
            individual_item=unit_out,
            location=LocationBrief.model_validate(res.location),
            item=ItemBrief.model_validate(res.item),
        )

    message = (
        "Item added successfully"
        if unit_out.is_legacy_barcode
        else f"Item added successfully. Individual barcode: {unit_out.individual_barcode}"
    )
    return Envelope(data=data, message=message)


@router.post("/remove-item", response_model=Envelope[RemoveItemOut])
async def remove_item(
    body: RemoveItemIn,
    session: AsyncSession = Depends(get_session),
    svc: InventoryService = Depends(get_inventory_service),
):
    async with UnitOfWork(session):
        res = await svc.remove_unit(
            session,
            location_barcode=body.location_barcode,
            item_code=body.item_barcode,
            policy=RemovalPolicy(body.policy),
            unit_barcode=body.unit_barcode or None,
        )
        item = await session.get(Item, res.item_id)
        location = await session.get(Location, res.location_id)
        remainder: Optional[StockAggregate] = None
        if not res.completely_removed:
            remainder = await session.get(StockAggregate, res.aggregate_id)

        data = RemoveItemOut(
            completely_removed=res.completely_removed,
            inventory_item=AggregateOut.model_validate(remainder) if remainder is not None else None,
            removed_individual_item=RemovedUnitOut(
                individual_barcode=res.unit_barcode,
                sequence_number=res.sequence_number,
                was_legacy_barcode=res.was_legacy_barcode,
                added_at=res.added_at,
                storage_days=round(res.storage_days, 1),
                policy=res.policy.value,
            ),
            location=LocationBrief.model_validate(location),
            item=ItemBrief.model_validate(item),
        )

    message = "Item completely removed from location" if res.completely_removed else "Item removed successfully"
    return Envelope(data=data, message=message)


@router.post("/move-item", response_model=Envelope[MoveItemOut])
async def move_item(
    body: MoveItemIn,
    session: AsyncSession = Depends(get_session),
    svc: InventoryService = Depends(get_inventory_service),
):
    async with UnitOfWork(session):
        res = await svc.move_unit(
            session,
            unit_barcode=body.unit_barcode,
            to_location_barcode=body.to_location_barcode,
        )
        dest = res.destination_aggregate
        from_location = await session.get(Location, res.removal.location_id)
        data = MoveItemOut(
            moved_item=_unit_out(res.unit, dest.item),
            source_inventory_item=(
                AggregateOut.model_validate(res.source_aggregate) if res.source_aggregate is not None else None
            ),
            destination_inventory_item=AggregateOut.model_validate(dest),
            from_location=LocationBrief.model_validate(from_location),
            to_location=LocationBrief.model_validate(dest.location),
            item=ItemBrief.model_validate(dest.item),
        )
    return Envelope(data=data, message="Item moved successfully")


# ---------------------------------------------------------
# 2) 扫码解析（会登记老标签 / legacy 条码）
# ---------------------------------------------------------
@router.get("/resolve/{code}", response_model=Envelope[ResolveOut])
async def resolve_code(
    code: str,
    session: AsyncSession = Depends(get_session),
    svc: InventoryService = Depends(get_inventory_service),
):
    async with UnitOfWork(session):
        res = await svc.resolve_barcode(session, code)
        if res is None:
            raise NotFound(f"barcode {code!r} did not resolve to an item", context={"code": code})
        data = ResolveOut(
            item=ItemBrief.model_validate(res.item),
            matched_by=res.matched_by,
            pool_barcode=res.pool_barcode.barcode if res.pool_barcode is not None else None,
            pool_barcode_in_use=res.pool_barcode.in_use if res.pool_barcode is not None else None,
        )
    return Envelope(data=data)


# ---------------------------------------------------------
# 3) 查询
# ---------------------------------------------------------
@router.get("/inventory/search", response_model=Envelope[List[InventoryRowOut]])
async def search(
    q: Optional[str] = Query(None, description="商品名 / 商品条码 / 库位名，不区分大小写"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
):
    rows = await search_inventory(session, q, limit=limit, offset=offset)
    return Envelope(data=[_row_out(a) for a in rows])


@router.get("/inventory/oldest", response_model=Envelope[OldestReportOut])
async def oldest(
    limit: int = Query(50, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
):
    report = await oldest_report(session, limit=limit)
    data = OldestReportOut(
        warning_days=report.warning_days,
        danger_days=report.danger_days,
        older_than_warning=report.older_than_warning,
        older_than_danger=report.older_than_danger,
        rows=[
            AgedRowOut(
                **_row_out(r.aggregate).model_dump(),
                storage_days=round(r.storage_days, 1) if r.storage_days is not None else None,
                aging=r.aging,
            )
            for r in report.rows
        ],
    )
    return Envelope(data=data)


@router.get("/inventory/aggregates/{aggregate_id}/units", response_model=Envelope[List[UnitOut]])
async def list_units(
    aggregate_id: int,
    session: AsyncSession = Depends(get_session),
):
    views = await aggregate_units(session, aggregate_id)
    return Envelope(
        data=[
            UnitOut(
                id=v.unit.id,
                barcode=v.barcode,
                sequence_number=v.sequence_number,
                added_at=v.added_at,
                storage_days=round(v.storage_days, 1),
                notes=v.unit.notes,
            )
            for v in views
        ]
    )
