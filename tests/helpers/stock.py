# tests/helpers/stock.py
from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.item import Item
from app.models.location import Location
from app.models.pool_barcode import PoolBarcode
from app.models.stock_aggregate import StockAggregate
from app.models.unit import Unit
from app.services.catalog_service import create_item, create_location
from app.utils.time import utc_now

__all__ = [
    "make_item",
    "make_location",
    "days_ago",
    "unit_barcodes",
    "aggregate_of",
    "pool_barcodes_of",
    "count_units",
]


async def make_item(session: AsyncSession, name: str = "Widget", **kw) -> Item:
    item = await create_item(session, name=name, **kw)
    await session.commit()
    return item


async def make_location(session: AsyncSession, name: str = "Shelf A") -> Location:
    loc = await create_location(session, name=name)
    await session.commit()
    return loc


def days_ago(days: float, now: Optional[datetime] = None) -> datetime:
    return (now or utc_now()) - timedelta(days=days)


async def unit_barcodes(session: AsyncSession, item_id: int, location_id: Optional[int] = None) -> List[str]:
    stmt = (
        select(PoolBarcode.barcode)
        .join(Unit, Unit.pool_barcode_id == PoolBarcode.id)
        .where(Unit.item_id == int(item_id))
        .order_by(Unit.added_at, Unit.id)
    )
    if location_id is not None:
        stmt = stmt.where(Unit.location_id == int(location_id))
    return list((await session.execute(stmt)).scalars().all())


async def aggregate_of(session: AsyncSession, item_id: int, location_id: int) -> Optional[StockAggregate]:
    row = await session.execute(
        select(StockAggregate)
        .where(StockAggregate.item_id == int(item_id))
        .where(StockAggregate.location_id == int(location_id))
        .execution_options(populate_existing=True)
    )
    return row.scalars().first()


async def pool_barcodes_of(session: AsyncSession, item_id: int) -> List[PoolBarcode]:
    row = await session.execute(
        select(PoolBarcode)
        .where(PoolBarcode.item_id == int(item_id))
        .order_by(PoolBarcode.id)
        .execution_options(populate_existing=True)
    )
    return list(row.scalars().all())


async def count_units(session: AsyncSession, item_id: int) -> int:
    row = await session.execute(select(func.count(Unit.id)).where(Unit.item_id == int(item_id)))
    return int(row.scalar_one())
