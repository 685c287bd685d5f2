# app/services/catalog_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.tx import run_with_conflict_retry
from app.models.category import Category
from app.models.item import Item
from app.models.location import Location
from app.models.stock_aggregate import StockAggregate
from app.services.identifiers import generate_item_barcode, generate_location_barcode
from app.services.inventory_errors import NotFound, ValidationFailed
from app.services.inventory_query import check_paging
from app.services.stock_projection import count_location_units

log = logging.getLogger("stockunits.catalog")

CATEGORY_DESCRIPTION_MAX = 500


@dataclass
class LocationStock:
    location: Location
    quantity: int
    added_at: Optional[datetime]


@dataclass
class ItemDetail:
    item: Item
    total_quantity: int
    locations: List[LocationStock] = field(default_factory=list)


@dataclass
class ItemStock:
    item: Item
    quantity: int
    added_at: Optional[datetime]


@dataclass
class LocationDetail:
    location: Location
    total_items: int
    items: List[ItemStock] = field(default_factory=list)


def _require_name(name: Optional[str], what: str) -> str:
    v = (name or "").strip()
    if not v:
        raise ValidationFailed(f"{what} name is required", rule="name_required", context={"entity": what})
    return v


def _clean(v: Optional[str]) -> Optional[str]:
    v = (v or "").strip()
    return v or None


# ---------------------------------------------------------------------- #
# 写：分类 / 商品 / 库位
# ---------------------------------------------------------------------- #
async def create_category(session: AsyncSession, *, name: str, description: Optional[str] = None) -> Category:
    name = _require_name(name, "category")
    description = _clean(description)
    if description and len(description) > CATEGORY_DESCRIPTION_MAX:
        raise ValidationFailed(
            f"category description must be at most {CATEGORY_DESCRIPTION_MAX} characters",
            rule="description_too_long",
            context={"length": len(description)},
        )

    exists = await session.execute(select(Category.id).where(Category.name == name))
    if exists.scalar_one_or_none() is not None:
        raise ValidationFailed(f"category {name!r} already exists", rule="category_name_taken", context={"name": name})

    cat = Category(name=name, description=description)
    session.add(cat)
    await session.flush()
    log.info("category created id=%s name=%s", cat.id, name)
    return cat


async def create_item(
    session: AsyncSession,
    *,
    name: str,
    description: Optional[str] = None,
    category_id: Optional[int] = None,
) -> Item:
    name = _require_name(name, "item")
    category: Optional[Category] = None
    if category_id is not None:
        category = await session.get(Category, int(category_id))
        if category is None:
            raise NotFound(f"category {category_id} not found", context={"category_id": category_id})

    async def _insert() -> Item:
        item = Item(
            barcode=await generate_item_barcode(session),
            name=name,
            description=_clean(description),
            category_id=category.id if category else None,
            category=category,
            total_quantity=0,
        )
        session.add(item)
        await session.flush()
        return item

    item = await run_with_conflict_retry(session, _insert, op="item.create")
    log.info("item created id=%s barcode=%s", item.id, item.barcode)
    return item


async def create_location(session: AsyncSession, *, name: str, description: Optional[str] = None) -> Location:
    name = _require_name(name, "location")

    async def _insert() -> Location:
        loc = Location(
            barcode=await generate_location_barcode(session),
            name=name,
            description=_clean(description),
        )
        session.add(loc)
        await session.flush()
        return loc

    loc = await run_with_conflict_retry(session, _insert, op="location.create")
    log.info("location created id=%s barcode=%s", loc.id, loc.barcode)
    return loc


# ---------------------------------------------------------------------- #
# 读：详情
# ---------------------------------------------------------------------- #
async def item_detail(session: AsyncSession, item: Item) -> ItemDetail:
    """库位分布按 added_at 最早在前；added_at 为空（老数据）排最后。"""
    rows = await session.execute(
        select(StockAggregate)
        .where(StockAggregate.item_id == item.id)
        .order_by(StockAggregate.added_at.is_(None), StockAggregate.added_at.asc(), StockAggregate.id.asc())
    )
    return ItemDetail(
        item=item,
        total_quantity=int(item.total_quantity or 0),
        locations=[
            LocationStock(location=agg.location, quantity=agg.quantity, added_at=agg.added_at)
            for agg in rows.scalars().all()
        ],
    )


async def location_detail(session: AsyncSession, barcode: str) -> LocationDetail:
    row = await session.execute(select(Location).where(Location.barcode == (barcode or "").strip()))
    loc = row.scalars().first()
    if loc is None:
        raise NotFound(f"location {barcode!r} not found", context={"location_barcode": barcode})

    rows = await session.execute(
        select(StockAggregate)
        .where(StockAggregate.location_id == loc.id)
        .order_by(StockAggregate.added_at.is_(None), StockAggregate.added_at.asc(), StockAggregate.id.asc())
    )
    return LocationDetail(
        location=loc,
        total_items=await count_location_units(session, loc.id),
        items=[
            ItemStock(item=agg.item, quantity=agg.quantity, added_at=agg.added_at)
            for agg in rows.scalars().all()
        ],
    )


# ---------------------------------------------------------------------- #
# 读：列表 / 搜索（按名称排序，分页）
# ---------------------------------------------------------------------- #
def _name_or_barcode(stmt, model, q: Optional[str]):
    term = (q or "").strip()
    if not term:
        return stmt
    like = f"%{term.lower()}%"
    return stmt.where(or_(func.lower(model.name).like(like), func.lower(model.barcode).like(like)))


async def list_items(
    session: AsyncSession,
    q: Optional[str] = None,
    *,
    limit: int = 50,
    offset: int = 0,
) -> List[Item]:
    """q 为空时列全部；否则按商品名 / 条码做不区分大小写的子串匹配。"""
    check_paging(limit, offset)
    stmt = _name_or_barcode(select(Item), Item, q)
    stmt = stmt.order_by(Item.name.asc(), Item.id.asc()).limit(limit).offset(offset)
    return list((await session.execute(stmt)).scalars().all())


async def list_locations(
    session: AsyncSession,
    q: Optional[str] = None,
    *,
    limit: int = 50,
    offset: int = 0,
) -> List[Location]:
    check_paging(limit, offset)
    stmt = _name_or_barcode(select(Location), Location, q)
    stmt = stmt.order_by(Location.name.asc(), Location.id.asc()).limit(limit).offset(offset)
    return list((await session.execute(stmt)).scalars().all())
