# app/services/inventory_query.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import AppSettings, get_settings
from app.models.item import Item
from app.models.location import Location
from app.models.stock_aggregate import StockAggregate
from app.models.unit import Unit
from app.services.inventory_errors import NotFound, ValidationFailed
from app.utils.time import as_utc, storage_days, utc_now

AGING_FRESH = "fresh"
AGING_WARNING = "warning"
AGING_DANGER = "danger"


@dataclass
class AgedAggregate:
    aggregate: StockAggregate
    storage_days: Optional[float]
    aging: str


@dataclass
class OldestReport:
    rows: List[AgedAggregate] = field(default_factory=list)
    warning_days: int = 0
    danger_days: int = 0
    older_than_warning: int = 0
    older_than_danger: int = 0


@dataclass
class UnitView:
    unit: Unit
    barcode: str
    sequence_number: int
    added_at: datetime
    storage_days: float


def aging_label(days: Optional[float], settings: AppSettings) -> str:
    if days is None:
        return AGING_FRESH
    if days >= settings.AGING_DANGER_DAYS:
        return AGING_DANGER
    if days >= settings.AGING_WARNING_DAYS:
        return AGING_WARNING
    return AGING_FRESH


def check_paging(limit: int, offset: int) -> None:
    if limit < 1 or limit > 500:
        raise ValidationFailed("limit must be between 1 and 500", rule="limit_range", context={"limit": limit})
    if offset < 0:
        raise ValidationFailed("offset must be >= 0", rule="offset_non_negative", context={"offset": offset})


async def search_inventory(
    session: AsyncSession,
    q: Optional[str] = None,
    *,
    limit: int = 50,
    offset: int = 0,
) -> List[StockAggregate]:
    """商品名 / 商品条码 / 库位名 不区分大小写的子串匹配；最新入库在前。"""
    check_paging(limit, offset)
    stmt = (
        select(StockAggregate)
        .join(Item, Item.id == StockAggregate.item_id)
        .join(Location, Location.id == StockAggregate.location_id)
    )
    term = (q or "").strip()
    if term:
        like = f"%{term.lower()}%"
        stmt = stmt.where(
            or_(
                func.lower(Item.name).like(like),
                func.lower(Item.barcode).like(like),
                func.lower(Location.name).like(like),
            )
        )
    stmt = stmt.order_by(StockAggregate.added_at.desc(), StockAggregate.id.desc()).limit(limit).offset(offset)
    return list((await session.execute(stmt)).scalars().all())


async def oldest_report(
    session: AsyncSession,
    *,
    limit: int = 50,
    settings: Optional[AppSettings] = None,
    now: Optional[datetime] = None,
) -> OldestReport:
    check_paging(limit, 0)
    cfg = settings or get_settings()
    ref = as_utc(now) if now is not None else utc_now()

    rows = await session.execute(
        select(StockAggregate)
        .where(StockAggregate.added_at.is_not(None))
        .order_by(StockAggregate.added_at.asc(), StockAggregate.id.asc())
        .limit(limit)
    )
    report = OldestReport(warning_days=cfg.AGING_WARNING_DAYS, danger_days=cfg.AGING_DANGER_DAYS)
    for agg in rows.scalars().all():
        days = storage_days(agg.added_at, ref)
        report.rows.append(AgedAggregate(aggregate=agg, storage_days=days, aging=aging_label(days, cfg)))

    async def _older_than(days: int) -> int:
        cutoff = ref - timedelta(days=int(days))
        cnt = await session.execute(select(func.count(StockAggregate.id)).where(StockAggregate.added_at <= cutoff))
        return int(cnt.scalar_one())

    report.older_than_warning = await _older_than(cfg.AGING_WARNING_DAYS)
    report.older_than_danger = await _older_than(cfg.AGING_DANGER_DAYS)
    return report


async def aggregate_units(session: AsyncSession, aggregate_id: int) -> List[UnitView]:
    agg = await session.get(StockAggregate, int(aggregate_id))
    if agg is None:
        raise NotFound(f"stock aggregate {aggregate_id} not found", context={"aggregate_id": aggregate_id})
    rows = await session.execute(
        select(Unit).where(Unit.aggregate_id == agg.id).order_by(Unit.added_at.asc(), Unit.id.asc())
    )
    ref = utc_now()
    return [
        UnitView(
            unit=u,
            barcode=u.barcode,
            sequence_number=u.sequence_number,
            added_at=as_utc(u.added_at),
            storage_days=storage_days(u.added_at, ref),
        )
        for u in rows.scalars().all()
    ]


async def database_counts(session: AsyncSession) -> Dict[str, Any]:
    async def _count(model) -> int:
        return int((await session.execute(select(func.count(model.id)))).scalar_one())

    return {
        "locations_count": await _count(Location),
        "items_count": await _count(Item),
        "aggregates_count": await _count(StockAggregate),
        "units_count": await _count(Unit),
    }
