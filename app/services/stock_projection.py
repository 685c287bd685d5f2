# app/services/stock_projection.py
from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.item import Item
from app.models.stock_aggregate import StockAggregate
from app.models.unit import Unit

log = logging.getLogger("stockunits.aggregates")


async def count_item_units(session: AsyncSession, item_id: int) -> int:
    """按桶汇总该 item 的在库单件数。"""
    row = await session.execute(
        select(func.count(Unit.id))
        .select_from(Unit)
        .join(StockAggregate, StockAggregate.id == Unit.aggregate_id)
        .where(StockAggregate.item_id == int(item_id))
    )
    return int(row.scalar_one())


async def recompute_item_total(session: AsyncSession, item: Item) -> int:
    """total_quantity 整数重算（不做增量加减，避免漂移）。"""
    total = await count_item_units(session, item.id)
    if item.total_quantity != total:
        item.total_quantity = total
        await session.flush()
    return total


async def recompute_aggregate(
    session: AsyncSession,
    aggregate: StockAggregate,
    *,
    delete_if_empty: bool = True,
) -> int:
    """
    重算桶的 quantity / added_at（= 在库单件数 / 最早 added_at），返回在库件数。
    件数为 0 时同步删除该桶。
    """
    row = await session.execute(
        select(func.count(Unit.id), func.min(Unit.added_at)).where(Unit.aggregate_id == aggregate.id)
    )
    quantity, oldest = row.one()
    quantity = int(quantity or 0)

    if quantity == 0:
        if delete_if_empty:
            log.info("aggregate emptied, deleting id=%s item=%s loc=%s", aggregate.id, aggregate.item_id, aggregate.location_id)
            await session.delete(aggregate)
            await session.flush()
        return 0

    aggregate.quantity = quantity
    aggregate.added_at = oldest
    await session.flush()
    return quantity


async def count_location_units(session: AsyncSession, location_id: int) -> int:
    row = await session.execute(select(func.count(Unit.id)).where(Unit.location_id == int(location_id)))
    return int(row.scalar_one())
