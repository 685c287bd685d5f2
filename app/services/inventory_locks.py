# app/services/inventory_locks.py
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.tx import run_with_conflict_retry
from app.models.item import Item
from app.models.stock_aggregate import StockAggregate
from app.services.inventory_errors import NotFound


async def lock_item(session: AsyncSession, item_id: int) -> Item:
    """
    锁 Item 行（SELECT ... FOR UPDATE）。

    加锁顺序约定：Item → StockAggregate → 池条码 → 计数器。
    同一 item 的所有写操作在这把锁上串行，total_quantity 的整数重算因此不会丢更新。
    """

    async def _lock() -> Item:
        row = await session.execute(
            select(Item)
            .where(Item.id == int(item_id))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        item = row.scalar_one_or_none()
        if item is None:
            raise NotFound(f"item {item_id} not found", context={"item_id": item_id})
        return item

    return await run_with_conflict_retry(session, _lock, op="item.lock", retry_on_integrity=False)


async def lock_aggregate(session: AsyncSession, aggregate_id: int) -> StockAggregate:
    """锁桶行并刷新 quantity / added_at；放入、取出、移库都在 lock_item 之后调用。"""
    row = await session.execute(
        select(StockAggregate)
        .where(StockAggregate.id == int(aggregate_id))
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    agg = row.scalar_one_or_none()
    if agg is None:
        raise NotFound(f"stock aggregate {aggregate_id} not found", context={"aggregate_id": aggregate_id})
    return agg
