# app/services/inventory_service.py
"""
库存写入口（API / 脚本只调这里）

    add_unit      扫码 + 库位 → 放入一件
    remove_unit   扫码 + 库位 → 按 FIFO / LIFO / 指定单件取走一件
    move_unit     单件条码 + 目标库位 → 移库（保留 added_at）
    resolve_barcode / pool_stats / ensure_pool_size

每个写操作都：
  1) PG 上设置本事务 lock_timeout
  2) 加锁顺序：Item 行 → 桶行 → 池条码（SKIP LOCKED）→ 计数器
  3) 不控事务：commit / rollback 交给外层 UnitOfWork
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import AppSettings, get_settings
from app.core.tx import set_local_lock_timeout
from app.models.item import Item
from app.models.location import Location
from app.models.pool_barcode import PoolBarcode
from app.models.stock_aggregate import StockAggregate
from app.models.unit import Unit
from app.services.barcode_pool import BarcodePool, PoolStats
from app.services.barcode_resolver import MATCH_POOL, BarcodeResolver, Resolution
from app.services.inventory_errors import NotFound
from app.services.inventory_locks import lock_item
from app.services.stock_aggregate_service import MoveResult, RemovalPolicy, RemovalResult, StockAggregateService
from app.services.unit_lifecycle import UnitLifecycle

log = logging.getLogger("stockunits.inventory")


@dataclass
class AddResult:
    unit: Unit
    aggregate: StockAggregate
    item: Item
    location: Location


async def get_location_by_barcode(session: AsyncSession, barcode: str) -> Location:
    row = await session.execute(select(Location).where(Location.barcode == (barcode or "").strip()))
    loc = row.scalars().first()
    if loc is None:
        raise NotFound(f"location {barcode!r} not found", context={"location_barcode": barcode})
    return loc


async def get_item_by_barcode(session: AsyncSession, barcode: str) -> Item:
    row = await session.execute(select(Item).where(Item.barcode == (barcode or "").strip()))
    item = row.scalars().first()
    if item is None:
        raise NotFound(f"item {barcode!r} not found", context={"item_barcode": barcode})
    return item


async def find_unit_by_barcode(session: AsyncSession, barcode: str) -> Optional[Unit]:
    row = await session.execute(
        select(Unit)
        .join(PoolBarcode, PoolBarcode.id == Unit.pool_barcode_id)
        .where(PoolBarcode.barcode == (barcode or "").strip())
        .execution_options(populate_existing=True)
    )
    return row.scalars().first()


class InventoryService:
    def __init__(self, settings: Optional[AppSettings] = None) -> None:
        self.settings = settings or get_settings()
        self.pool = BarcodePool()
        self.resolver = BarcodeResolver(self.pool)
        self.aggregates = StockAggregateService(UnitLifecycle(self.pool))

    async def _begin_write(self, session: AsyncSession) -> None:
        await set_local_lock_timeout(session, self.settings.LOCK_TIMEOUT_MS)

    async def _resolve_item(self, session: AsyncSession, code: str) -> Resolution:
        # 放入/取出时扫到的老标签顺带登记进池；legacy 条码只在显式解析时登记
        res = await self.resolver.resolve_and_register(session, code, materialize_legacy=False)
        if res is None:
            raise NotFound(f"barcode {code!r} did not resolve to an item", context={"code": code})
        return res

    # ------------------------------------------------------------------ #
    # 放入
    # ------------------------------------------------------------------ #
    async def add_unit(
        self,
        session: AsyncSession,
        *,
        item_code: str,
        location_barcode: str,
        added_at: Optional[datetime] = None,
        notes: Optional[str] = None,
    ) -> AddResult:
        await self._begin_write(session)
        res = await self._resolve_item(session, item_code)
        location = await get_location_by_barcode(session, location_barcode)
        item = await lock_item(session, res.item.id)

        # 扫到的是空闲池条码（含刚登记的老标签）：实物上贴的就是它，优先绑定
        prefer_id = None
        if res.pool_barcode is not None and not res.pool_barcode.in_use:
            prefer_id = res.pool_barcode.id

        # 新建的桶与单件同进同退：create 失败时不留空桶
        async with session.begin_nested():
            aggregate = await self.aggregates.find_or_create(session, item, location)
            unit = await self.aggregates.add_unit(
                session,
                item=item,
                location=location,
                aggregate=aggregate,
                explicit_added_at=added_at,
                prefer_barcode_id=prefer_id,
                notes=notes,
            )
        return AddResult(unit=unit, aggregate=aggregate, item=item, location=location)

    # ------------------------------------------------------------------ #
    # 取出
    # ------------------------------------------------------------------ #
    async def remove_unit(
        self,
        session: AsyncSession,
        *,
        location_barcode: str,
        item_code: str,
        policy: RemovalPolicy = RemovalPolicy.FIFO,
        unit_barcode: Optional[str] = None,
    ) -> RemovalResult:
        """
        取走一件。寻址优先级：
          - 显式 unit_barcode → 按指定单件取
          - item_code 本身是在用的单件条码、且该件就在此库位 → 按指定单件取
          - 否则按 policy（FIFO / LIFO）
        """
        await self._begin_write(session)
        res = await self._resolve_item(session, item_code)
        location = await get_location_by_barcode(session, location_barcode)
        item = await lock_item(session, res.item.id)

        aggregate = await self.aggregates.find(session, item.id, location.id)
        if aggregate is None:
            raise NotFound(
                "item not found in this location",
                context={"item_barcode": item.barcode, "location_barcode": location.barcode},
            )

        target: Optional[Unit] = None
        if unit_barcode:
            target = await find_unit_by_barcode(session, unit_barcode)
            if target is None or target.aggregate_id != aggregate.id:
                raise NotFound(
                    f"unit {unit_barcode!r} not found in this location",
                    context={"unit_barcode": unit_barcode, "location_barcode": location.barcode},
                )
        elif res.matched_by == MATCH_POOL and res.pool_barcode is not None and res.pool_barcode.in_use:
            scanned = await find_unit_by_barcode(session, res.pool_barcode.barcode)
            if scanned is not None and scanned.aggregate_id == aggregate.id:
                target = scanned

        return await self.aggregates.remove_unit(session, aggregate, policy=policy, target=target)

    # ------------------------------------------------------------------ #
    # 移库
    # ------------------------------------------------------------------ #
    async def move_unit(
        self,
        session: AsyncSession,
        *,
        unit_barcode: str,
        to_location_barcode: str,
    ) -> MoveResult:
        await self._begin_write(session)
        unit = await find_unit_by_barcode(session, unit_barcode)
        if unit is None:
            raise NotFound(f"unit {unit_barcode!r} not found in stock", context={"unit_barcode": unit_barcode})
        to_location = await get_location_by_barcode(session, to_location_barcode)

        await lock_item(session, unit.item_id)
        # 锁内重读：等锁期间单件可能已被别人取走 / 移走
        unit = await find_unit_by_barcode(session, unit_barcode)
        if unit is None:
            raise NotFound(f"unit {unit_barcode!r} not found in stock", context={"unit_barcode": unit_barcode})

        return await self.aggregates.move(session, unit, to_location)

    # ------------------------------------------------------------------ #
    # 解析 / 条码池
    # ------------------------------------------------------------------ #
    async def resolve_barcode(self, session: AsyncSession, code: str) -> Optional[Resolution]:
        await self._begin_write(session)
        return await self.resolver.resolve_and_register(session, code)

    async def pool_stats(self, session: AsyncSession, item_barcode: str) -> PoolStats:
        item = await get_item_by_barcode(session, item_barcode)
        return await self.pool.stats(session, item.id)

    async def ensure_pool_size(
        self,
        session: AsyncSession,
        item_barcode: str,
        target: Optional[int] = None,
    ) -> int:
        await self._begin_write(session)
        found = await get_item_by_barcode(session, item_barcode)
        item = await lock_item(session, found.id)
        size = self.settings.POOL_PREWARM_DEFAULT if target is None else int(target)
        return await self.pool.ensure_minimum_size(session, item, size)
