# app/services/barcode_resolver.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.item import Item
from app.models.pool_barcode import PoolBarcode
from app.services.barcode_pool import GENERATED_BARCODE_RE, BarcodePool
from app.services.inventory_locks import lock_item

log = logging.getLogger("stockunits.resolver")

MATCH_ITEM = "item_barcode"
MATCH_POOL = "pool_barcode"
MATCH_PATTERN = "generated_pattern"


@dataclass
class Resolution:
    item: Item
    matched_by: str
    pool_barcode: Optional[PoolBarcode] = None


class BarcodeResolver:
    """
    扫码 → Item，按优先级命中即停：
      1) Item 自身条码
      2) 已登记的池条码
      3) "<前缀>-NNNNN" 形态：前缀是某个 Item 的条码
      4) 都不中 → None

    lookup() 只读；resolve_and_register() 会把扫到的老标签登记进池，
    并在需要时登记 legacy 条码（有副作用，只在写事务里调用）。
    """

    def __init__(self, pool: Optional[BarcodePool] = None) -> None:
        self.pool = pool or BarcodePool()

    @staticmethod
    async def _item_by_barcode(session: AsyncSession, barcode: str) -> Optional[Item]:
        row = await session.execute(select(Item).where(Item.barcode == barcode))
        return row.scalars().first()

    @staticmethod
    async def _item_by_id(session: AsyncSession, item_id: int) -> Optional[Item]:
        row = await session.execute(select(Item).where(Item.id == int(item_id)))
        return row.scalars().first()

    async def lookup(self, session: AsyncSession, code: str) -> Optional[Resolution]:
        code = (code or "").strip()
        if not code:
            return None

        item = await self._item_by_barcode(session, code)
        if item is not None:
            return Resolution(item=item, matched_by=MATCH_ITEM)

        pb = await self.pool.find_by_barcode(session, code)
        if pb is not None:
            owner = await self._item_by_id(session, pb.item_id)
            if owner is not None:
                return Resolution(item=owner, matched_by=MATCH_POOL, pool_barcode=pb)

        m = GENERATED_BARCODE_RE.match(code)
        if m:
            item = await self._item_by_barcode(session, m.group("prefix"))
            if item is not None:
                return Resolution(item=item, matched_by=MATCH_PATTERN)
        return None

    async def resolve_and_register(
        self,
        session: AsyncSession,
        code: str,
        *,
        materialize_legacy: bool = True,
    ) -> Optional[Resolution]:
        """
        与 lookup 同序解析；命中第 3 步时把扫到的字符串登记为空闲池条码
        （之后绑定单件时才置 in_use）。materialize_legacy=True 时，
        命中第 1 步也会把 item 自身条码登记进池（序号 1）。
        写池前先锁 Item 行，与其它写操作保持同一加锁顺序。
        """
        res = await self.lookup(session, code)
        if res is None:
            return None

        if res.matched_by == MATCH_ITEM and materialize_legacy:
            item = await lock_item(session, res.item.id)
            res.pool_barcode = await self.pool.ensure_legacy(session, item)
        elif res.matched_by == MATCH_PATTERN:
            seq = int(GENERATED_BARCODE_RE.match(code.strip()).group("seq"))
            item = await lock_item(session, res.item.id)
            res.pool_barcode = await self.pool.register_scanned(session, item, code.strip(), seq)
            if res.pool_barcode is None:
                log.warning("scanned label not registered item=%s code=%s", item.barcode, code)
        return res
