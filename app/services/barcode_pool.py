# app/services/barcode_pool.py
from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.tx import run_with_conflict_retry
from app.models.item import Item
from app.models.pool_barcode import PoolBarcode
from app.obs.metrics import consistency_violations_total, pool_minted_total, pool_reused_total
from app.services.inventory_errors import ConsistencyViolation, ValidationFailed
from app.services.sequence_counter import SequenceCounterService
from app.utils.time import utc_now

log = logging.getLogger("stockunits.pool")

# 生成条码形态：<任意前缀>-<5 位数字>
GENERATED_BARCODE_RE = re.compile(r"^(?P<prefix>.+)-(?P<seq>\d{5})$")

LEGACY_SEQUENCE = 1


def format_generated_barcode(item_barcode: str, sequence: int) -> str:
    return f"{item_barcode}-{int(sequence):05d}"


def is_legacy_barcode(barcode: str, item_barcode: str) -> bool:
    return barcode == item_barcode


def sequence_from_barcode(barcode: str, item_barcode: str) -> int:
    """legacy 条码序号为 1；生成条码取最后一段数字后缀。"""
    if is_legacy_barcode(barcode, item_barcode):
        return LEGACY_SEQUENCE
    prefix, sep, suffix = barcode.rpartition("-")
    if not sep or prefix != item_barcode or not suffix.isdigit():
        consistency_violations_total.labels("foreign_pool_barcode").inc()
        raise ConsistencyViolation(
            f"pool barcode {barcode!r} does not belong to item {item_barcode!r}",
            kind="foreign_pool_barcode",
            context={"barcode": barcode, "item_barcode": item_barcode},
        )
    return int(suffix)


@dataclass
class PoolStats:
    total: int
    in_use: int
    available: int
    utilization_percent: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class BarcodePool:
    """
    单件条码池（按 Item 分池）

    分配顺序：先复用本 item 的空闲条码，池里没有空闲时才从计数器铸新码。
    池的大小因此只会涨到该 item 历史上同时在库的最大件数，不随进出频次膨胀。
    """

    def __init__(self, counter: Optional[SequenceCounterService] = None) -> None:
        self.counter = counter or SequenceCounterService()

    # ------------------------------------------------------------------ #
    # 分配 / 释放
    # ------------------------------------------------------------------ #
    async def allocate(
        self,
        session: AsyncSession,
        item: Item,
        *,
        prefer_id: Optional[int] = None,
    ) -> PoolBarcode:
        """
        取一个条码并置为 in_use。

        - 空闲行用 FOR UPDATE SKIP LOCKED 认领：并发分配者不会拿到同一行
        - prefer_id：优先认领指定的空闲条码（移库时让实物上的标签跟着走）
        - 整个认领/铸码在一个 SAVEPOINT 内，撞唯一约束或锁超时重跑一次
        """

        async def _claim() -> PoolBarcode:
            now = utc_now()
            pb: Optional[PoolBarcode] = None

            if prefer_id is not None:
                pb = await self._pick_available(session, item.id, only_id=prefer_id)
            if pb is None:
                pb = await self._pick_available(session, item.id)

            if pb is not None:
                pb.in_use = True
                pb.last_used_at = now
                await session.flush()
                pool_reused_total.inc()
                log.debug("pool reuse item=%s barcode=%s", item.barcode, pb.barcode)
                return pb

            seq = await self.counter.next_value(session, item.id)
            pb = PoolBarcode(
                item_id=item.id,
                barcode=format_generated_barcode(item.barcode, seq),
                in_use=True,
                last_used_at=now,
            )
            session.add(pb)
            await session.flush()
            pool_minted_total.inc()
            log.info("pool mint item=%s barcode=%s", item.barcode, pb.barcode)
            return pb

        return await run_with_conflict_retry(session, _claim, op="pool.allocate")

    @staticmethod
    async def _pick_available(
        session: AsyncSession,
        item_id: int,
        *,
        only_id: Optional[int] = None,
    ) -> Optional[PoolBarcode]:
        stmt = (
            select(PoolBarcode)
            .where(PoolBarcode.item_id == int(item_id))
            .where(PoolBarcode.in_use.is_(False))
        )
        if only_id is not None:
            stmt = stmt.where(PoolBarcode.id == int(only_id))
        stmt = (
            stmt.order_by(PoolBarcode.id.asc())
            .limit(1)
            .with_for_update(skip_locked=True)
            .execution_options(populate_existing=True)
        )
        return (await session.execute(stmt)).scalars().first()

    async def release(self, session: AsyncSession, pool_barcode: PoolBarcode) -> None:
        """置回空闲；重复释放结果不变。调用方保证已无在库单件引用它。"""
        pool_barcode.in_use = False
        pool_barcode.last_used_at = utc_now()
        await session.flush()

    # ------------------------------------------------------------------ #
    # 报表 / 预热
    # ------------------------------------------------------------------ #
    async def stats(self, session: AsyncSession, item_id: int) -> PoolStats:
        total = int(
            (
                await session.execute(
                    select(func.count(PoolBarcode.id)).where(PoolBarcode.item_id == int(item_id))
                )
            ).scalar_one()
        )
        in_use = int(
            (
                await session.execute(
                    select(func.count(PoolBarcode.id))
                    .where(PoolBarcode.item_id == int(item_id))
                    .where(PoolBarcode.in_use.is_(True))
                )
            ).scalar_one()
        )
        utilization = round(in_use / total * 100, 1) if total else 0.0
        return PoolStats(
            total=total,
            in_use=in_use,
            available=total - in_use,
            utilization_percent=utilization,
        )

    async def ensure_minimum_size(self, session: AsyncSession, item: Item, target: int) -> int:
        """预热：补足 target - 现有数量 个空闲新码；只增不删，返回新建数量。"""
        if target < 0:
            raise ValidationFailed("pool target size must be >= 0", rule="pool_target_non_negative")

        current = int(
            (
                await session.execute(
                    select(func.count(PoolBarcode.id)).where(PoolBarcode.item_id == item.id)
                )
            ).scalar_one()
        )
        needed = target - current
        if needed <= 0:
            return 0

        for _ in range(needed):
            seq = await self.counter.next_value(session, item.id)
            session.add(
                PoolBarcode(
                    item_id=item.id,
                    barcode=format_generated_barcode(item.barcode, seq),
                    in_use=False,
                )
            )
        await session.flush()
        pool_minted_total.inc(needed)
        log.info("pool prewarm item=%s created=%d target=%d", item.barcode, needed, target)
        return needed

    # ------------------------------------------------------------------ #
    # 懒登记：legacy 条码 / 扫到的老标签
    # ------------------------------------------------------------------ #
    async def find_by_barcode(self, session: AsyncSession, barcode: str) -> Optional[PoolBarcode]:
        row = await session.execute(select(PoolBarcode).where(PoolBarcode.barcode == barcode))
        return row.scalars().first()

    async def ensure_legacy(self, session: AsyncSession, item: Item) -> Optional[PoolBarcode]:
        """
        首次以 item 自身条码做单件寻址时，把 item.barcode 登记进池（空闲，序号 1）。

        计数器已经发过号（>0）说明该 item 早已进入单件追踪，生成条码 -00001
        可能在用，此时不再登记 legacy，返回 None。
        """

        async def _ensure() -> Optional[PoolBarcode]:
            existing = await self.find_by_barcode(session, item.barcode)
            if existing is not None:
                return existing
            if await self.counter.current(session, item.id) > 0:
                return None
            pb = PoolBarcode(item_id=item.id, barcode=item.barcode, in_use=False)
            session.add(pb)
            await session.flush()
            await self.counter.advance_to(session, item.id, LEGACY_SEQUENCE)
            log.info("pool legacy registered item=%s", item.barcode)
            return pb

        return await run_with_conflict_retry(session, _ensure, op="pool.ensure_legacy")

    async def register_scanned(
        self,
        session: AsyncSession,
        item: Item,
        barcode: str,
        sequence: int,
    ) -> Optional[PoolBarcode]:
        """
        把扫到的 "<item.barcode>-NNNNN" 登记为空闲池条码，并把计数器推过该序号。

        序号 0，或序号 1 而本 item 已有 legacy 条码（两者同占序号 1）时拒绝登记。
        """
        if sequence < 1:
            return None

        async def _register() -> Optional[PoolBarcode]:
            existing = await self.find_by_barcode(session, barcode)
            if existing is not None:
                return existing if existing.item_id == item.id else None
            if sequence == LEGACY_SEQUENCE and await self.find_by_barcode(session, item.barcode) is not None:
                return None
            pb = PoolBarcode(item_id=item.id, barcode=barcode, in_use=False)
            session.add(pb)
            await session.flush()
            await self.counter.advance_to(session, item.id, sequence)
            log.info("pool scanned label registered item=%s barcode=%s", item.barcode, barcode)
            return pb

        return await run_with_conflict_retry(session, _register, op="pool.register_scanned")
