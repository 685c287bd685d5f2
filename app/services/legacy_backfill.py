# app/services/legacy_backfill.py
"""
老数据回填：把"只有 quantity、没有单件"的桶展开成单件。

  - quantity == 1：绑定 legacy 条码（= item 自身条码，序号 1），计数器推到 ≥ 1
    （legacy 条码已被占用或计数器已发过号时退回铸新码）
  - quantity == N > 1：铸 N 个新码，第 i 件 added_at = 桶 added_at + i 分钟

全部展开后做体检；任何一项对不上就抛 ConsistencyViolation，外层事务整体回滚。
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.pool_barcode import PoolBarcode
from app.models.stock_aggregate import StockAggregate
from app.models.unit import Unit
from app.obs.metrics import consistency_violations_total, pool_minted_total
from app.services.barcode_pool import LEGACY_SEQUENCE, BarcodePool, format_generated_barcode
from app.services.integrity_service import IntegrityReport, check
from app.services.inventory_errors import ConsistencyViolation
from app.services.inventory_locks import lock_item
from app.services.stock_projection import count_item_units, recompute_aggregate, recompute_item_total
from app.utils.time import as_utc, utc_now

log = logging.getLogger("stockunits.backfill")


@dataclass
class BackfillResult:
    aggregates_converted: int = 0
    units_created: int = 0
    legacy_barcodes: List[str] = field(default_factory=list)
    report: Optional[IntegrityReport] = None

    def to_dict(self) -> dict:
        return {
            "aggregates_converted": self.aggregates_converted,
            "units_created": self.units_created,
            "legacy_barcodes": list(self.legacy_barcodes),
            "integrity": self.report.to_dict() if self.report else None,
        }


class LegacyBackfill:
    def __init__(self, pool: Optional[BarcodePool] = None) -> None:
        self.pool = pool or BarcodePool()

    async def _pending(self, session: AsyncSession) -> List[StockAggregate]:
        has_units = select(Unit.id).where(Unit.aggregate_id == StockAggregate.id).exists()
        rows = await session.execute(
            select(StockAggregate)
            .where(StockAggregate.quantity > 0)
            .where(~has_units)
            .order_by(StockAggregate.item_id, StockAggregate.added_at, StockAggregate.id)
        )
        return list(rows.scalars().all())

    async def _expected_totals(self, session: AsyncSession, item_ids: List[int]) -> Dict[int, int]:
        """回填前：已有单件数 + 待展开桶的 quantity。"""
        expected: Dict[int, int] = {}
        for iid in item_ids:
            expected[iid] = await count_item_units(session, iid)
        rows = await session.execute(
            select(StockAggregate.item_id, func.sum(StockAggregate.quantity))
            .where(StockAggregate.item_id.in_(item_ids))
            .where(~select(Unit.id).where(Unit.aggregate_id == StockAggregate.id).exists())
            .group_by(StockAggregate.item_id)
        )
        for iid, qty in rows.all():
            expected[int(iid)] += int(qty or 0)
        return expected

    async def _legacy_available(self, session: AsyncSession, item) -> Optional[PoolBarcode]:
        pb = await self.pool.find_by_barcode(session, item.barcode)
        if pb is not None:
            return None if pb.in_use else pb
        if await self.pool.counter.current(session, item.id) > 0:
            return None
        pb = PoolBarcode(item_id=item.id, barcode=item.barcode, in_use=False)
        session.add(pb)
        await session.flush()
        return pb

    async def _bind(self, session: AsyncSession, agg: StockAggregate, pb: PoolBarcode, seq: int, added_at) -> None:
        pb.in_use = True
        pb.last_used_at = added_at
        session.add(
            Unit(
                item_id=agg.item_id,
                location_id=agg.location_id,
                aggregate_id=agg.id,
                pool_barcode_id=pb.id,
                pool_barcode=pb,
                sequence_number=seq,
                added_at=added_at,
            )
        )
        await session.flush()

    async def run(self, session: AsyncSession) -> BackfillResult:
        result = BackfillResult()
        pending = await self._pending(session)
        if not pending:
            result.report = await check(session)
            return result

        by_item: Dict[int, List[StockAggregate]] = defaultdict(list)
        for agg in pending:
            by_item[agg.item_id].append(agg)
        expected = await self._expected_totals(session, sorted(by_item))

        for item_id in sorted(by_item):
            item = await lock_item(session, item_id)
            for agg in by_item[item_id]:
                qty = int(agg.quantity)
                base = as_utc(agg.added_at or agg.created_at) or utc_now()

                legacy = await self._legacy_available(session, item) if qty == 1 else None
                if legacy is not None:
                    await self._bind(session, agg, legacy, LEGACY_SEQUENCE, base)
                    await self.pool.counter.advance_to(session, item.id, LEGACY_SEQUENCE)
                    result.legacy_barcodes.append(legacy.barcode)
                else:
                    for i in range(qty):
                        seq = await self.pool.counter.next_value(session, item.id)
                        pb = PoolBarcode(item_id=item.id, barcode=format_generated_barcode(item.barcode, seq))
                        session.add(pb)
                        await session.flush()
                        await self._bind(session, agg, pb, seq, base + timedelta(minutes=i))
                    pool_minted_total.inc(qty)

                await recompute_aggregate(session, agg)
                result.aggregates_converted += 1
                result.units_created += qty
                log.info("legacy aggregate backfilled id=%s item=%s units=%d", agg.id, item.barcode, qty)

            await recompute_item_total(session, item)
            if item.total_quantity != expected[item_id]:
                consistency_violations_total.labels("backfill_total").inc()
                raise ConsistencyViolation(
                    f"backfill total mismatch for item {item.barcode}",
                    kind="backfill_total",
                    context={"item_barcode": item.barcode, "expected": expected[item_id], "actual": item.total_quantity},
                )

        result.report = await check(session)
        if not result.report.ok:
            consistency_violations_total.labels("backfill_validation").inc()
            raise ConsistencyViolation(
                "integrity check failed after legacy backfill",
                kind="backfill_validation",
                context=result.report.to_dict(),
            )
        log.info(
            "legacy backfill done aggregates=%d units=%d legacy=%d",
            result.aggregates_converted,
            result.units_created,
            len(result.legacy_barcodes),
        )
        return result
