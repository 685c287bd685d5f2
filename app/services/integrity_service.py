# app/services/integrity_service.py
"""
派生缓存体检 / 修复

检查项：
  - item_totals        Item.total_quantity ≠ 在库单件数
  - aggregates         桶的 quantity / added_at ≠ 其单件的 count / min(added_at)
  - empty_aggregates   quantity = 0 且没有单件（本该被删掉）
  - orphan_barcodes    in_use = true 但没有单件持有
  - idle_unit_barcodes 单件持有的条码 in_use = false
  - legacy_aggregates  quantity > 0 但没有单件：单件追踪之前的老数据，等 legacy 回填（仅提示，不算错）

reconcile() 以重算为准修复前五类，返回修复前的报告。
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.item import Item
from app.models.pool_barcode import PoolBarcode
from app.models.stock_aggregate import StockAggregate
from app.models.unit import Unit
from app.obs.metrics import consistency_violations_total
from app.services.inventory_locks import lock_item
from app.services.stock_projection import recompute_aggregate, recompute_item_total
from app.utils.time import as_utc

log = logging.getLogger("stockunits.integrity")


@dataclass
class IntegrityReport:
    item_totals: List[Dict[str, Any]] = field(default_factory=list)
    aggregates: List[Dict[str, Any]] = field(default_factory=list)
    empty_aggregates: List[int] = field(default_factory=list)
    orphan_barcodes: List[str] = field(default_factory=list)
    idle_unit_barcodes: List[str] = field(default_factory=list)
    legacy_aggregates: List[int] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not (
            self.item_totals
            or self.aggregates
            or self.empty_aggregates
            or self.orphan_barcodes
            or self.idle_unit_barcodes
        )

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["ok"] = self.ok
        return out


async def check(session: AsyncSession) -> IntegrityReport:
    report = IntegrityReport()

    # Item 合计
    unit_counts = (
        select(StockAggregate.item_id.label("item_id"), func.count(Unit.id).label("n"))
        .join(Unit, Unit.aggregate_id == StockAggregate.id)
        .group_by(StockAggregate.item_id)
        .subquery()
    )
    rows = await session.execute(
        select(Item.id, Item.barcode, Item.total_quantity, func.coalesce(unit_counts.c.n, 0))
        .outerjoin(unit_counts, unit_counts.c.item_id == Item.id)
        .order_by(Item.id)
    )
    for item_id, barcode, cached, actual in rows.all():
        if int(cached or 0) != int(actual):
            report.item_totals.append(
                {"item_id": item_id, "item_barcode": barcode, "cached": int(cached or 0), "actual": int(actual)}
            )

    # 桶
    per_agg = (
        select(
            Unit.aggregate_id.label("aggregate_id"),
            func.count(Unit.id).label("n"),
            func.min(Unit.added_at).label("oldest"),
        )
        .group_by(Unit.aggregate_id)
        .subquery()
    )
    rows = await session.execute(
        select(StockAggregate.id, StockAggregate.quantity, StockAggregate.added_at, per_agg.c.n, per_agg.c.oldest)
        .outerjoin(per_agg, per_agg.c.aggregate_id == StockAggregate.id)
        .order_by(StockAggregate.id)
    )
    for agg_id, qty, added_at, n, oldest in rows.all():
        n = int(n or 0)
        if n == 0:
            if int(qty or 0) > 0:
                report.legacy_aggregates.append(agg_id)
            else:
                report.empty_aggregates.append(agg_id)
            continue
        if int(qty or 0) != n or as_utc(added_at) != as_utc(oldest):
            report.aggregates.append(
                {
                    "aggregate_id": agg_id,
                    "cached_quantity": int(qty or 0),
                    "actual_quantity": n,
                    "cached_added_at": as_utc(added_at).isoformat() if added_at else None,
                    "actual_added_at": as_utc(oldest).isoformat() if oldest else None,
                }
            )

    # 池条码 ↔ 单件
    rows = await session.execute(
        select(PoolBarcode.barcode)
        .outerjoin(Unit, Unit.pool_barcode_id == PoolBarcode.id)
        .where(PoolBarcode.in_use.is_(True))
        .where(Unit.id.is_(None))
        .order_by(PoolBarcode.id)
    )
    report.orphan_barcodes = list(rows.scalars().all())

    rows = await session.execute(
        select(PoolBarcode.barcode)
        .join(Unit, Unit.pool_barcode_id == PoolBarcode.id)
        .where(PoolBarcode.in_use.is_(False))
        .order_by(PoolBarcode.id)
    )
    report.idle_unit_barcodes = list(rows.scalars().all())

    if not report.ok:
        log.warning(
            "integrity check failed totals=%d aggregates=%d empty=%d orphans=%d idle=%d",
            len(report.item_totals),
            len(report.aggregates),
            len(report.empty_aggregates),
            len(report.orphan_barcodes),
            len(report.idle_unit_barcodes),
        )
    return report


async def reconcile(session: AsyncSession) -> IntegrityReport:
    """按 check() 的结果逐项修复；涉及的 Item 先上锁。"""
    report = await check(session)
    if report.ok:
        return report

    touched_items: set[int] = {int(r["item_id"]) for r in report.item_totals}

    agg_ids = [int(r["aggregate_id"]) for r in report.aggregates] + report.empty_aggregates
    if agg_ids:
        rows = await session.execute(select(StockAggregate.item_id).where(StockAggregate.id.in_(agg_ids)))
        touched_items.update(int(i) for i in rows.scalars().all())
    if report.orphan_barcodes or report.idle_unit_barcodes:
        rows = await session.execute(
            select(PoolBarcode.item_id).where(
                PoolBarcode.barcode.in_(report.orphan_barcodes + report.idle_unit_barcodes)
            )
        )
        touched_items.update(int(i) for i in rows.scalars().all())

    items = {iid: await lock_item(session, iid) for iid in sorted(touched_items)}

    for agg_id in agg_ids:
        agg = await session.get(StockAggregate, agg_id)
        if agg is not None:
            await recompute_aggregate(session, agg)
            consistency_violations_total.labels("reconciled_aggregate").inc()

    if report.orphan_barcodes:
        rows = await session.execute(select(PoolBarcode).where(PoolBarcode.barcode.in_(report.orphan_barcodes)))
        for pb in rows.scalars().all():
            pb.in_use = False
    if report.idle_unit_barcodes:
        rows = await session.execute(select(PoolBarcode).where(PoolBarcode.barcode.in_(report.idle_unit_barcodes)))
        for pb in rows.scalars().all():
            pb.in_use = True
    await session.flush()

    for item in items.values():
        await recompute_item_total(session, item)

    log.info("integrity reconciled items=%d aggregates=%d", len(items), len(agg_ids))
    return report
