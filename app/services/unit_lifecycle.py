# app/services/unit_lifecycle.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.item import Item
from app.models.stock_aggregate import StockAggregate
from app.models.unit import Unit
from app.obs.metrics import consistency_violations_total
from app.services.barcode_pool import BarcodePool, sequence_from_barcode
from app.services.inventory_errors import ConsistencyViolation
from app.services.stock_projection import recompute_aggregate, recompute_item_total
from app.utils.time import as_utc, utc_now

log = logging.getLogger("stockunits.units")


class UnitLifecycle:
    """
    单件的创建 / 销毁。

    两个操作都在调用方事务内完成，并各自包一层 SAVEPOINT：中途失败不会留下
    占用中的孤儿条码，也不会留下派生字段过期的桶。
    """

    def __init__(self, pool: Optional[BarcodePool] = None) -> None:
        self.pool = pool or BarcodePool()

    async def create(
        self,
        session: AsyncSession,
        *,
        item: Item,
        location_id: int,
        aggregate: StockAggregate,
        explicit_added_at: Optional[datetime] = None,
        prefer_barcode_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Unit:
        async with session.begin_nested():
            pb = await self.pool.allocate(session, item, prefer_id=prefer_barcode_id)
            seq = sequence_from_barcode(pb.barcode, item.barcode)

            clash = await session.execute(
                select(Unit.id)
                .where(Unit.item_id == item.id)
                .where(Unit.sequence_number == seq)
                .limit(1)
            )
            clash_id = clash.scalar_one_or_none()
            if clash_id is not None:
                consistency_violations_total.labels("sequence_collision").inc()
                log.error(
                    "sequence collision item=%s seq=%s barcode=%s existing_unit=%s",
                    item.barcode,
                    seq,
                    pb.barcode,
                    clash_id,
                )
                raise ConsistencyViolation(
                    f"sequence number {seq} already used by a live unit of item {item.barcode}",
                    kind="sequence_collision",
                    context={"item_barcode": item.barcode, "sequence_number": seq, "unit_id": clash_id},
                )

            unit = Unit(
                item_id=item.id,
                location_id=int(location_id),
                aggregate_id=aggregate.id,
                pool_barcode_id=pb.id,
                pool_barcode=pb,
                sequence_number=seq,
                added_at=as_utc(explicit_added_at) if explicit_added_at is not None else utc_now(),
                notes=notes,
            )
            session.add(unit)
            await session.flush()

            await recompute_item_total(session, item)

        log.debug("unit created item=%s barcode=%s seq=%s agg=%s", item.barcode, pb.barcode, seq, aggregate.id)
        return unit

    async def destroy(
        self,
        session: AsyncSession,
        unit: Unit,
        *,
        item: Item,
        aggregate: StockAggregate,
    ) -> int:
        """
        删单件 → 条码释放回池 → 重算桶与 item 合计；返回桶内剩余件数（0 表示桶已删除）。
        """
        async with session.begin_nested():
            pb = unit.pool_barcode
            await session.delete(unit)
            await session.flush()

            await self.pool.release(session, pb)
            remaining = await recompute_aggregate(session, aggregate)
            await recompute_item_total(session, item)

        log.debug("unit destroyed item=%s barcode=%s remaining=%s", item.barcode, pb.barcode, remaining)
        return remaining
