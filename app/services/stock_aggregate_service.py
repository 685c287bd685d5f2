# app/services/stock_aggregate_service.py
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.tx import run_with_conflict_retry
from app.models.item import Item
from app.models.location import Location
from app.models.stock_aggregate import StockAggregate
from app.models.unit import Unit
from app.obs.metrics import consistency_violations_total, units_added_total, units_moved_total, units_removed_total
from app.services.barcode_pool import is_legacy_barcode
from app.services.inventory_errors import ConsistencyViolation, NotFound, SameLocationError, ValidationFailed
from app.services.inventory_locks import lock_aggregate
from app.services.stock_projection import recompute_aggregate
from app.services.unit_lifecycle import UnitLifecycle
from app.utils.time import as_utc, storage_days, utc_now

log = logging.getLogger("stockunits.aggregates")


class RemovalPolicy(str, enum.Enum):
    FIFO = "fifo"
    LIFO = "lifo"
    TARGET = "target"


@dataclass
class RemovalResult:
    item_id: int
    location_id: int
    aggregate_id: int
    unit_barcode: str
    sequence_number: int
    was_legacy_barcode: bool
    added_at: datetime
    storage_days: float
    policy: RemovalPolicy
    completely_removed: bool
    remaining_quantity: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "location_id": self.location_id,
            "aggregate_id": self.aggregate_id,
            "individual_barcode": self.unit_barcode,
            "sequence_number": self.sequence_number,
            "was_legacy_barcode": self.was_legacy_barcode,
            "added_at": self.added_at.isoformat(),
            "storage_days": round(self.storage_days, 1),
            "policy": self.policy.value,
            "completely_removed": self.completely_removed,
            "remaining_quantity": self.remaining_quantity,
        }


@dataclass
class MoveResult:
    unit: Unit
    removal: RemovalResult
    source_aggregate: Optional[StockAggregate]
    destination_aggregate: StockAggregate


class StockAggregateService:
    """
    (item, location) 库存桶操作

    状态只有两个：不存在 → 活跃（放入第一件）→ 不存在（取走最后一件）。
    桶的 quantity / added_at 每次单件变更后在同一事务内重算。
    """

    def __init__(self, lifecycle: Optional[UnitLifecycle] = None) -> None:
        self.lifecycle = lifecycle or UnitLifecycle()

    # ------------------------------------------------------------------ #
    # 查找 / 懒创建
    # ------------------------------------------------------------------ #
    @staticmethod
    async def find(session: AsyncSession, item_id: int, location_id: int) -> Optional[StockAggregate]:
        row = await session.execute(
            select(StockAggregate)
            .where(StockAggregate.item_id == int(item_id))
            .where(StockAggregate.location_id == int(location_id))
        )
        return row.scalars().first()

    async def find_or_create(self, session: AsyncSession, item: Item, location: Location) -> StockAggregate:
        """
        并发安全的 find-or-create：唯一约束 (item_id, location_id) 兜底，
        插入撞约束时回滚保存点、重新查一次（另一事务已提交的那行）。
        """
        agg = await self.find(session, item.id, location.id)
        if agg is not None:
            return agg

        async def _create() -> StockAggregate:
            existing = await self.find(session, item.id, location.id)
            if existing is not None:
                return existing
            created = StockAggregate(item=item, location=location, quantity=0)
            session.add(created)
            await session.flush()
            log.info("aggregate created id=%s item=%s loc=%s", created.id, item.barcode, location.barcode)
            return created

        return await run_with_conflict_retry(session, _create, op="aggregate.find_or_create")

    # ------------------------------------------------------------------ #
    # 放入
    # ------------------------------------------------------------------ #
    async def add_unit(
        self,
        session: AsyncSession,
        *,
        item: Item,
        location: Location,
        aggregate: Optional[StockAggregate] = None,
        explicit_added_at: Optional[datetime] = None,
        prefer_barcode_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Unit:
        if aggregate is None:
            aggregate = await self.find_or_create(session, item, location)
        elif aggregate.item_id != item.id or aggregate.location_id != location.id:
            raise ValidationFailed(
                "aggregate does not match item/location",
                rule="aggregate_mismatch",
                context={"aggregate_id": aggregate.id, "item_id": item.id, "location_id": location.id},
            )

        aggregate = await lock_aggregate(session, aggregate.id)
        await self._refuse_pending_backfill(session, aggregate)

        unit = await self.lifecycle.create(
            session,
            item=item,
            location_id=location.id,
            aggregate=aggregate,
            explicit_added_at=explicit_added_at,
            prefer_barcode_id=prefer_barcode_id,
            notes=notes,
        )
        await recompute_aggregate(session, aggregate, delete_if_empty=False)

        units_added_total.inc()
        log.info(
            "unit added item=%s loc=%s barcode=%s qty=%s",
            item.barcode,
            location.barcode,
            unit.barcode,
            aggregate.quantity,
        )
        return unit

    @staticmethod
    async def _has_units(session: AsyncSession, aggregate: StockAggregate) -> bool:
        row = await session.execute(select(Unit.id).where(Unit.aggregate_id == aggregate.id).limit(1))
        return row.scalar_one_or_none() is not None

    async def _refuse_pending_backfill(self, session: AsyncSession, aggregate: StockAggregate) -> None:
        """
        quantity > 0 却没有单件的桶是单件追踪之前的老数据：只能由 legacy 回填展开。
        直接往里放单件会让重算把老 quantity 覆盖成在库件数。
        """
        if aggregate.quantity > 0 and not await self._has_units(session, aggregate):
            raise ValidationFailed(
                "aggregate holds untracked legacy stock; run the legacy backfill first",
                rule="legacy_aggregate_pending_backfill",
                context={
                    "aggregate_id": aggregate.id,
                    "item_id": aggregate.item_id,
                    "location_id": aggregate.location_id,
                    "quantity": aggregate.quantity,
                },
            )

    # ------------------------------------------------------------------ #
    # 取出
    # ------------------------------------------------------------------ #
    @staticmethod
    async def _pick_unit(session: AsyncSession, aggregate: StockAggregate, policy: RemovalPolicy) -> Optional[Unit]:
        stmt = select(Unit).where(Unit.aggregate_id == aggregate.id)
        if policy == RemovalPolicy.LIFO:
            stmt = stmt.order_by(Unit.added_at.desc(), Unit.id.desc())
        else:
            stmt = stmt.order_by(Unit.added_at.asc(), Unit.id.asc())
        return (await session.execute(stmt.limit(1))).scalars().first()

    async def remove_unit(
        self,
        session: AsyncSession,
        aggregate: StockAggregate,
        *,
        policy: RemovalPolicy = RemovalPolicy.FIFO,
        target: Optional[Unit] = None,
        now: Optional[datetime] = None,
    ) -> RemovalResult:
        """
        按策略取走一件：
          - target：指定单件（按单件条码寻址 / 移库）
          - FIFO：added_at 最小（同值按创建顺序）
          - LIFO：added_at 最大
        条码、序号、是否 legacy、库龄在销毁前采集；桶空则删桶并标记 completely_removed。
        """
        aggregate = await lock_aggregate(session, aggregate.id)
        if target is not None:
            if target.aggregate_id != aggregate.id:
                raise ValidationFailed(
                    "unit does not belong to this aggregate",
                    rule="unit_not_in_aggregate",
                    context={"unit_id": target.id, "aggregate_id": aggregate.id},
                )
            unit = target
            policy = RemovalPolicy.TARGET
        else:
            if policy == RemovalPolicy.TARGET:
                raise ValidationFailed("target policy requires a unit", rule="target_required")
            unit = await self._pick_unit(session, aggregate, policy)

        if unit is None:
            self._raise_if_empty(aggregate)
            # 只剩 legacy quantity、没有单件：按“此处无可取单件”处理，等回填
            raise NotFound(
                "no tracked units in this location for the item; run the legacy backfill",
                context={"aggregate_id": aggregate.id, "item_id": aggregate.item_id, "location_id": aggregate.location_id},
            )

        item = aggregate.item
        ref = as_utc(now) if now is not None else utc_now()
        barcode = unit.barcode
        seq = unit.sequence_number
        added_at = as_utc(unit.added_at)
        days = storage_days(added_at, ref)
        legacy = is_legacy_barcode(barcode, item.barcode)
        aggregate_id, location_id = aggregate.id, aggregate.location_id

        remaining = await self.lifecycle.destroy(session, unit, item=item, aggregate=aggregate)

        units_removed_total.labels(policy.value).inc()
        log.info(
            "unit removed item=%s loc=%s barcode=%s policy=%s days=%.1f remaining=%s",
            item.barcode,
            location_id,
            barcode,
            policy.value,
            days,
            remaining,
        )
        return RemovalResult(
            item_id=item.id,
            location_id=location_id,
            aggregate_id=aggregate_id,
            unit_barcode=barcode,
            sequence_number=seq,
            was_legacy_barcode=legacy,
            added_at=added_at,
            storage_days=days,
            policy=policy,
            completely_removed=remaining == 0,
            remaining_quantity=remaining,
        )

    @staticmethod
    def _raise_if_empty(aggregate: StockAggregate) -> None:
        """调用时已确认桶内没有单件；quantity 也为 0 说明这是本该随最后一件删掉的空桶。"""
        if aggregate.quantity > 0:
            return
        consistency_violations_total.labels("empty_aggregate").inc()
        log.error(
            "empty aggregate still present id=%s item=%s loc=%s",
            aggregate.id,
            aggregate.item_id,
            aggregate.location_id,
        )
        raise ConsistencyViolation(
            "aggregate has no units but was not deleted",
            kind="empty_aggregate",
            context={"aggregate_id": aggregate.id, "item_id": aggregate.item_id, "location_id": aggregate.location_id},
        )

    # ------------------------------------------------------------------ #
    # 移库
    # ------------------------------------------------------------------ #
    async def move(self, session: AsyncSession, unit: Unit, to_location: Location) -> MoveResult:
        """
        源桶按 target 取走 + 目标桶放入，保留原 added_at（库龄不清零），
        并优先认回同一个池条码（实物标签不变）。两腿在同一 SAVEPOINT 内，要么都成要么都不成。
        """
        if unit.location_id == to_location.id:
            raise SameLocationError(to_location.barcode)

        async with session.begin_nested():
            source = await lock_aggregate(session, unit.aggregate_id)

            item = source.item
            original_added_at = as_utc(unit.added_at)
            barcode_id = unit.pool_barcode_id

            removal = await self.remove_unit(session, source, target=unit)
            destination = await self.find_or_create(session, item, to_location)
            moved = await self.add_unit(
                session,
                item=item,
                location=to_location,
                aggregate=destination,
                explicit_added_at=original_added_at,
                prefer_barcode_id=barcode_id,
            )

        units_moved_total.inc()
        log.info(
            "unit moved item=%s barcode=%s from_loc=%s to_loc=%s",
            item.barcode,
            moved.barcode,
            removal.location_id,
            to_location.barcode,
        )
        return MoveResult(
            unit=moved,
            removal=removal,
            source_aggregate=None if removal.completely_removed else source,
            destination_aggregate=destination,
        )
