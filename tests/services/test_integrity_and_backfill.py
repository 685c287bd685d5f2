# tests/services/test_integrity_and_backfill.py
from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.item import Item
from app.models.pool_barcode import PoolBarcode
from app.models.stock_aggregate import StockAggregate
from app.services.integrity_service import check, reconcile
from app.services.inventory_errors import ConsistencyViolation, NotFound, ValidationFailed
from app.services.inventory_query import aggregate_units
from app.services.inventory_service import InventoryService
from app.services.legacy_backfill import LegacyBackfill
from app.utils.time import as_utc
from tests.helpers.stock import aggregate_of, count_units, days_ago, make_item, make_location, unit_barcodes

pytestmark = pytest.mark.contract


# ---------------------------------------------------------
# 体检 / 修复
# ---------------------------------------------------------
async def test_clean_state_passes(session: AsyncSession):
    item = await make_item(session)
    shelf = await make_location(session)
    svc = InventoryService()
    await svc.add_unit(session, item_code=item.barcode, location_barcode=shelf.barcode)
    await svc.add_unit(session, item_code=item.barcode, location_barcode=shelf.barcode)
    await session.commit()

    report = await check(session)
    assert report.ok
    assert report.to_dict()["ok"] is True


async def test_drifted_caches_are_reported_and_repaired(session: AsyncSession):
    item = await make_item(session)
    shelf = await make_location(session)
    svc = InventoryService()
    await svc.add_unit(session, item_code=item.barcode, location_barcode=shelf.barcode)
    await session.commit()

    await session.execute(update(Item).where(Item.id == item.id).values(total_quantity=9))
    await session.execute(update(StockAggregate).where(StockAggregate.item_id == item.id).values(quantity=5))
    orphan = PoolBarcode(item_id=item.id, barcode=f"{item.barcode}-00042", in_use=True)
    session.add(orphan)
    await session.commit()

    report = await check(session)
    assert not report.ok
    assert report.item_totals == [{"item_id": item.id, "item_barcode": item.barcode, "cached": 9, "actual": 1}]
    assert [r["aggregate_id"] for r in report.aggregates] == [(await aggregate_of(session, item.id, shelf.id)).id]
    assert report.orphan_barcodes == [orphan.barcode]

    fixed = await reconcile(session)
    await session.commit()
    assert not fixed.ok  # 返回修复前的报告

    after = await check(session)
    assert after.ok, after.to_dict()
    await session.refresh(item)
    assert item.total_quantity == 1
    assert (await aggregate_of(session, item.id, shelf.id)).quantity == 1


async def test_idle_unit_barcode_is_repaired(session: AsyncSession):
    item = await make_item(session)
    shelf = await make_location(session)
    res = await InventoryService().add_unit(session, item_code=item.barcode, location_barcode=shelf.barcode)
    await session.commit()

    await session.execute(update(PoolBarcode).where(PoolBarcode.id == res.unit.pool_barcode_id).values(in_use=False))
    await session.commit()

    assert (await check(session)).idle_unit_barcodes == [res.unit.barcode]
    await reconcile(session)
    await session.commit()
    assert (await check(session)).ok


async def test_empty_aggregate_is_reported_and_deleted(session: AsyncSession):
    item = await make_item(session)
    shelf = await make_location(session)
    item_id, shelf_id = item.id, shelf.id
    item_code, shelf_code = item.barcode, shelf.barcode
    session.add(StockAggregate(item_id=item_id, location_id=shelf_id, quantity=0))
    await session.commit()

    report = await check(session)
    assert len(report.empty_aggregates) == 1

    # 数量为 0 又没有单件的桶不该存在，取出时按一致性错误上报
    with pytest.raises(ConsistencyViolation) as ei:
        await InventoryService().remove_unit(session, location_barcode=shelf_code, item_code=item_code)
    assert ei.value.kind == "empty_aggregate"

    await reconcile(session)
    await session.commit()
    assert await aggregate_of(session, item_id, shelf_id) is None


# ---------------------------------------------------------
# 老数据回填
# ---------------------------------------------------------
async def _legacy_aggregate(session: AsyncSession, item: Item, location, quantity: int, days: float):
    agg = StockAggregate(item_id=item.id, location_id=location.id, quantity=quantity, added_at=days_ago(days))
    session.add(agg)
    await session.execute(update(Item).where(Item.id == item.id).values(total_quantity=Item.total_quantity + quantity))
    await session.commit()
    return agg


async def test_legacy_aggregates_are_informational(session: AsyncSession):
    item = await make_item(session)
    shelf = await make_location(session)
    agg = await _legacy_aggregate(session, item, shelf, 3, 20)

    report = await check(session)
    assert report.legacy_aggregates == [agg.id]
    assert report.aggregates == []

    # 回填前按单件取出找不到单件
    with pytest.raises(NotFound):
        await InventoryService().remove_unit(session, location_barcode=shelf.barcode, item_code=item.barcode)


async def test_backfill_single_unit_uses_legacy_barcode(session: AsyncSession):
    item = await make_item(session, "Lamp")
    shelf = await make_location(session)
    agg = await _legacy_aggregate(session, item, shelf, 1, 40)
    base = as_utc(agg.added_at)

    result = await LegacyBackfill().run(session)
    await session.commit()

    assert result.aggregates_converted == 1
    assert result.units_created == 1
    assert result.legacy_barcodes == [item.barcode]
    assert result.report.ok
    assert await unit_barcodes(session, item.id) == [item.barcode]

    # 之后新放入的件从序号 2 铸码
    svc = InventoryService()
    res = await svc.add_unit(session, item_code=item.barcode, location_barcode=shelf.barcode)
    assert res.unit.barcode == f"{item.barcode}-00002"
    assert as_utc(res.aggregate.added_at) == base

    removed = await svc.remove_unit(session, location_barcode=shelf.barcode, item_code=item.barcode)
    assert removed.was_legacy_barcode
    assert removed.sequence_number == 1


async def test_backfill_many_units_are_minted_minutes_apart(session: AsyncSession):
    item = await make_item(session, "Cable")
    shelf = await make_location(session, "Shelf A")
    other = await make_location(session, "Shelf B")
    agg = await _legacy_aggregate(session, item, shelf, 3, 10)
    await _legacy_aggregate(session, item, other, 2, 5)
    base = as_utc(agg.added_at)

    result = await LegacyBackfill().run(session)
    await session.commit()

    assert result.aggregates_converted == 2
    assert result.units_created == 5
    assert result.legacy_barcodes == []
    assert result.to_dict()["integrity"]["ok"] is True

    await session.refresh(item)
    assert item.total_quantity == await count_units(session, item.id) == 5
    assert sorted(await unit_barcodes(session, item.id)) == [f"{item.barcode}-{i:05d}" for i in range(1, 6)]

    fresh = await aggregate_of(session, item.id, shelf.id)
    assert fresh.quantity == 3
    assert as_utc(fresh.added_at) == base

    views = await aggregate_units(session, fresh.id)
    assert [v.added_at - base for v in views] == [timedelta(minutes=i) for i in range(3)]


async def test_backfill_is_noop_when_nothing_pending(session: AsyncSession):
    await make_item(session)
    result = await LegacyBackfill().run(session)

    assert result.aggregates_converted == 0
    assert result.units_created == 0
    assert result.report.ok
