# tests/services/test_barcode_pool.py
from __future__ import annotations

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.services.barcode_pool import (
    BarcodePool,
    format_generated_barcode,
    is_legacy_barcode,
    sequence_from_barcode,
)
from app.services.inventory_errors import ConsistencyViolation, ValidationFailed
from tests.helpers.stock import make_item, pool_barcodes_of

pytestmark = pytest.mark.contract


def test_generated_barcode_format():
    assert format_generated_barcode("ITMABCD1234", 7) == "ITMABCD1234-00007"
    assert format_generated_barcode("ITMABCD1234", 123456) == "ITMABCD1234-123456"


def test_sequence_from_barcode():
    assert sequence_from_barcode("ITMABCD1234", "ITMABCD1234") == 1
    assert sequence_from_barcode("ITMABCD1234-00042", "ITMABCD1234") == 42
    assert is_legacy_barcode("ITMABCD1234", "ITMABCD1234")
    assert not is_legacy_barcode("ITMABCD1234-00001", "ITMABCD1234")

    with pytest.raises(ConsistencyViolation):
        sequence_from_barcode("ITMOTHER0000-00001", "ITMABCD1234")


async def test_allocate_mints_when_pool_is_empty(session: AsyncSession):
    item = await make_item(session)
    pool = BarcodePool()

    a = await pool.allocate(session, item)
    b = await pool.allocate(session, item)
    await session.commit()

    assert a.barcode == f"{item.barcode}-00001"
    assert b.barcode == f"{item.barcode}-00002"
    assert a.in_use and b.in_use


async def test_released_barcode_is_reused_before_minting(session: AsyncSession):
    item = await make_item(session)
    pool = BarcodePool()

    a = await pool.allocate(session, item)
    await pool.allocate(session, item)
    await pool.release(session, a)

    again = await pool.allocate(session, item)
    await session.commit()

    assert again.id == a.id
    assert again.in_use
    stats = await pool.stats(session, item.id)
    assert (stats.total, stats.in_use, stats.available) == (2, 2, 0)


async def test_release_is_idempotent(session: AsyncSession):
    item = await make_item(session)
    pool = BarcodePool()

    pb = await pool.allocate(session, item)
    await pool.release(session, pb)
    await pool.release(session, pb)
    await session.commit()

    rows = await pool_barcodes_of(session, item.id)
    assert [r.in_use for r in rows] == [False]


async def test_prefer_id_claims_that_barcode(session: AsyncSession):
    item = await make_item(session)
    pool = BarcodePool()

    first = await pool.allocate(session, item)
    second = await pool.allocate(session, item)
    await pool.release(session, first)
    await pool.release(session, second)

    got = await pool.allocate(session, item, prefer_id=second.id)
    assert got.id == second.id


async def test_stats_utilization(session: AsyncSession):
    item = await make_item(session)
    pool = BarcodePool()

    empty = await pool.stats(session, item.id)
    assert empty.to_dict() == {"total": 0, "in_use": 0, "available": 0, "utilization_percent": 0.0}

    a = await pool.allocate(session, item)
    await pool.allocate(session, item)
    await pool.allocate(session, item)
    await pool.release(session, a)

    stats = await pool.stats(session, item.id)
    assert stats.total == 3
    assert stats.in_use == 2
    assert stats.available == 1
    assert stats.utilization_percent == 66.7


async def test_ensure_minimum_size_only_grows(session: AsyncSession):
    item = await make_item(session)
    pool = BarcodePool()

    assert await pool.ensure_minimum_size(session, item, 5) == 5
    assert await pool.ensure_minimum_size(session, item, 3) == 0
    assert await pool.ensure_minimum_size(session, item, 6) == 1
    await session.commit()

    rows = await pool_barcodes_of(session, item.id)
    assert len(rows) == 6
    assert not any(r.in_use for r in rows)
    assert rows[-1].barcode == f"{item.barcode}-00006"

    with pytest.raises(ValidationFailed):
        await pool.ensure_minimum_size(session, item, -1)


async def test_ensure_legacy_registers_once(session: AsyncSession):
    item = await make_item(session)
    pool = BarcodePool()

    pb = await pool.ensure_legacy(session, item)
    assert pb is not None
    assert pb.barcode == item.barcode
    assert not pb.in_use
    assert await pool.counter.current(session, item.id) == 1

    again = await pool.ensure_legacy(session, item)
    assert again.id == pb.id

    # 空闲的 legacy 条码先被认领；之后铸码从 2 起，不与 legacy 的序号 1 冲突
    claimed = await pool.allocate(session, item)
    assert claimed.id == pb.id
    minted = await pool.allocate(session, item)
    assert minted.barcode == f"{item.barcode}-00002"


async def test_ensure_legacy_skipped_once_counter_issued(session: AsyncSession):
    item = await make_item(session)
    pool = BarcodePool()

    await pool.allocate(session, item)
    assert await pool.ensure_legacy(session, item) is None


async def test_register_scanned_advances_counter(session: AsyncSession):
    item = await make_item(session)
    pool = BarcodePool()

    code = f"{item.barcode}-00007"
    pb = await pool.register_scanned(session, item, code, 7)
    assert pb is not None and pb.barcode == code and not pb.in_use
    assert await pool.counter.current(session, item.id) == 7

    # 同一标签再扫一次：返回已有行
    assert (await pool.register_scanned(session, item, code, 7)).id == pb.id


async def test_register_scanned_rejects_sequence_zero_and_legacy_clash(session: AsyncSession):
    item = await make_item(session)
    pool = BarcodePool()

    assert await pool.register_scanned(session, item, f"{item.barcode}-00000", 0) is None

    await pool.ensure_legacy(session, item)
    assert await pool.register_scanned(session, item, f"{item.barcode}-00001", 1) is None
