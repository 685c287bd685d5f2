# tests/services/test_tx_and_uow.py
from __future__ import annotations

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.tx import is_transient_lock_error, run_with_conflict_retry, set_local_lock_timeout
from app.models.location import Location
from app.services.catalog_service import create_location
from app.services.inventory_errors import ConcurrencyConflict
from app.services.uow import UnitOfWork


def _integrity() -> IntegrityError:
    return IntegrityError("INSERT ...", {}, Exception("UNIQUE constraint failed"))


def _locked() -> OperationalError:
    return OperationalError("UPDATE ...", {}, Exception("database is locked"))


def test_transient_lock_detection():
    assert is_transient_lock_error(_locked())
    assert not is_transient_lock_error(_integrity())
    assert not is_transient_lock_error(OperationalError("SELECT 1", {}, Exception("no such table: x")))
    assert not is_transient_lock_error(ValueError("nope"))


async def test_retry_once_then_succeed(session: AsyncSession):
    calls = []

    async def fn():
        calls.append(1)
        if len(calls) == 1:
            raise _integrity()
        return "ok"

    assert await run_with_conflict_retry(session, fn, op="test.retry") == "ok"
    assert len(calls) == 2


async def test_second_conflict_surfaces_as_concurrency_conflict(session: AsyncSession):
    async def fn():
        raise _locked()

    with pytest.raises(ConcurrencyConflict) as ei:
        await run_with_conflict_retry(session, fn, op="test.locked")
    assert ei.value.op == "test.locked"
    assert ei.value.context == {"attempts": 2}


async def test_other_errors_propagate_unchanged(session: AsyncSession):
    async def fn():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await run_with_conflict_retry(session, fn, op="test.other")

    async def dup():
        raise _integrity()

    with pytest.raises(IntegrityError):
        await run_with_conflict_retry(session, dup, op="test.no_retry", retry_on_integrity=False)


async def test_lock_timeout_is_noop_off_postgres(session: AsyncSession):
    await set_local_lock_timeout(session, 1000)
    if session.get_bind().dialect.name != "postgresql":
        assert not session.in_transaction()


async def test_unit_of_work_commits_and_rolls_back(session: AsyncSession, async_session_maker):
    async with UnitOfWork(async_session_maker) as uow:
        await create_location(uow.session, name="Kept")
    assert uow.session is None

    with pytest.raises(RuntimeError):
        async with UnitOfWork(async_session_maker) as uow:
            await create_location(uow.session, name="Dropped")
            raise RuntimeError("abort")

    rows = await session.execute(select(Location.name))
    assert rows.scalars().all() == ["Kept"]


async def test_unit_of_work_keeps_borrowed_session_open(session: AsyncSession):
    async with UnitOfWork(session) as uow:
        await create_location(uow.session, name="Borrowed")
    assert uow.session is session

    rows = await session.execute(select(Location.name))
    assert rows.scalars().all() == ["Borrowed"]


async def test_unit_of_work_rejects_non_sessions():
    with pytest.raises(TypeError):
        async with UnitOfWork(object()):  # type: ignore[arg-type]
            pass
