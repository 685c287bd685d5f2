# app/core/tx.py
from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.obs.metrics import concurrency_conflicts_total
from app.services.inventory_errors import ConcurrencyConflict

log = logging.getLogger("stockunits.tx")

T = TypeVar("T")

# PG SQLSTATE：lock_not_available / deadlock_detected / serialization_failure
_TRANSIENT_SQLSTATES = {"55P03", "40P01", "40001"}


def is_transient_lock_error(exc: BaseException) -> bool:
    """锁等待超时 / 死锁 / 串行化失败 / SQLite 文件锁忙。"""
    if not isinstance(exc, DBAPIError) or isinstance(exc, IntegrityError):
        return False
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in _TRANSIENT_SQLSTATES:
        return True
    return "database is locked" in str(orig or exc).lower()


async def run_with_conflict_retry(
    session: AsyncSession,
    fn: Callable[[], Awaitable[T]],
    *,
    op: str,
    attempts: int = 2,
    retry_on_integrity: bool = True,
) -> T:
    """
    在 SAVEPOINT 内执行 fn；遇到唯一约束竞争或瞬时锁错误时回滚保存点并重跑一次，
    再失败则抛 ConcurrencyConflict。其余异常原样上抛。
    """
    last_exc: Optional[BaseException] = None
    for attempt in range(1, attempts + 1):
        try:
            async with session.begin_nested():
                return await fn()
        except IntegrityError as e:
            if not retry_on_integrity:
                raise
            last_exc = e
        except DBAPIError as e:
            if not is_transient_lock_error(e):
                raise
            last_exc = e

        concurrency_conflicts_total.labels(op).inc()
        if attempt < attempts:
            log.warning("concurrency conflict in %s (attempt %d/%d), retrying: %s", op, attempt, attempts, last_exc)

    raise ConcurrencyConflict(op, context={"attempts": attempts}) from last_exc


def dialect_name(session: AsyncSession) -> str:
    return session.get_bind().dialect.name


async def set_local_lock_timeout(session: AsyncSession, timeout_ms: int) -> None:
    """PG：本事务内的锁等待上限；其它后端无此概念，直接跳过。"""
    if timeout_ms <= 0 or dialect_name(session) != "postgresql":
        return
    await session.execute(text(f"SET LOCAL lock_timeout = '{int(timeout_ms)}ms'"))
