# tests/conftest.py
from __future__ import annotations

import os
import tempfile
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

# ============================================================
# ★★ 关键：在 import app.main 之前确定测试库 DSN ★★
#   - 显式 STOCKUNITS_TEST_DATABASE_URL（PG）优先
#   - 否则落到临时目录下的 SQLite 文件（aiosqlite）
# ============================================================
_TMP_DIR = tempfile.mkdtemp(prefix="stockunits-test-")

DATABASE_URL = os.getenv("STOCKUNITS_TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{_TMP_DIR}/stockunits_test.db"

os.environ["STOCKUNITS_DATABASE_URL"] = DATABASE_URL
os.environ.setdefault("LOG_LEVEL", "WARNING")

from app.db.base import Base, init_models  # noqa: E402
from app.db.deps import get_session  # noqa: E402
from app.db.engine import create_async_engine_safe  # noqa: E402
from app.db.session import normalize_async_dsn  # noqa: E402
from app.main import app  # noqa: E402

DATABASE_URL = normalize_async_dsn(DATABASE_URL)

init_models()


# =========================================
# 每用例独立 Engine（NullPool，避免跨 loop）
# =========================================
@pytest_asyncio.fixture(scope="function")
async def async_engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine_safe(DATABASE_URL, poolclass=NullPool)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture(scope="function")
def async_session_maker(async_engine: AsyncEngine):
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def session(async_session_maker) -> AsyncGenerator[AsyncSession, None]:
    """
    标准 Session：用例内自行 commit；结束时未提交的部分一律回滚。

    SQLite 下任何事务都以 BEGIN IMMEDIATE 开始（持有写锁），
    与 client / 并发会话混用时，先 commit 再让别的连接写。
    """
    async with async_session_maker() as sess:
        try:
            yield sess
        finally:
            if sess.in_transaction():
                await sess.rollback()


# =========================================
# 每测试重建表结构（有问题直接炸，暴露模型问题）
# =========================================
@pytest_asyncio.fixture(autouse=True, scope="function")
async def _db_reset(async_engine: AsyncEngine):
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


# =========================================
# FastAPI / httpx AsyncClient（会话换成测试库）
# =========================================
@pytest_asyncio.fixture(scope="function")
async def client(async_session_maker) -> AsyncGenerator[httpx.AsyncClient, None]:
    async def _test_session() -> AsyncGenerator[AsyncSession, None]:
        async with async_session_maker() as s:
            yield s

    app.dependency_overrides[get_session] = _test_session
    transport = httpx.ASGITransport(app=app)
    try:
        async with httpx.AsyncClient(
            transport=transport,
            base_url="http://testserver",
            timeout=httpx.Timeout(10.0, connect=5.0, read=10.0, write=5.0, pool=5.0),
        ) as c:
            yield c
    finally:
        app.dependency_overrides.pop(get_session, None)
