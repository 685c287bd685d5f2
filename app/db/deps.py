# app/db/deps.py
"""
统一数据库依赖（薄转发到 app.db.session）：
- get_session      → 异步 AsyncSession（yield）
- get_async_session→ 同上，历史命名
"""

from __future__ import annotations

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_session as _get_session


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    用法：async def endpoint(session: AsyncSession = Depends(get_session)): ...
    测试里通过 app.dependency_overrides[get_session] 换成测试库会话。
    """
    async for s in _get_session():
        yield s


get_async_session = get_session
