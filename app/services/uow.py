"""
Unit of Work（UoW）：统一管理 AsyncSession 的生命周期与事务边界。

- 传参模式：
    * session 工厂：
        async with UnitOfWork(AsyncSessionLocal) as uow: ...
    * 现成 session：
        async with UnitOfWork(session) as uow: ...

- 事务语义：
    * 无异常 -> commit
    * 有异常 -> rollback
    * 只有在 UoW 自己创建的 session 上负责 close；
      对于外部传入的现成 session，不负责关闭。

库存写操作（放入 / 取出 / 移库 / 解析登记 / 预热 / 回填）一律在一个 UoW 里完成。
"""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import Any, Awaitable, Callable, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

AsyncSessionFactory = Callable[[], Union[AsyncSession, Awaitable[AsyncSession]]]
SessionOrFactory = Union[AsyncSession, AsyncSessionFactory]


class UnitOfWork(AbstractAsyncContextManager):
    def __init__(self, session_or_factory: SessionOrFactory) -> None:
        self._session_or_factory: SessionOrFactory = session_or_factory
        self.session: Optional[AsyncSession] = None
        self._owns_session: bool = False  # 是否由 UoW 自己创建并负责关闭

    async def __aenter__(self) -> "UnitOfWork":
        if isinstance(self._session_or_factory, AsyncSession):
            self.session = self._session_or_factory
            self._owns_session = False
        else:
            factory = self._session_or_factory
            if not callable(factory):
                raise TypeError("UnitOfWork 期望传入 AsyncSession 或 async_session 工厂。")
            maybe_session: Any = factory()
            if isinstance(maybe_session, AsyncSession):
                self.session = maybe_session
            else:
                self.session = await maybe_session
            self._owns_session = True

        if not isinstance(self.session, AsyncSession):
            raise TypeError("async with UnitOfWork(...) 需要 AsyncSession。")
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if self.session is None:
            return False

        try:
            if exc_type:
                await self.session.rollback()
            else:
                await self.session.commit()
        finally:
            if self._owns_session:
                try:
                    await self.session.close()
                finally:
                    self.session = None
        # False -> 异常继续向外抛
        return False

    async def commit(self) -> None:
        if self.session is not None:
            await self.session.commit()

    async def rollback(self) -> None:
        if self.session is not None:
            await self.session.rollback()
