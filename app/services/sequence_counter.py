# app/services/sequence_counter.py
from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession


class SequenceCounterService:
    """
    每 Item 单调计数器（生成条码后缀的唯一来源）

    - next_value：找不到计数行先建（从 0 起），再在行锁内原子自增并读回
    - 同一 item 的返回值严格递增、永不重复；并发调用方在 UPDATE 的行锁上排队
    - 拿不到锁（lock_timeout）时直接抛 DBAPIError，由外层事务整体回滚 / 重试
    - 只走 SQL，不把计数行加载进 identity map，避免读到过期的 ORM 值
    """

    @staticmethod
    async def _ensure_row(session: AsyncSession, item_id: int) -> None:
        await session.execute(
            text(
                """
                INSERT INTO sequence_counters (item_id, last_value)
                VALUES (:i, 0)
                ON CONFLICT (item_id) DO NOTHING
                """
            ),
            {"i": int(item_id)},
        )

    async def next_value(self, session: AsyncSession, item_id: int) -> int:
        await self._ensure_row(session, item_id)
        row = await session.execute(
            text(
                """
                UPDATE sequence_counters
                   SET last_value = last_value + 1
                 WHERE item_id = :i
             RETURNING last_value
                """
            ),
            {"i": int(item_id)},
        )
        return int(row.scalar_one())

    async def current(self, session: AsyncSession, item_id: int) -> int:
        row = await session.execute(
            text("SELECT last_value FROM sequence_counters WHERE item_id = :i"),
            {"i": int(item_id)},
        )
        val = row.scalar_one_or_none()
        return int(val or 0)

    async def advance_to(self, session: AsyncSession, item_id: int, value: int) -> int:
        """
        把计数器推到至少 value（已更大则不动），返回推进后的值。
        用于外部已占用的序号（legacy 条码占 1、扫描登记的老标签后缀），保证之后铸码不撞。
        """
        await self._ensure_row(session, item_id)
        await session.execute(
            text(
                """
                UPDATE sequence_counters
                   SET last_value = :v
                 WHERE item_id = :i
                   AND last_value < :v
                """
            ),
            {"i": int(item_id), "v": int(value)},
        )
        return await self.current(session, item_id)
