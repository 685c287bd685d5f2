# app/models/sequence_counter.py
from __future__ import annotations

from sqlalchemy import CheckConstraint, ForeignKey, Integer, text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class SequenceCounter(Base):
    """
    每个 Item 一行的单调计数器：生成条码后缀 {item_barcode}-{seq:05d} 的唯一来源。

    只允许通过 "UPDATE ... SET last_value = last_value + 1 RETURNING" 原子自增（行锁内），
    值只增不减、永不复用。
    """

    __tablename__ = "sequence_counters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    item_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("items.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )

    last_value: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )

    __table_args__ = (CheckConstraint("last_value >= 0", name="ck_sequence_counters_non_negative"),)

    def __repr__(self) -> str:
        return f"<SequenceCounter item={self.item_id} last={self.last_value}>"
