# app/models/item.py
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.utils.time import utc_now

if TYPE_CHECKING:
    from .category import Category


class Item(Base):
    """
    Item 主数据（items 表）：

        id              INTEGER PRIMARY KEY
        barcode         VARCHAR(64) UNIQUE NOT NULL   （ITM + 8 位，创建后不可变）
        name            VARCHAR(255) NOT NULL
        description     TEXT NULL
        category_id     INTEGER NULL REFERENCES categories(id) ON DELETE SET NULL
        total_quantity  INTEGER NOT NULL DEFAULT 0   （全部库位在库单件数的缓存）

    total_quantity 只由单件生命周期后的重算写入（整数重算，不做增量加减）。
    """

    __tablename__ = "items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    barcode: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    category_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("categories.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    total_quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        server_default=func.now(),
    )

    category: Mapped[Optional["Category"]] = relationship("Category", lazy="selectin")

    def __repr__(self) -> str:
        return f"<Item id={self.id} barcode={self.barcode!r} total={self.total_quantity}>"
