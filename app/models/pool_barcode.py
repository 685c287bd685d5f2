# app/models/pool_barcode.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, false, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.utils.time import utc_now


class PoolBarcode(Base):
    """
    单件条码池（按 Item 分池，可回收复用）

    两种形态只按取值区分，不落标志位：
    - legacy：barcode == items.barcode（单件追踪之前的老标签，序号固定为 1）
    - generated：barcode == f"{items.barcode}-{seq:05d}"，seq 来自 sequence_counters

    生命周期：in_use false → true（分配）→ false（释放）；永不删除。
    barcode 全局唯一（跨 Item）。
    """

    __tablename__ = "pool_barcodes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    item_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("items.id", ondelete="RESTRICT"),
        nullable=False,
    )

    barcode: Mapped[str] = mapped_column(String(80), nullable=False, unique=True)

    in_use: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        server_default=func.now(),
    )
    last_used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_pool_barcodes_item_in_use", "item_id", "in_use"),)

    def __repr__(self) -> str:
        return f"<PoolBarcode id={self.id} item={self.item_id} barcode={self.barcode!r} in_use={self.in_use}>"
