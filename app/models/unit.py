# app/models/unit.py
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.utils.time import storage_days, utc_now

if TYPE_CHECKING:
    from .pool_barcode import PoolBarcode


class Unit(Base):
    """
    单件：一件实物 = 一行。

    - 归属唯一的 StockAggregate（随桶级联删除）
    - 生命周期内独占一个 PoolBarcode（销毁时释放回池，不删条码）
    - (item_id, sequence_number) 唯一；legacy 条码序号为 1，其余取生成条码的数字后缀
    - added_at 是实物进入追踪的时间，移库时原样保留
    """

    __tablename__ = "units"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    item_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("items.id", ondelete="RESTRICT"),
        nullable=False,
    )
    location_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("locations.id", ondelete="RESTRICT"),
        nullable=False,
    )
    aggregate_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("stock_aggregates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    pool_barcode_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("pool_barcodes.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )

    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        server_default=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("item_id", "sequence_number", name="uq_units_item_sequence"),
        Index("ix_units_location_item", "location_id", "item_id"),
        Index("ix_units_added_at", "added_at"),
    )

    pool_barcode: Mapped["PoolBarcode"] = relationship("PoolBarcode", lazy="selectin")

    @property
    def barcode(self) -> str:
        return self.pool_barcode.barcode

    @property
    def storage_days(self) -> float:
        return storage_days(self.added_at)

    def __repr__(self) -> str:
        return (
            f"<Unit id={self.id} item={self.item_id} seq={self.sequence_number} "
            f"agg={self.aggregate_id}>"
        )
