# app/models/stock_aggregate.py
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, ForeignKey, Integer, UniqueConstraint, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.utils.time import utc_now

if TYPE_CHECKING:
    from .item import Item
    from .location import Location


class StockAggregate(Base):
    """
    (item, location) 维度的库存桶。

    - quantity / added_at 是单件的投影：只由重算写入（= 在库单件数 / 最早 added_at），
      与单件变更处于同一事务
    - 桶内最后一个单件移除时同步删除本行；任意时刻 (item_id, location_id) 至多一行
    - 桶不持有单件列表，单件通过 aggregate_id 反向引用（ON DELETE CASCADE）
    - quantity > 0 但没有单件的行只可能来自单件追踪之前的老数据，见 legacy_backfill
    """

    __tablename__ = "stock_aggregates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    item_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("items.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    location_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("locations.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )
    added_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        server_default=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("item_id", "location_id", name="uq_stock_aggregates_item_location"),
    )

    item: Mapped["Item"] = relationship("Item", lazy="selectin")
    location: Mapped["Location"] = relationship("Location", lazy="selectin")

    def __repr__(self) -> str:
        return (
            f"<StockAggregate id={self.id} item={self.item_id} "
            f"loc={self.location_id} qty={self.quantity}>"
        )
