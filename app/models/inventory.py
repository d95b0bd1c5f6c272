# app/models/inventory.py
from __future__ import annotations

from datetime import datetime

import sqlalchemy as sa
from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, UniqueConstraint
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, utcnow
from app.models.enums import InventoryStatus


class InventoryRecord(Base):
    """
    库存记录：一个 (item_id, location_id) 的数量，台账的唯一真实来源。

    - quantity >= 0（DB 约束兜底）
    - status 为派生字段：quantity > 0 → Available，否则 Empty
    - last_updated：FIFO 排序依据（越早越先出），仅入库时刷新
    - version：乐观并发版本号
    """

    __tablename__ = "inventory_records"

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

    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("item_id", "location_id", name="uq_inventory_records_item_location"),
        CheckConstraint("quantity >= 0", name="ck_inventory_records_quantity_nonneg"),
        Index("ix_inventory_records_item_fifo", "item_id", "last_updated", "id"),
    )

    @hybrid_property
    def status(self) -> str:
        return (
            InventoryStatus.AVAILABLE.value
            if int(self.quantity or 0) > 0
            else InventoryStatus.EMPTY.value
        )

    @status.inplace.expression
    @classmethod
    def _status_expression(cls):
        return sa.case(
            (cls.quantity > 0, InventoryStatus.AVAILABLE.value),
            else_=InventoryStatus.EMPTY.value,
        )

    def __repr__(self) -> str:
        return (
            f"<InventoryRecord id={self.id} item={self.item_id} "
            f"loc={self.location_id} qty={self.quantity}>"
        )
