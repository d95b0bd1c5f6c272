# app/models/picking.py
from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

import sqlalchemy as sa
from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, utcnow
from app.models.enums import PickingDetailStatus, PickingStatus


class Picking(Base):
    """
    拣货单（一张销售单至多一张未取消的拣货单，DB 部分唯一索引兜底）。
    """

    __tablename__ = "pickings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    picking_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)

    sales_order_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("sales_orders.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=PickingStatus.PENDING.value
    )
    picking_date: Mapped[date] = mapped_column(Date, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    created_by: Mapped[Optional[str]] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    details: Mapped[List["PickingDetail"]] = relationship(
        "PickingDetail",
        back_populates="picking",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="PickingDetail.id",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index(
            "uq_pickings_live_per_order",
            "sales_order_id",
            unique=True,
            postgresql_where=sa.text("status <> 'Cancelled'"),
            sqlite_where=sa.text("status <> 'Cancelled'"),
        ),
        Index("ix_pickings_status", "status"),
        Index("ix_pickings_picking_date", "picking_date"),
    )

    @property
    def total_required(self) -> int:
        return sum(int(d.quantity_required) for d in self.details or [])

    @property
    def total_picked(self) -> int:
        return sum(int(d.quantity_picked) for d in self.details or [])

    @property
    def completion_percentage(self) -> float:
        req = self.total_required
        if req <= 0:
            return 0.0
        return round(self.total_picked * 100.0 / req, 2)

    @property
    def is_open(self) -> bool:
        return self.status in (PickingStatus.PENDING.value, PickingStatus.IN_PROGRESS.value)

    def __repr__(self) -> str:
        return f"<Picking id={self.id} no={self.picking_number} so={self.sales_order_id} status={self.status}>"


class PickingDetail(Base):
    """
    拣货明细：一行 = (销售单行, 库位, 分配数量) 切片。

    - 0 <= quantity_picked <= quantity_required（DB 约束兜底）
    - status / remaining_quantity 为派生字段
    """

    __tablename__ = "picking_details"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    picking_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("pickings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sales_order_line_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("sales_order_lines.id", ondelete="RESTRICT"),
        nullable=False,
    )
    item_id: Mapped[int] = mapped_column(Integer, nullable=False)
    location_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("locations.id", ondelete="RESTRICT"),
        nullable=False,
    )

    quantity_required: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_picked: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    picking: Mapped[Picking] = relationship("Picking", back_populates="details")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("quantity_required > 0", name="ck_picking_details_required_positive"),
        CheckConstraint(
            "quantity_picked >= 0 AND quantity_picked <= quantity_required",
            name="ck_picking_details_picked_range",
        ),
        Index("ix_picking_details_item_location", "item_id", "location_id"),
    )

    @hybrid_property
    def remaining_quantity(self) -> int:
        return self.quantity_required - self.quantity_picked

    @hybrid_property
    def status(self) -> str:
        picked = int(self.quantity_picked or 0)
        if picked <= 0:
            return PickingDetailStatus.PENDING.value
        if picked >= int(self.quantity_required):
            return PickingDetailStatus.COMPLETED.value
        return PickingDetailStatus.PARTIALLY_PICKED.value

    @status.inplace.expression
    @classmethod
    def _status_expression(cls):
        return sa.case(
            (cls.quantity_picked <= 0, PickingDetailStatus.PENDING.value),
            (cls.quantity_picked >= cls.quantity_required, PickingDetailStatus.COMPLETED.value),
            else_=PickingDetailStatus.PARTIALLY_PICKED.value,
        )

    def __repr__(self) -> str:
        return (
            f"<PickingDetail id={self.id} picking={self.picking_id} item={self.item_id} "
            f"loc={self.location_id} {self.quantity_picked}/{self.quantity_required}>"
        )
