# app/models/sales_order.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, utcnow
from app.models.enums import SalesOrderStatus


class SalesOrder(Base):
    """
    销售单头：

    - holding_location_id：发货前的待运库位（必须是 Other 类别）
    - status 由拣货单的生成/完成与显式 ship/cancel 驱动
    - notes：取消原因等备注（上限 500）
    """

    __tablename__ = "sales_orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    so_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)

    customer_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    holding_location_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("locations.id", ondelete="RESTRICT"),
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=SalesOrderStatus.PENDING.value
    )
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0")
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    order_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    shipped_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    lines: Mapped[List["SalesOrderLine"]] = relationship(
        "SalesOrderLine",
        back_populates="sales_order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="SalesOrderLine.id",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_sales_orders_status", "status"),
        Index("ix_sales_orders_order_date", "order_date"),
    )

    def __repr__(self) -> str:
        return f"<SalesOrder id={self.id} no={self.so_number} status={self.status}>"


class SalesOrderLine(Base):
    __tablename__ = "sales_order_lines"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sales_order_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("sales_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    item_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("items.id", ondelete="RESTRICT"),
        nullable=False,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    sales_order: Mapped[SalesOrder] = relationship("SalesOrder", back_populates="lines")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_sales_order_lines_quantity_positive"),
    )

    def __repr__(self) -> str:
        return f"<SalesOrderLine id={self.id} so={self.sales_order_id} item={self.item_id} qty={self.quantity}>"
