# app/api/routers/sales_orders_schemas.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _Base(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra="ignore")


class SalesOrderLineIn(_Base):
    item_id: int
    quantity: int
    unit_price: Optional[Decimal] = Field(default=None, description="缺省取商品标准价")


class SalesOrderCreateIn(_Base):
    customer_id: int
    holding_location_id: int
    lines: List[SalesOrderLineIn] = Field(..., min_length=1)
    notes: Optional[str] = None


class SalesOrderLineOut(_Base):
    id: int
    item_id: int
    quantity: int
    unit_price: Decimal
    total_price: Decimal


class SalesOrderOut(_Base):
    id: int
    so_number: str
    customer_id: int
    holding_location_id: int
    status: str
    total_amount: Decimal
    notes: Optional[str] = None
    order_date: datetime
    shipped_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    lines: List[SalesOrderLineOut] = Field(default_factory=list)


class SalesOrderCancelIn(_Base):
    reason: str = Field(..., description="取消原因（1..500 字符）")


class SalesOrderCancelOut(_Base):
    sales_order_id: int
    status: str
    notes: str
    picking_id: Optional[int] = None
    restored_quantity: int = 0


class ShippedLineOut(_Base):
    item_id: int
    quantity: int
    remaining_at_holding: int


class ShipOut(_Base):
    sales_order_id: int
    so_number: str
    status: str
    holding_location_id: int
    lines: List[ShippedLineOut] = Field(default_factory=list)
