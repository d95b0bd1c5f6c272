# app/api/routers/inventory_schemas.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class _Base(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra="ignore")


class AvailableOut(_Base):
    item_id: int
    category: Optional[str] = None
    available: int


class InventoryRecordOut(_Base):
    id: int
    item_id: int
    location_id: int
    quantity: int
    status: str
    last_updated: datetime


class LowStockOut(_Base):
    item_id: int
    code: str
    name: str
    total_quantity: int
    threshold: int


class ReceiveIn(_Base):
    item_id: int
    location_id: int
    quantity: int
    ref: str = Field(..., min_length=1, max_length=128, description="入库业务引用（收货单号等）")


class AdjustOut(_Base):
    record_id: int
    item_id: int
    location_id: int
    before: int
    delta: int
    after: int
    location_capacity: int


class MoveIn(_Base):
    item_id: int
    from_location_id: int
    to_location_id: int
    quantity: int
    ref: Optional[str] = Field(default=None, max_length=128)


class MoveOut(_Base):
    ref: str
    source: AdjustOut
    destination: AdjustOut
