# app/api/routers/picking_schemas.py
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _Base(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra="ignore")


class SuggestionIn(_Base):
    item_id: int
    quantity: int = Field(..., description="需要的数量（必须为正）")


class SuggestionOut(_Base):
    location_id: int
    location_code: str
    quantity_allocated: int
    location_available: int


class GeneratePickingOut(_Base):
    picking_id: int
    picking_number: str
    sales_order_id: int
    detail_count: int


class RecordPickIn(_Base):
    quantity: int = Field(..., description="本次拣货数量（1..剩余数量）")


class PickResultOut(_Base):
    detail_id: int
    picking_id: int
    quantity_picked: int
    quantity_required: int
    remaining_quantity: int
    detail_status: str
    picking_status: str


class PickLineIn(_Base):
    detail_id: int
    quantity: int = Field(..., ge=0, description="本次拣货数量；0 表示跳过该行")


class RecordPicksIn(_Base):
    picks: List[PickLineIn] = Field(..., min_length=1)


class BulkPickOut(_Base):
    picking_id: int
    picking_status: str
    total_quantity: int
    results: List[PickResultOut] = Field(default_factory=list)


class CompletionOut(_Base):
    picking_id: int
    status: str
    sales_order_id: int
    sales_order_status: str
    total_required: int
    total_picked: int
    completion_percentage: float
    has_short_lines: bool
    short_detail_ids: List[int] = Field(default_factory=list)


class CancelPickingIn(_Base):
    reopen_order: bool = Field(default=False, description="True：销售单回到 Pending；False：一并取消销售单")
    reason: Optional[str] = Field(default=None, max_length=500)


class RestoredLineOut(_Base):
    detail_id: int
    item_id: int
    location_id: int
    quantity: int


class CancelPickingOut(_Base):
    picking_id: int
    status: str
    sales_order_id: int
    sales_order_status: str
    restored_quantity: int
    restored: List[RestoredLineOut] = Field(default_factory=list)


class PickingDetailOut(_Base):
    id: int
    sales_order_line_id: int
    item_id: int
    location_id: int
    quantity_required: int
    quantity_picked: int
    remaining_quantity: int
    status: str


class PickingSummaryOut(_Base):
    id: int
    picking_number: str
    sales_order_id: int
    status: str
    total_required: int
    total_picked: int
    completion_percentage: float
    location_count: int
    item_count: int
    has_short_lines: bool
    details: List[PickingDetailOut]
    completed_at: Optional[str] = None
    cancelled_at: Optional[str] = None
