# app/services/picking_types.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class PickResult:
    detail_id: int
    picking_id: int
    quantity_picked: int
    quantity_required: int
    remaining_quantity: int
    detail_status: str
    picking_status: str


@dataclass
class CompletionResult:
    """
    完成结果：

    - has_short_lines：存在未拣满的明细（允许完成，但需要告警）
    - short_detail_ids：未拣满明细 id
    """

    picking_id: int
    status: str
    sales_order_id: int
    sales_order_status: str
    total_required: int
    total_picked: int
    completion_percentage: float
    has_short_lines: bool
    short_detail_ids: List[int] = field(default_factory=list)


@dataclass
class RestoredLine:
    detail_id: int
    item_id: int
    location_id: int
    quantity: int


@dataclass
class CancelResult:
    picking_id: int
    status: str
    sales_order_id: int
    sales_order_status: str
    restored_quantity: int
    restored: List[RestoredLine] = field(default_factory=list)


@dataclass
class PickingDetailView:
    id: int
    sales_order_line_id: int
    item_id: int
    location_id: int
    quantity_required: int
    quantity_picked: int
    remaining_quantity: int
    status: str


@dataclass
class PickingSummary:
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
    details: List[PickingDetailView]
    completed_at: Optional[str] = None
    cancelled_at: Optional[str] = None


@dataclass(frozen=True)
class PickLine:
    detail_id: int
    quantity: int


@dataclass
class BulkPickResult:
    picking_id: int
    picking_status: str
    total_quantity: int
    results: List[PickResult] = field(default_factory=list)
