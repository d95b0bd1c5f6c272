# app/models/enums.py
from __future__ import annotations

from enum import StrEnum


class LocationCategory(StrEnum):
    """
    库位类别：

    - STORAGE  存储位（拣货分配只从这里取）
    - OTHER    非存储位（收货暂存 / 发货待运 holding 区等）
    """

    STORAGE = "Storage"
    OTHER = "Other"


class CapacityStatus(StrEnum):
    FULL = "FULL"
    NEAR_FULL = "NEAR_FULL"
    HALF = "HALF"
    AVAILABLE = "AVAILABLE"


class InventoryStatus(StrEnum):
    AVAILABLE = "Available"
    EMPTY = "Empty"


class PickingStatus(StrEnum):
    """
    拣货单状态机：

        Pending --pick--> InProgress --complete--> Completed
        Pending|InProgress --cancel--> Cancelled
    """

    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


# 在途（可继续拣货）的拣货单；“存活”拣货单 = 非 Cancelled（含 Completed）
OPEN_PICKING_STATUSES = (PickingStatus.PENDING, PickingStatus.IN_PROGRESS)


class PickingDetailStatus(StrEnum):
    PENDING = "Pending"
    PARTIALLY_PICKED = "PartiallyPicked"
    COMPLETED = "Completed"


class SalesOrderStatus(StrEnum):
    """
    销售单状态机：

        Pending --generate picking--> InProgress --complete picking--> Picked --ship--> Shipped
        Pending|InProgress --cancel--> Cancelled
    """

    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    PICKED = "Picked"
    SHIPPED = "Shipped"
    CANCELLED = "Cancelled"


class MovementType(StrEnum):
    """
    库存台账 stock_ledger.reason：

    - RECEIPT       入库 / 上架
    - PICK          拣货扣减（存储位）
    - PICK_CANCEL   取消拣货回补
    - SHIPMENT      发货扣减（holding 位）
    - TRANSFER_OUT  移库转出
    - TRANSFER_IN   移库转入
    - ADJUSTMENT    手工纠偏
    """

    RECEIPT = "RECEIPT"
    PICK = "PICK"
    PICK_CANCEL = "PICK_CANCEL"
    SHIPMENT = "SHIPMENT"
    TRANSFER_OUT = "TRANSFER_OUT"
    TRANSFER_IN = "TRANSFER_IN"
    ADJUSTMENT = "ADJUSTMENT"
