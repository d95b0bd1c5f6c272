"""
统一导出 ORM 模型。
"""

from importlib import import_module


def _export(module_name: str, class_name: str) -> None:
    module = import_module(module_name)
    globals()[class_name] = getattr(module, class_name)


MODEL_SPECS = [
    # -------- 主数据 / 库位 --------
    ("app.models.item", "Item"),
    ("app.models.location", "Location"),
    # -------- 库存台账 --------
    ("app.models.inventory", "InventoryRecord"),
    ("app.models.stock_ledger", "StockLedger"),
    # -------- 销售单 / 拣货 --------
    ("app.models.sales_order", "SalesOrder"),
    ("app.models.sales_order", "SalesOrderLine"),
    ("app.models.picking", "Picking"),
    ("app.models.picking", "PickingDetail"),
    # -------- 审计 --------
    ("app.models.audit_event", "AuditEvent"),
]

for _mod, _cls in MODEL_SPECS:
    _export(_mod, _cls)

__all__ = [cls for _, cls in MODEL_SPECS]
