# app/db/base.py
from __future__ import annotations

import importlib
import logging
from datetime import datetime, timezone
from typing import List

from sqlalchemy.orm import DeclarativeBase, configure_mappers

log = logging.getLogger("wms.models")


class Base(DeclarativeBase):
    """全局唯一 ORM Base"""

    pass


_INITIALIZED: bool = False  # 防重复初始化

# 显式导入顺序：被引用的表在前（字符串关系目标类必须已注册）
MODEL_MODULES = [
    "app.models.item",
    "app.models.location",
    "app.models.inventory",
    "app.models.stock_ledger",
    "app.models.sales_order",
    "app.models.picking",
    "app.models.audit_event",
]


def init_models(*, force: bool = False) -> None:
    """
    集中导入模型 + 固化关系映射：
      1) 按 MODEL_MODULES 导入（任一失败直接抛出，暴露模型问题）
      2) configure_mappers()
    """
    global _INITIALIZED
    if _INITIALIZED and not force:
        return

    loaded: List[str] = []
    for mod in MODEL_MODULES:
        importlib.import_module(mod)
        loaded.append(mod)

    configure_mappers()
    _INITIALIZED = True
    log.info("ORM models initialized & mappers configured (loaded %d modules)", len(loaded))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
