# app/models/audit_event.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

import sqlalchemy as sa
from sqlalchemy import DateTime, Index, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, utcnow

# PG 下落 JSONB，其余方言（sqlite 测试）落 JSON
JsonType = sa.JSON().with_variant(JSONB(), "postgresql")


class AuditEvent(Base):
    """
    审计事件 audit_events：

      - action:      动作（PICKING_GENERATED / PICK_RECORDED / SO_SHIPPED ...）
      - entity_type: 实体类型（Picking / PickingDetail / SalesOrder / Location）
      - entity_id:   实体主键
      - before/after: 变更前后快照（JSON）
      - actor_*:     操作人
      - trace_id:    链路 ID
    """

    __tablename__ = "audit_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_id: Mapped[int] = mapped_column(Integer, nullable=False)

    before: Mapped[Optional[Dict[str, Any]]] = mapped_column(JsonType, nullable=True)
    after: Mapped[Optional[Dict[str, Any]]] = mapped_column(JsonType, nullable=True)

    actor_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    actor_name: Mapped[str] = mapped_column(String(128), nullable=False)
    trace_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        Index("ix_audit_events_entity", "entity_type", "entity_id"),
        Index("ix_audit_events_trace_id", "trace_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<AuditEvent id={self.id} action={self.action} "
            f"{self.entity_type}#{self.entity_id} trace_id={self.trace_id}>"
        )
