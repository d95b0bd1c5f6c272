# app/services/audit_writer.py
from __future__ import annotations

import json
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.audit import Actor
from app.models.audit_event import AuditEvent

logger = logging.getLogger("wms.audit")


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    raise TypeError(f"unsupported audit payload value: {type(value).__name__}")


class AuditEventWriter:
    """
    统一审计写入器：

    - 唯一职责：往 audit_events 加一行（与业务写入同一事务，随业务一起提交/回滚）。
    - 语义约定：
        * action      = 动作名（PICKING_GENERATED / SO_SHIPPED ...）
        * entity_type = 实体类型，entity_id = 主键
        * before / after = 变更前后快照（只放标量与简单结构）
        * actor       = 显式传入的操作人
        * trace_id    = 链路 ID
    - 快照无法序列化时不影响主流程：降级为日志。
    """

    @staticmethod
    async def write(
        session: AsyncSession,
        *,
        action: str,
        entity_type: str,
        entity_id: int,
        actor: Actor,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
        trace_id: Optional[str] = None,
    ) -> None:
        try:
            before_json = _jsonable(before) if before is not None else None
            after_json = _jsonable(after) if after is not None else None
        except TypeError as e:
            logger.debug("audit payload not serializable: %s", e)
            logger.info(
                "[audit-fallback] %s | %s#%s | actor=%s | before=%r | after=%r",
                action,
                entity_type,
                entity_id,
                actor.label,
                before,
                after,
            )
            return

        session.add(
            AuditEvent(
                action=action,
                entity_type=entity_type,
                entity_id=int(entity_id),
                before=before_json,
                after=after_json,
                actor_id=actor.actor_id,
                actor_name=actor.name,
                trace_id=trace_id,
            )
        )
        logger.debug(
            "audit %s %s#%s by %s: %s",
            action,
            entity_type,
            entity_id,
            actor.label,
            json.dumps(after_json, ensure_ascii=False) if after_json is not None else "-",
        )
