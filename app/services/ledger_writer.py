# app/services/ledger_writer.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.stock_ledger import StockLedger


def write_ledger(
    session: AsyncSession,
    *,
    item_id: int,
    location_id: int,
    reason: str,
    delta: int,
    after_qty: int,
    ref: str,
    ref_line: int = 1,
    actor: Optional[str] = None,
    occurred_at: Optional[datetime] = None,
    trace_id: Optional[str] = None,
) -> StockLedger:
    """
    台账写入（只增）：加入当前 session，由调用方 flush/提交。
    调用方保证与库存余额更新处于同一事务。
    """
    row = StockLedger(
        item_id=int(item_id),
        location_id=int(location_id),
        reason=str(reason),
        ref=str(ref),
        ref_line=int(ref_line),
        delta=int(delta),
        after_qty=int(after_qty),
        actor=actor,
        trace_id=trace_id,
    )
    if occurred_at is not None:
        row.occurred_at = occurred_at
    session.add(row)
    return row
