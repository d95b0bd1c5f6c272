# app/models/stock_ledger.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, utcnow


class StockLedger(Base):
    """
    库存台账（只增不改）：每次 InventoryLedgerService.adjust 落一行。

    - delta / after_qty：件数级变动与变动后余额
    - reason：MovementType
    - ref / ref_line：业务引用（拣货单号 / 销售单号 / MOVE-xxx 等）
    - actor / trace_id：审计归属与链路
    """

    __tablename__ = "stock_ledger"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)

    item_id: Mapped[int] = mapped_column(sa.Integer, nullable=False, index=True)
    location_id: Mapped[int] = mapped_column(sa.Integer, nullable=False, index=True)

    reason: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    ref: Mapped[str] = mapped_column(sa.String(128), nullable=False)
    ref_line: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=1)

    delta: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    after_qty: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    actor: Mapped[Optional[str]] = mapped_column(sa.String(128), nullable=True)
    trace_id: Mapped[Optional[str]] = mapped_column(sa.String(64), nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        sa.Index("ix_stock_ledger_ref", "ref"),
        sa.Index("ix_stock_ledger_item_loc_time", "item_id", "location_id", "occurred_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<StockLedger id={self.id} item={self.item_id} loc={self.location_id} "
            f"reason={self.reason} delta={self.delta} after={self.after_qty}>"
        )
