# app/models/location.py
from __future__ import annotations

from datetime import datetime

import sqlalchemy as sa
from sqlalchemy import Boolean, CheckConstraint, DateTime, Index, Integer, String
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, utcnow
from app.models.enums import CapacityStatus, LocationCategory


def classify_capacity(
    current: int,
    maximum: int,
    *,
    near_full_ratio: float = 0.8,
    half_ratio: float = 0.5,
) -> CapacityStatus:
    """容量分级：FULL / NEAR_FULL / HALF / AVAILABLE（纯函数）。"""
    if maximum <= 0 or current >= maximum:
        return CapacityStatus.FULL
    ratio = current / maximum
    if ratio >= near_full_ratio:
        return CapacityStatus.NEAR_FULL
    if ratio >= half_ratio:
        return CapacityStatus.HALF
    return CapacityStatus.AVAILABLE


class Location(Base):
    """
    库位：

    - category：Storage（存储位，参与拣货分配）/ Other（holding 等非存储位）
    - current_capacity 只能经由 LocationCapacityService 维护，
      恒等于该库位所有库存记录 quantity 之和
    - is_full / available_capacity / capacity_percentage 均为派生字段，不落库
    - version：乐观并发版本号
    """

    __tablename__ = "locations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    code: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    category: Mapped[str] = mapped_column(
        String(16), nullable=False, default=LocationCategory.STORAGE.value
    )

    max_capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    current_capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("max_capacity > 0", name="ck_locations_max_capacity_positive"),
        CheckConstraint("current_capacity >= 0", name="ck_locations_current_capacity_nonneg"),
        CheckConstraint("category IN ('Storage', 'Other')", name="ck_locations_category"),
        # code 在未删除库位中唯一
        Index(
            "uq_locations_code_live",
            "code",
            unique=True,
            postgresql_where=sa.text("is_deleted = false"),
            sqlite_where=sa.text("is_deleted = 0"),
        ),
        Index("ix_locations_category", "category"),
    )

    @hybrid_property
    def is_full(self) -> bool:
        return self.current_capacity >= self.max_capacity

    @hybrid_property
    def available_capacity(self) -> int:
        return self.max_capacity - self.current_capacity

    @hybrid_property
    def capacity_percentage(self) -> float:
        return self.current_capacity * 100.0 / self.max_capacity

    def capacity_status(self, *, near_full_ratio: float = 0.8, half_ratio: float = 0.5) -> CapacityStatus:
        return classify_capacity(
            int(self.current_capacity),
            int(self.max_capacity),
            near_full_ratio=near_full_ratio,
            half_ratio=half_ratio,
        )

    def __repr__(self) -> str:
        return (
            f"<Location id={self.id} code={self.code!r} cat={self.category} "
            f"cap={self.current_capacity}/{self.max_capacity}>"
        )
