# app/api/routers/locations_schemas.py
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class _Base(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra="ignore")


class LocationCreateIn(_Base):
    code: str = Field(..., min_length=1, max_length=64)
    name: str = Field(default="", max_length=128)
    category: str = Field(default="Storage", description="Storage / Other")
    max_capacity: int
    is_active: bool = True


class LocationCapacityOut(_Base):
    location_id: int
    code: str
    category: str
    current_capacity: int
    max_capacity: int
    available_capacity: int
    capacity_percentage: float
    capacity_status: str
    is_full: bool


class CapacityDriftOut(_Base):
    location_id: int
    code: str
    stored_capacity: int
    actual_capacity: int


class RecomputeOut(_Base):
    location_id: int
    current_capacity: int


class UtilizationOut(_Base):
    total_locations: int
    full_locations: int
    near_full_locations: int
    total_capacity: int
    used_capacity: int
    utilization_percentage: float
