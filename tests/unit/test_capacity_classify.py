from datetime import date

import pytest

from app.models.enums import CapacityStatus
from app.models.location import Location, classify_capacity
from app.services.doc_numbers import format_picking_number, format_so_number


@pytest.mark.parametrize(
    "current,maximum,expected",
    [
        (0, 100, CapacityStatus.AVAILABLE),
        (49, 100, CapacityStatus.AVAILABLE),
        (50, 100, CapacityStatus.HALF),
        (79, 100, CapacityStatus.HALF),
        (80, 100, CapacityStatus.NEAR_FULL),
        (99, 100, CapacityStatus.NEAR_FULL),
        (100, 100, CapacityStatus.FULL),
    ],
)
def test_classify_capacity_thresholds(current, maximum, expected):
    assert classify_capacity(current, maximum) == expected


def test_classify_capacity_custom_ratios():
    assert classify_capacity(70, 100, near_full_ratio=0.7) == CapacityStatus.NEAR_FULL
    assert classify_capacity(30, 100, half_ratio=0.3) == CapacityStatus.HALF


def test_location_derived_fields_follow_current_capacity():
    loc = Location(code="A-01", name="A-01", category="Storage", max_capacity=40, current_capacity=10)
    assert loc.is_full is False
    assert loc.available_capacity == 30
    assert loc.capacity_percentage == 25.0

    loc.current_capacity = 40
    assert loc.is_full is True
    assert loc.available_capacity == 0
    assert loc.capacity_status() == CapacityStatus.FULL


def test_doc_number_formats():
    d = date(2024, 3, 7)
    assert format_picking_number(d, 1) == "PKG-2024-03-07-001"
    assert format_picking_number(d, 12) == "PKG-2024-03-07-012"
    assert format_so_number(d, 3) == "SO-20240307-003"
