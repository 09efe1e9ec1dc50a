"""In-memory builders shared by the pure-function tests."""

import uuid

from app.schemas.bin_optimization import BinCapacity, ItemDimensions


def make_bin(total=100.0, used=0.0, max_weight=1000.0, weight=0.0, dims=(48.0, 48.0, 72.0), **extra):
    length, width, height = dims if dims else (None, None, None)
    return BinCapacity(
        location_id=extra.pop("location_id", None) or uuid.uuid4(),
        facility_id=extra.pop("facility_id", None) or uuid.uuid4(),
        location_code=extra.pop("location_code", "BIN-01"),
        location_type=extra.pop("location_type", "RESERVE"),
        total_cubic_feet=total,
        used_cubic_feet=used,
        available_cubic_feet=max(total - used, 0.0),
        max_weight_lbs=max_weight,
        current_weight_lbs=weight,
        available_weight_lbs=max(max_weight - weight, 0.0),
        utilization_percentage=used / total * 100 if total else 0.0,
        length_inches=length,
        width_inches=width,
        height_inches=height,
        **extra,
    )


def make_item(l=12.0, w=12.0, h=12.0, cubic=1.0, weight=5.0):
    return ItemDimensions(
        length_inches=l, width_inches=w, height_inches=h, cubic_feet=cubic, weight_lbs_per_unit=weight,
    )
