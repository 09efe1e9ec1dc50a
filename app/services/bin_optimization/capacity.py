"""
Capacity and 3D-fit validation for putaway.

The geometric check compares sorted item dimensions against sorted bin
dimensions. It rejects items that can never fit in any axis-aligned
orientation; it does not attempt true 3D packing.
"""

from typing import List, Optional, Sequence, Tuple

from app.schemas.bin_optimization import (
    BinCapacity,
    CapacityFailureType,
    CapacityValidation,
    ItemDimensions,
)


def _bin_dimensions(location: BinCapacity) -> Optional[Tuple[float, float, float]]:
    """Bin L/W/H, or None when any dimension is unset."""
    dims = (location.length_inches, location.width_inches, location.height_inches)
    if any(d is None or d <= 0 for d in dims):
        return None
    return dims


def dimensions_fit(
    item_dims: Sequence[float],
    bin_dims: Sequence[float],
    allow_rotation: bool = True,
) -> bool:
    """
    Check whether item dimensions fit bin dimensions.

    With rotation the three dimensions are compared largest-to-largest;
    without it they must fit axis for axis.
    """
    if allow_rotation:
        item_sorted = sorted(item_dims, reverse=True)
        bin_sorted = sorted(bin_dims, reverse=True)
        return all(i <= b for i, b in zip(item_sorted, bin_sorted))
    return all(i <= b for i, b in zip(item_dims, bin_dims))


def check_3d_fit(
    item: ItemDimensions,
    location: BinCapacity,
    allow_rotation: bool = True,
) -> bool:
    """
    Geometric fit of one unit in a location.

    Locations without geometry always pass; cubic and weight checks
    still apply in validate_capacity.
    """
    bin_dims = _bin_dimensions(location)
    if bin_dims is None:
        return True
    item_dims = (item.length_inches, item.width_inches, item.height_inches)
    return dimensions_fit(item_dims, bin_dims, allow_rotation)


def validate_capacity(
    location: BinCapacity,
    item: ItemDimensions,
    quantity: float,
    allow_rotation: bool = True,
) -> CapacityValidation:
    """
    Validate a lot against a location's remaining capacity.

    Dimension, cubic and weight checks are evaluated independently and
    all three must pass for can_fit.
    """
    required_cubic = item.cubic_feet * quantity
    required_weight = (item.weight_lbs_per_unit or 0.0) * quantity
    reasons: List[str] = []

    dimension_ok = check_3d_fit(item, location, allow_rotation)
    if not dimension_ok:
        reasons.append(
            f"Item dimensions ({item.length_inches:g}x{item.width_inches:g}x{item.height_inches:g} in) "
            f"do not fit in bin ({location.length_inches:g}x{location.width_inches:g}x"
            f"{location.height_inches:g} in)"
        )

    cubic_ok = location.available_cubic_feet >= required_cubic
    if not cubic_ok:
        reasons.append(
            f"Insufficient cubic capacity: need {required_cubic:.2f} cf, "
            f"have {location.available_cubic_feet:.2f} cf"
        )

    weight_ok = location.available_weight_lbs >= required_weight
    if not weight_ok:
        reasons.append(
            f"Insufficient weight capacity: need {required_weight:.2f} lbs, "
            f"have {location.available_weight_lbs:.2f} lbs"
        )

    return CapacityValidation(
        can_fit=dimension_ok and cubic_ok and weight_ok,
        dimension_check=dimension_ok,
        cubic_check=cubic_ok,
        weight_check=weight_ok,
        violation_reasons=reasons,
        required_cubic_feet=required_cubic,
        required_weight_lbs=required_weight,
        available_cubic_feet=location.available_cubic_feet,
        available_weight_lbs=location.available_weight_lbs,
    )


def overflow_percentage(required: float, available: float) -> float:
    """How far required exceeds available, as % of available (100 when none is available)."""
    if required <= available:
        return 0.0
    if available <= 0:
        return 100.0
    return (required - available) / available * 100


def capacity_failure_type(validation: CapacityValidation) -> CapacityFailureType:
    """Classify a failed validation."""
    if not validation.cubic_check and not validation.weight_check:
        return CapacityFailureType.BOTH_EXCEEDED
    if not validation.cubic_check:
        return CapacityFailureType.CUBIC_FEET_EXCEEDED
    if not validation.weight_check:
        return CapacityFailureType.WEIGHT_EXCEEDED
    return CapacityFailureType.DIMENSION_MISMATCH
