"""
Tests for the fragmentation index and consolidation suggestions.
"""

import pytest

from app.schemas.bin_optimization import FragmentationLevel
from app.services.bin_optimization.fragmentation import (
    BinFragmentationMonitor,
    classify_fragmentation,
    consolidation_priority,
    fragmentation_index,
)


@pytest.mark.parametrize("index,expected", [
    (1.0, FragmentationLevel.LOW),
    (1.49, FragmentationLevel.LOW),
    (1.5, FragmentationLevel.MODERATE),
    (2.0, FragmentationLevel.HIGH),
    (2.99, FragmentationLevel.HIGH),
    (3.0, FragmentationLevel.SEVERE),
])
def test_classification_boundaries(index, expected):
    assert classify_fragmentation(index) == expected


def test_index_without_free_space():
    assert fragmentation_index([]) == 1.0
    assert fragmentation_index([0.0, 0.0]) == 1.0


def test_index_is_total_over_largest():
    assert fragmentation_index([40.0, 20.0, 20.0]) == pytest.approx(2.0)


def test_consolidation_priority():
    assert consolidation_priority(25) == "HIGH"
    assert consolidation_priority(10) == "MEDIUM"
    assert consolidation_priority(3) == "LOW"


async def fragmented_facility(make_location):
    """Three bins with 40, 20 and 20 cf free, plus one inactive bin."""
    await make_location(location_code="R-01", used_cubic_feet=60.0)
    await make_location(location_code="R-02", used_cubic_feet=80.0)
    await make_location(location_code="R-03", used_cubic_feet=80.0)
    await make_location(location_code="R-99", is_active=False)


async def test_facility_fragmentation(db, tenant, facility_id, make_location):
    await fragmented_facility(make_location)

    metrics = await BinFragmentationMonitor(db).calculate_facility_fragmentation(tenant.id, facility_id)

    assert metrics.total_available_cubic_feet == pytest.approx(80.0)
    assert metrics.largest_available_cubic_feet == pytest.approx(40.0)
    assert metrics.fragmentation_level == FragmentationLevel.HIGH.value
    assert metrics.requires_consolidation is True
    assert metrics.location_count == 3


async def test_zone_fragmentation(db, tenant, facility_id, make_location):
    await make_location(zone_code="Z1", used_cubic_feet=50.0)
    await make_location(zone_code="Z2", used_cubic_feet=90.0)

    metrics = await BinFragmentationMonitor(db).calculate_facility_fragmentation(
        tenant.id, facility_id, zone_code="Z2"
    )
    assert metrics.total_available_cubic_feet == pytest.approx(10.0)
    assert metrics.fragmentation_level == FragmentationLevel.LOW.value


async def test_split_material_gets_consolidation_move(db, tenant, facility_id, make_location, make_material, make_lot):
    big = await make_location(location_code="R-01", used_cubic_feet=5.0)
    small = await make_location(location_code="R-02", used_cubic_feet=3.0)
    target = await make_location(location_code="R-03", cubic_feet=10.0)
    await make_location(location_code="R-04", cubic_feet=500.0)
    material = await make_material()
    await make_lot(material, big, quantity=5)
    await make_lot(material, small, quantity=3)

    opportunities = await BinFragmentationMonitor(db).identify_consolidation_opportunities(tenant.id, facility_id)

    assert len(opportunities) == 1
    move = opportunities[0]
    assert move.source_location_codes == ["R-02"]
    assert move.target_location_id == target.id
    assert move.quantity_to_move == 3
    assert move.total_cubic_feet == pytest.approx(8.0)
    assert move.space_recovered_cubic_feet == pytest.approx(3.0)
    assert move.estimated_labor_hours == pytest.approx(0.1)
    assert move.priority == "LOW"


async def test_single_location_material_is_left_alone(db, tenant, facility_id, make_location, make_material, make_lot):
    location = await make_location()
    await make_location()
    material = await make_material()
    await make_lot(material, location, quantity=50)

    assert await BinFragmentationMonitor(db).identify_consolidation_opportunities(tenant.id, facility_id) == []


async def test_check_and_alert_records_history(db, tenant, facility_id, make_location):
    await fragmented_facility(make_location)
    monitor = BinFragmentationMonitor(db)

    outcome = await monitor.check_and_alert(tenant.id, facility_id)

    assert outcome["alert"] is True
    assert outcome["metrics"].fragmentation_index == pytest.approx(2.0)
    assert outcome["consolidation_opportunities"] == []
    assert outcome["estimated_space_recovery"] == 0

    history = await monitor.get_fragmentation_history(tenant.id, facility_id)
    assert len(history) == 1
    assert history[0].fragmentation_level == FragmentationLevel.HIGH.value
