"""
Tests for cross-dock urgency classification and detection.
"""

from datetime import date, timedelta

import pytest

from app.models.order import SalesOrder, SalesOrderLine
from app.schemas.bin_optimization import CrossDockUrgency
from app.services.bin_optimization.cross_dock import CrossDockDetector, classify_urgency
from tests.helpers import make_bin, make_item

TODAY = date(2026, 3, 2)


@pytest.mark.parametrize("days,priority,expected", [
    (0, "NORMAL", CrossDockUrgency.CRITICAL),
    (-1, "LOW", CrossDockUrgency.CRITICAL),
    (1, "NORMAL", CrossDockUrgency.HIGH),
    (2, "URGENT", CrossDockUrgency.HIGH),
    (2, "NORMAL", CrossDockUrgency.MEDIUM),
    (3, "URGENT", CrossDockUrgency.NONE),
])
def test_classify_urgency(days, priority, expected):
    assert classify_urgency(days, priority) == expected


async def add_order(db, tenant, facility_id, material, ship_in_days, ordered=5.0, priority="NORMAL",
                    status="RELEASED", number="SO-1"):
    order = SalesOrder(
        tenant_id=tenant.id,
        facility_id=facility_id,
        order_number=number,
        priority=priority,
        status=status,
        requested_ship_date=TODAY + timedelta(days=ship_in_days) if ship_in_days is not None else None,
    )
    db.add(order)
    await db.flush()
    db.add(SalesOrderLine(
        tenant_id=tenant.id,
        sales_order_id=order.id,
        material_id=material.id,
        quantity_ordered=ordered,
    ))
    await db.flush()
    return order


async def test_same_day_demand_is_critical(db, tenant, facility_id, make_material):
    material = await make_material()
    await add_order(db, tenant, facility_id, material, ship_in_days=0)

    result = await CrossDockDetector(db).detect(material.id, 10, tenant.id, received_at=TODAY)

    assert result.should_cross_dock is True
    assert result.urgency == CrossDockUrgency.CRITICAL.value
    assert result.order_number == "SO-1"
    assert result.days_until_ship == 0


async def test_two_day_demand_is_medium(db, tenant, facility_id, make_material):
    material = await make_material()
    await add_order(db, tenant, facility_id, material, ship_in_days=2)

    result = await CrossDockDetector(db).detect(material.id, 10, tenant.id, received_at=TODAY)

    assert result.should_cross_dock is True
    assert result.urgency == CrossDockUrgency.MEDIUM.value


async def test_no_open_demand(db, tenant, facility_id, make_material):
    material = await make_material()
    await add_order(db, tenant, facility_id, material, ship_in_days=0, status="SHIPPED")

    result = await CrossDockDetector(db).detect(material.id, 10, tenant.id, received_at=TODAY)

    assert result.should_cross_dock is False
    assert result.urgency == CrossDockUrgency.NONE.value
    assert result.reason == "No pending orders"


async def test_demand_larger_than_receipt_is_not_cross_docked(db, tenant, facility_id, make_material):
    material = await make_material()
    await add_order(db, tenant, facility_id, material, ship_in_days=0, ordered=50)

    result = await CrossDockDetector(db).detect(material.id, 10, tenant.id, received_at=TODAY)

    assert result.should_cross_dock is False
    assert "exceeds received quantity" in result.reason


async def test_urgent_priority_wins_over_earlier_date(db, tenant, facility_id, make_material):
    material = await make_material()
    await add_order(db, tenant, facility_id, material, ship_in_days=1, number="SO-NORMAL")
    await add_order(db, tenant, facility_id, material, ship_in_days=2, priority="URGENT", number="SO-URGENT")

    result = await CrossDockDetector(db).detect(material.id, 10, tenant.id, received_at=TODAY)

    assert result.order_number == "SO-URGENT"
    assert result.urgency == CrossDockUrgency.HIGH.value


async def test_other_tenant_demand_is_ignored(db, tenant, other_tenant, facility_id, make_material):
    material = await make_material()
    await add_order(db, other_tenant, facility_id, material, ship_in_days=0)

    result = await CrossDockDetector(db).detect(material.id, 10, tenant.id, received_at=TODAY)
    assert result.should_cross_dock is False


def test_staging_selection_prefers_most_free_space():
    small = make_bin(total=20, location_code="STG-1", location_type="STAGING")
    large = make_bin(total=80, location_code="STG-2", location_type="STAGING")

    selection = CrossDockDetector.select_staging_location([small, large], make_item(cubic=1.0), 10)

    assert selection is not None
    staging, validation = selection
    assert staging is large
    assert validation.can_fit is True


def test_staging_selection_returns_none_when_nothing_fits():
    tiny = make_bin(total=2, location_code="STG-1", location_type="STAGING")
    assert CrossDockDetector.select_staging_location([tiny], make_item(cubic=1.0), 10) is None
