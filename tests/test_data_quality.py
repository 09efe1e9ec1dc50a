"""
Tests for capacity failure tracking and material data checks.
"""

import uuid

import pytest
from sqlalchemy import select

from app.models.bin_optimization import CapacityValidationFailureRecord, PutawayRecommendationHistory
from app.schemas.bin_optimization import CapacityFailureType, PlacementItem
from app.services.bin_optimization.capacity import validate_capacity
from app.services.bin_optimization.data_quality import DataQualityService, build_capacity_failure
from tests.helpers import make_bin, make_item


def placement(lot="L1", quantity=20):
    return PlacementItem(
        material_id=uuid.uuid4(),
        material_code="MAT-1",
        facility_id=uuid.uuid4(),
        lot_number=lot,
        quantity=quantity,
        dimensions=make_item(cubic=1.0, weight=5.0),
    )


def test_failure_carries_overflow_percentages():
    item = placement(quantity=20)
    location = make_bin(total=10.0)
    validation = validate_capacity(location, item.dimensions, item.quantity)

    failure = build_capacity_failure(
        uuid.uuid4(), item, CapacityFailureType.CUBIC_FEET_EXCEEDED, validation, location
    )

    assert failure.location_id == location.location_id
    assert failure.required_cubic_feet == pytest.approx(20.0)
    assert failure.available_cubic_feet == pytest.approx(10.0)
    assert failure.cubic_overflow_pct == pytest.approx(100.0)
    assert failure.weight_overflow_pct == 0.0
    assert failure.reasons


def test_failure_without_candidates():
    failure = build_capacity_failure(uuid.uuid4(), placement(), CapacityFailureType.NO_CANDIDATES)
    assert failure.location_id is None
    assert failure.reasons == []


async def test_record_failures(db, tenant):
    service = DataQualityService(db)
    failures = [
        build_capacity_failure(tenant.id, placement("L1"), CapacityFailureType.NO_CANDIDATES),
        build_capacity_failure(tenant.id, placement("L2"), CapacityFailureType.NO_CANDIDATES),
    ]

    assert await service.record_capacity_failures([]) == 0
    assert await service.record_capacity_failures(failures) == 2

    rows = (await db.execute(select(CapacityValidationFailureRecord))).scalars().all()
    assert {r.lot_number for r in rows} == {"L1", "L2"}
    assert rows[0].failure_type == CapacityFailureType.NO_CANDIDATES.value


def drop_failure_table(session):
    CapacityValidationFailureRecord.__table__.drop(session.connection())


async def test_failed_recording_keeps_pending_work(db, tenant, facility_id):
    db.add(PutawayRecommendationHistory(
        tenant_id=tenant.id,
        facility_id=facility_id,
        material_id=uuid.uuid4(),
        lot_number="KEEP",
        quantity=1,
        recommended_location_id=uuid.uuid4(),
        algorithm_used="FFD_ENHANCED_V3",
        confidence_score=0.8,
        features={},
    ))
    await db.flush()
    await db.run_sync(drop_failure_table)

    recorded = await DataQualityService(db).record_capacity_failures(
        [build_capacity_failure(tenant.id, placement(), CapacityFailureType.NO_CANDIDATES)]
    )

    assert recorded == 0
    lots = (await db.execute(select(PutawayRecommendationHistory.lot_number))).scalars().all()
    assert lots == ["KEEP"]


async def test_failure_rate_alert_levels(db, tenant, facility_id):
    service = DataQualityService(db)
    await service.record_capacity_failures(
        [build_capacity_failure(tenant.id, placement(), CapacityFailureType.WEIGHT_EXCEEDED)]
    )
    for _ in range(3):
        db.add(PutawayRecommendationHistory(
            tenant_id=tenant.id,
            facility_id=facility_id,
            material_id=uuid.uuid4(),
            lot_number="L",
            quantity=1,
            recommended_location_id=uuid.uuid4(),
            algorithm_used="FFD_ENHANCED_V3",
            confidence_score=0.8,
            features={},
        ))
    await db.flush()

    summary = await service.capacity_failure_summary(tenant.id)

    assert summary.failure_count == 1
    assert summary.recommendation_count == 3
    assert summary.failure_rate == 25.0
    assert summary.alert_level == "CRITICAL"
    assert summary.by_type == {"WEIGHT_EXCEEDED": 1}


async def test_no_activity_is_not_an_alert(db, tenant):
    summary = await DataQualityService(db).capacity_failure_summary(tenant.id)
    assert summary.failure_rate == 0.0
    assert summary.alert_level == "NONE"


async def test_material_data_quality(db, tenant, make_material):
    complete = await make_material(abc_classification="A")
    no_dims = await make_material(height_inches=None, weight_lbs_per_unit=None, abc_classification=None)
    unknown = uuid.uuid4()

    reports = await DataQualityService(db).validate_material_data_quality(
        tenant.id, [complete.id, no_dims.id, unknown]
    )

    assert reports[0].is_valid is True
    assert reports[0].effective_abc_classification == "A"

    assert reports[1].is_valid is False
    assert reports[1].errors == ["Missing dimensions or cubic feet"]
    assert len(reports[1].warnings) == 2
    assert reports[1].effective_abc_classification == "C"

    assert reports[2].is_valid is False
    assert reports[2].errors == ["Material not found"]
