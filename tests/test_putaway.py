"""
Tests for batch and single-lot putaway recommendations.

Run with:
    python -m pytest tests/test_putaway.py -v
"""

import asyncio
import uuid
from datetime import date

import pytest
from sqlalchemy import select

from app.config import settings
from app.models.bin_optimization import CapacityValidationFailureRecord, PutawayRecommendationHistory
from app.models.order import SalesOrder, SalesOrderLine
from app.schemas.bin_optimization import CapacityFailureType, ItemDimensions, PlacementRequest
from app.services.bin_optimization.affinity import SKUAffinityScorer
from app.services.bin_optimization.congestion import AisleCongestionTracker
from app.services.bin_optimization.cross_dock import CrossDockDetector
from app.services.bin_optimization.exceptions import (
    CrossTenantMaterialError,
    PutawayQueryTimeoutError,
    PutawayValidationError,
)
from app.services.bin_optimization.ml_confidence import PutawayFeedbackLoop
from app.services.bin_optimization.putaway import (
    CROSS_DOCK_ALGORITHM,
    SINGLE_ITEM_ALGORITHM,
    BatchPutawayService,
    validate_placement_requests,
)

TODAY = date(2026, 3, 2)


class NoQuerySession:
    """Session stand-in that fails the test if anything is queried."""

    async def execute(self, *args, **kwargs):
        raise AssertionError("query issued for an invalid batch")

    def add(self, *args, **kwargs):
        raise AssertionError("write issued for an invalid batch")


def request(material, lot, quantity, **kwargs):
    return PlacementRequest(material_id=material.id, lot_number=lot, quantity=quantity, **kwargs)


# ==================== Validation ====================

def test_validation_collects_every_error():
    material_id = uuid.uuid4()
    items = [
        PlacementRequest(material_id=material_id, lot_number="L1", quantity=float("nan")),
        PlacementRequest(material_id=material_id, lot_number="L2", quantity=-5),
        PlacementRequest(material_id=material_id, lot_number="L2", quantity=5),
    ]

    with pytest.raises(PutawayValidationError) as exc_info:
        validate_placement_requests(items)

    errors = exc_info.value.errors
    assert "Lot L2: appears 2 times in batch" in errors
    assert any(e.startswith("Lot L1: quantity must be a finite number") for e in errors)
    assert any(e.startswith("Lot L2: quantity must be positive") for e in errors)


def test_validation_rejects_bad_dimension_override():
    item = PlacementRequest(
        material_id=uuid.uuid4(),
        lot_number="L1",
        quantity=1,
        dimensions=ItemDimensions(length_inches=0, width_inches=10, height_inches=10, cubic_feet=float("inf")),
    )
    with pytest.raises(PutawayValidationError) as exc_info:
        validate_placement_requests([item])
    assert len(exc_info.value.errors) == 2


async def test_invalid_batch_issues_no_queries():
    service = BatchPutawayService(NoQuerySession())
    items = [PlacementRequest(material_id=uuid.uuid4(), lot_number="L1", quantity=float("inf"))]

    with pytest.raises(PutawayValidationError):
        await service.suggest_batch_putaway(items, uuid.uuid4())


async def test_empty_batch():
    result = await BatchPutawayService(NoQuerySession()).suggest_batch_putaway([], uuid.uuid4())
    assert result.recommendations == {}
    assert result.failures == []


async def test_foreign_material_is_rejected(db, tenant, other_tenant, make_material, make_location):
    await make_location()
    material = await make_material()

    with pytest.raises(CrossTenantMaterialError):
        await BatchPutawayService(db).suggest_batch_putaway([request(material, "L1", 5)], other_tenant.id)


async def test_material_without_dimensions_is_rejected(db, tenant, make_material, make_location):
    await make_location()
    material = await make_material(length_inches=None)

    with pytest.raises(PutawayValidationError) as exc_info:
        await BatchPutawayService(db).suggest_batch_putaway([request(material, "L1", 5)], tenant.id)
    assert "has no dimensions" in exc_info.value.errors[0]


# ==================== Batch placement ====================

async def test_batch_places_every_lot(db, tenant, make_material, make_location):
    for _ in range(5):
        await make_location()
    material = await make_material()

    result = await BatchPutawayService(db).suggest_batch_putaway(
        [request(material, "L1", 10), request(material, "L2", 20)], tenant.id, received_at=TODAY
    )

    assert set(result.recommendations) == {"L1", "L2"}
    assert result.failures == []
    rec = result.recommendations["L1"]
    assert rec.algorithm == f"{result.strategy.algorithm}_ENHANCED_V3"
    assert rec.capacity_check.can_fit is True
    assert 0 < rec.ml_adjusted_confidence <= 1
    assert len(rec.alternatives) == 3


async def test_same_space_is_never_promised_twice(db, tenant, make_material, make_location):
    await make_location(cubic_feet=100.0)
    material = await make_material()

    result = await BatchPutawayService(db).suggest_batch_putaway(
        [request(material, "L1", 60), request(material, "L2", 60)], tenant.id, received_at=TODAY
    )

    assert len(result.recommendations) == 1
    assert len(result.failures) == 1
    failure = result.failures[0]
    assert failure.failure_type == CapacityFailureType.CUBIC_FEET_EXCEEDED.value
    assert failure.candidates_evaluated == 1

    records = (await db.execute(select(CapacityValidationFailureRecord))).scalars().all()
    assert len(records) == 1
    assert records[0].lot_number == failure.lot_number
    assert records[0].available_cubic_feet == pytest.approx(40.0)


async def test_repeated_runs_give_the_same_answer(db, tenant, make_material, make_location):
    for _ in range(4):
        await make_location()
    material = await make_material()
    items = [request(material, "L1", 10), request(material, "L2", 30)]
    service = BatchPutawayService(db)

    first = await service.suggest_batch_putaway(items, tenant.id, received_at=TODAY)
    second = await service.suggest_batch_putaway(items, tenant.id, received_at=TODAY)

    assert {k: v.location_id for k, v in first.recommendations.items()} == \
        {k: v.location_id for k, v in second.recommendations.items()}
    assert first.processing_order == second.processing_order


async def test_a_items_go_to_prime_pick_faces(db, tenant, make_material, make_location):
    await make_location(location_code="RES-01")
    pick_face = await make_location(
        location_code="PF-01", location_type="PICK_FACE", abc_classification="A", pick_sequence=10
    )
    material = await make_material(abc_classification="A")

    result = await BatchPutawayService(db).suggest_batch_putaway(
        [request(material, "L1", 10)], tenant.id, received_at=TODAY
    )

    rec = result.recommendations["L1"]
    assert rec.location_id == pick_face.id
    assert rec.features.abc_match is True
    assert rec.features.pick_sequence_low is True
    assert "Prime pick location" in rec.reason


async def test_security_mismatch_is_reported(db, tenant, make_material, make_location):
    await make_location()
    material = await make_material(security_zone="SECURE")

    result = await BatchPutawayService(db).suggest_batch_putaway(
        [request(material, "L1", 1)], tenant.id, received_at=TODAY
    )

    assert result.failures[0].failure_type == CapacityFailureType.NO_CANDIDATES.value
    assert result.failures[0].candidates_evaluated == 0


async def add_urgent_order(db, tenant, facility_id, material, order_number="SO-100"):
    order = SalesOrder(
        tenant_id=tenant.id,
        facility_id=facility_id,
        order_number=order_number,
        status="RELEASED",
        requested_ship_date=TODAY,
    )
    db.add(order)
    await db.flush()
    db.add(SalesOrderLine(
        tenant_id=tenant.id, sales_order_id=order.id, material_id=material.id, quantity_ordered=5,
    ))
    await db.flush()
    return order


async def test_urgent_demand_goes_to_staging(db, tenant, facility_id, make_material, make_location):
    await make_location(location_code="RES-01")
    staging = await make_location(location_code="STG-01", location_type="STAGING")
    material = await make_material()
    await add_urgent_order(db, tenant, facility_id, material)

    result = await BatchPutawayService(db).suggest_batch_putaway(
        [request(material, "L1", 5)], tenant.id, received_at=TODAY
    )

    rec = result.recommendations["L1"]
    assert rec.location_id == staging.id
    assert rec.algorithm == CROSS_DOCK_ALGORITHM
    assert rec.cross_dock.order_number == "SO-100"


# ==================== Single lot ====================

async def test_single_lot_suggestion(db, tenant, make_material, make_location):
    await make_location(location_code="RES-01", abc_classification="C")
    match = await make_location(location_code="RES-02", abc_classification="B", pick_sequence=50)
    material = await make_material(abc_classification="B")

    rec = await BatchPutawayService(db).suggest_putaway_location(material.id, "L1", 10, tenant.id)

    assert rec.location_id == match.id
    assert rec.algorithm == SINGLE_ITEM_ALGORITHM
    assert len(rec.alternatives) == 1


async def test_single_lot_without_space(db, tenant, make_material, make_location):
    await make_location(cubic_feet=10.0)
    material = await make_material()

    with pytest.raises(ValueError, match="No suitable location found for lot L1"):
        await BatchPutawayService(db).suggest_putaway_location(material.id, "L1", 50, tenant.id)


# ==================== Degraded enrichment ====================

async def raise_runtime_error(*args, **kwargs):
    raise RuntimeError("connection reset")


class StaticCongestion:
    """Congestion source with fixed aisle scores."""

    def __init__(self, scores):
        self.scores = scores

    async def get_aisle_congestion(self, tenant_id, facility_id):
        return self.scores


class StallingSession:
    """Delegates to a real session but stalls on the Nth execute."""

    def __init__(self, db, stall_on):
        self.db = db
        self.stall_on = stall_on
        self.calls = 0

    async def execute(self, *args, **kwargs):
        self.calls += 1
        if self.calls == self.stall_on:
            await asyncio.sleep(5)
        return await self.db.execute(*args, **kwargs)

    def __getattr__(self, name):
        return getattr(self.db, name)


async def test_batch_completes_when_enrichment_queries_fail(
    db, tenant, facility_id, make_material, make_location, monkeypatch
):
    storage = await make_location(location_code="RES-01")
    await make_location(location_code="STG-01", location_type="STAGING")
    material = await make_material()
    await add_urgent_order(db, tenant, facility_id, material)

    monkeypatch.setattr(AisleCongestionTracker, "_load_congestion", raise_runtime_error)
    monkeypatch.setattr(SKUAffinityScorer, "_load_co_picks", raise_runtime_error)
    monkeypatch.setattr(CrossDockDetector, "_most_urgent_demand", raise_runtime_error)
    monkeypatch.setattr("app.services.bin_optimization.affinity.execute_with_timeout", raise_runtime_error)
    monkeypatch.setattr("app.services.bin_optimization.ml_confidence.execute_with_timeout", raise_runtime_error)

    result = await BatchPutawayService(db).suggest_batch_putaway(
        [request(material, "L1", 5), request(material, "L2", 500)], tenant.id, received_at=TODAY
    )

    rec = result.recommendations["L1"]
    assert rec.location_id == storage.id
    assert rec.algorithm != CROSS_DOCK_ALGORITHM
    assert rec.cross_dock is None
    assert rec.affinity_score == 0.0
    assert rec.congestion_penalty == 0.0
    assert [f.lot_number for f in result.failures] == ["L2"]

    records = (await db.execute(select(CapacityValidationFailureRecord))).scalars().all()
    assert [r.lot_number for r in records] == ["L2"]


async def test_candidate_query_timeout_fails_the_batch(db, tenant, make_material, make_location, monkeypatch):
    await make_location()
    material = await make_material()
    monkeypatch.setattr(settings, "QUERY_TIMEOUT_SECONDS", 0.05)

    # first execute loads materials, second loads candidate locations
    service = BatchPutawayService(StallingSession(db, stall_on=2))

    with pytest.raises(PutawayQueryTimeoutError) as exc_info:
        await service.suggest_batch_putaway([request(material, "L1", 5)], tenant.id, received_at=TODAY)
    assert exc_info.value.label == "candidate_locations"


async def test_failed_failure_recording_keeps_batch_history(db, tenant, make_material, make_location):
    await make_location(cubic_feet=100.0)
    material = await make_material()
    service = BatchPutawayService(db)

    first = await service.suggest_batch_putaway([request(material, "L1", 5)], tenant.id, received_at=TODAY)
    await PutawayFeedbackLoop(db).record_recommendations(tenant.id, first)
    await db.run_sync(lambda session: CapacityValidationFailureRecord.__table__.drop(session.connection()))

    second = await service.suggest_batch_putaway([request(material, "L2", 500)], tenant.id, received_at=TODAY)

    assert [f.lot_number for f in second.failures] == ["L2"]
    lots = (await db.execute(select(PutawayRecommendationHistory.lot_number))).scalars().all()
    assert lots == ["L1"]


async def test_congested_aisle_shows_penalty_only(db, tenant, make_material, make_location):
    await make_location(aisle_code="A01")
    material = await make_material()
    service = BatchPutawayService(db, congestion=StaticCongestion({"A01": 20.0}))

    result = await service.suggest_batch_putaway([request(material, "L1", 5)], tenant.id, received_at=TODAY)

    rec = result.recommendations["L1"]
    assert "Aisle congestion (-10.0 pts)" in rec.reason
    assert "Low congestion bonus" not in rec.reason
    assert rec.congestion_penalty == 10.0
    assert rec.features.congestion_low is True


async def test_quiet_aisle_shows_bonus(db, tenant, make_material, make_location):
    await make_location(aisle_code="A01")
    material = await make_material()
    service = BatchPutawayService(db, congestion=StaticCongestion({}))

    result = await service.suggest_batch_putaway([request(material, "L1", 5)], tenant.id, received_at=TODAY)

    rec = result.recommendations["L1"]
    assert "Low congestion bonus" in rec.reason
    assert "Aisle congestion" not in rec.reason


async def test_cross_dock_skips_staging_without_cold_chain(db, tenant, facility_id, make_material, make_location):
    await make_location(location_code="STG-01", location_type="STAGING")
    cold = await make_location(location_code="COLD-01", temperature_controlled=True)
    material = await make_material(temperature_controlled=True)
    await add_urgent_order(db, tenant, facility_id, material)

    result = await BatchPutawayService(db).suggest_batch_putaway(
        [request(material, "L1", 5)], tenant.id, received_at=TODAY
    )

    rec = result.recommendations["L1"]
    assert rec.location_id == cold.id
    assert rec.algorithm != CROSS_DOCK_ALGORITHM
    assert rec.cross_dock is None
