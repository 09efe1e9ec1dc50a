"""
Tests for the confidence adjuster and the putaway feedback loop.
"""

import uuid
from datetime import datetime, timezone

import pytest
from sqlalchemy import select, func

from app.models.bin_optimization import MLModelWeights, PutawayRecommendationHistory
from app.schemas.bin_optimization import FeedbackRecord, HealthStatus, MLFeatures, MLWeights
from app.services.bin_optimization.exceptions import ModelTrainingError
from app.services.bin_optimization.ml_confidence import (
    MLConfidenceAdjuster,
    PutawayFeedbackLoop,
    adjust_confidence,
    normalize_weights,
    train_weights,
)

ALL_FEATURES = MLFeatures(
    abc_match=True,
    utilization_optimal=True,
    pick_sequence_low=True,
    location_type_match=True,
    congestion_low=True,
)


def feedback(accepted, features, confidence=0.9):
    return FeedbackRecord(
        recommendation_id=uuid.uuid4(),
        material_id=uuid.uuid4(),
        recommended_location_id=uuid.uuid4(),
        accepted=accepted,
        algorithm_used="FFD_ENHANCED_V3",
        confidence_score=confidence,
        features=features,
        decided_at=datetime.now(timezone.utc),
    )


# ==================== Pure functions ====================

def test_adjust_blends_raw_and_learned():
    assert adjust_confidence(0.8, ALL_FEATURES, MLWeights()) == pytest.approx(0.86)
    assert adjust_confidence(0.8, MLFeatures(), MLWeights()) == pytest.approx(0.56)


def test_adjust_is_capped_at_one():
    assert adjust_confidence(1.0, ALL_FEATURES, MLWeights()) <= 1.0


def test_normalize_clamps_negative_weights():
    weights = normalize_weights(
        {"abc_match": -1.0, "utilization_optimal": 1.0, "pick_sequence_low": 1.0},
        fallback=MLWeights(),
    )
    assert weights.abc_match == 0.0
    assert weights.utilization_optimal == pytest.approx(0.5)
    assert sum(weights.model_dump().values()) == pytest.approx(1.0)


def test_normalize_all_zero_keeps_fallback():
    fallback = MLWeights()
    assert normalize_weights({}, fallback) == fallback


def test_rejections_lower_active_feature_weight():
    prior = MLWeights()
    trained = train_weights(prior, [feedback(False, MLFeatures(abc_match=True))])

    assert trained.abc_match < prior.abc_match
    assert sum(trained.model_dump().values()) == pytest.approx(1.0)
    assert prior == MLWeights()


def test_training_without_feedback_returns_equal_copy():
    prior = MLWeights()
    trained = train_weights(prior, [])
    assert trained == prior
    assert trained is not prior


# ==================== Feedback loop ====================

async def add_history(db, tenant, facility_id, accepted=None, algorithm="FFD_ENHANCED_V3", features=None):
    row = PutawayRecommendationHistory(
        tenant_id=tenant.id,
        facility_id=facility_id,
        material_id=uuid.uuid4(),
        lot_number=f"LOT-{uuid.uuid4().hex[:6]}",
        quantity=10,
        recommended_location_id=uuid.uuid4(),
        algorithm_used=algorithm,
        confidence_score=0.8,
        features=(features or MLFeatures(abc_match=True)).model_dump(),
        accepted=accepted,
        decided_at=datetime.now(timezone.utc) if accepted is not None else None,
    )
    db.add(row)
    await db.flush()
    return row


async def test_record_decision_marks_acceptance(db, tenant, facility_id):
    row = await add_history(db, tenant, facility_id)
    loop = PutawayFeedbackLoop(db)

    decided = await loop.record_decision(tenant.id, row.id, row.recommended_location_id)
    assert decided.accepted is True
    assert decided.decided_at is not None

    other = await add_history(db, tenant, facility_id)
    overridden = await loop.record_decision(tenant.id, other.id, uuid.uuid4())
    assert overridden.accepted is False


async def test_record_decision_unknown_recommendation(db, tenant, other_tenant, facility_id):
    row = await add_history(db, tenant, facility_id)
    loop = PutawayFeedbackLoop(db)

    with pytest.raises(ValueError):
        await loop.record_decision(tenant.id, uuid.uuid4(), uuid.uuid4())
    with pytest.raises(ValueError):
        await loop.record_decision(other_tenant.id, row.id, row.recommended_location_id)


async def test_accuracy_metrics_by_algorithm(db, tenant, facility_id):
    for accepted in (True, True, False):
        await add_history(db, tenant, facility_id, accepted=accepted, algorithm="FFD_ENHANCED_V3")
    await add_history(db, tenant, facility_id, accepted=True, algorithm="BFD_ENHANCED_V3")
    await add_history(db, tenant, facility_id)  # undecided

    metrics = await PutawayFeedbackLoop(db).calculate_accuracy_metrics(tenant.id)

    assert metrics.total_recommendations == 4
    assert metrics.overall_accuracy == 75.0
    by_algo = {a.algorithm: a for a in metrics.by_algorithm}
    assert by_algo["FFD_ENHANCED_V3"].accuracy == pytest.approx(66.67)
    assert by_algo["BFD_ENHANCED_V3"].count == 1


async def test_training_without_feedback_keeps_weights(db, tenant):
    weights = await PutawayFeedbackLoop(db).train_model(tenant.id)

    assert weights == MLWeights()
    count = await db.scalar(select(func.count(MLModelWeights.id)))
    assert count == 0


async def test_training_persists_new_weights(db, tenant, facility_id):
    for _ in range(5):
        await add_history(db, tenant, facility_id, accepted=False, features=MLFeatures(abc_match=True))

    loop = PutawayFeedbackLoop(db)
    trained = await loop.train_model(tenant.id)

    assert trained.abc_match < MLWeights().abc_match
    reloaded = await MLConfidenceAdjuster(db).load_weights(tenant.id)
    assert reloaded == trained


STORED_WEIGHTS = MLWeights(
    abc_match=0.4,
    utilization_optimal=0.3,
    pick_sequence_low=0.1,
    location_type_match=0.1,
    congestion_low=0.1,
)


async def failing_save(*args, **kwargs):
    raise RuntimeError("disk full")


async def test_failed_training_keeps_prior_weights(db, tenant, facility_id, monkeypatch):
    adjuster = MLConfidenceAdjuster(db)
    await adjuster.save_weights(tenant.id, STORED_WEIGHTS)
    for _ in range(5):
        await add_history(db, tenant, facility_id, accepted=False)
    monkeypatch.setattr(adjuster, "save_weights", failing_save)

    weights = await PutawayFeedbackLoop(db, adjuster).train_model(tenant.id)

    assert weights == STORED_WEIGHTS
    assert adjuster.weights == STORED_WEIGHTS
    assert await MLConfidenceAdjuster(db).load_weights(tenant.id) == STORED_WEIGHTS


async def test_strict_training_failure_raises(db, tenant, facility_id, monkeypatch):
    adjuster = MLConfidenceAdjuster(db)
    for _ in range(5):
        await add_history(db, tenant, facility_id, accepted=False)
    monkeypatch.setattr(adjuster, "save_weights", failing_save)

    with pytest.raises(ModelTrainingError) as exc_info:
        await PutawayFeedbackLoop(db, adjuster).train_model(tenant.id, strict=True)

    assert isinstance(exc_info.value.cause, RuntimeError)
    assert adjuster.weights == MLWeights()
    assert await db.scalar(select(func.count(MLModelWeights.id))) == 0


async def test_weights_fall_back_to_defaults_when_query_fails(db, tenant, monkeypatch):
    await MLConfidenceAdjuster(db).save_weights(tenant.id, STORED_WEIGHTS)

    async def failing_query(*args, **kwargs):
        raise RuntimeError("connection reset")

    monkeypatch.setattr("app.services.bin_optimization.ml_confidence.execute_with_timeout", failing_query)

    assert await MLConfidenceAdjuster(db).load_weights(tenant.id) == MLWeights()


async def test_health_thresholds(db, tenant, facility_id):
    loop = PutawayFeedbackLoop(db)
    for i in range(10):
        await add_history(db, tenant, facility_id, accepted=i < 8)

    health = await loop.evaluate_health(tenant.id)
    assert health.status == HealthStatus.DEGRADED.value
    assert health.needs_retrain is True
    assert health.needs_alert is False

    for _ in range(5):
        await add_history(db, tenant, facility_id, accepted=False)
    health = await loop.evaluate_health(tenant.id)
    assert health.status == HealthStatus.UNHEALTHY.value
    assert health.needs_alert is True


async def test_health_with_too_few_samples(db, tenant, facility_id):
    await add_history(db, tenant, facility_id, accepted=False)
    health = await PutawayFeedbackLoop(db).evaluate_health(tenant.id)
    assert health.status == HealthStatus.HEALTHY.value
    assert health.needs_retrain is False
