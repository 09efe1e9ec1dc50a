"""
Tests for the utilization forecast.
"""

import uuid
from datetime import date, datetime, timedelta, timezone

import pytest

from app.models.bin_optimization import BinUtilizationHistory, BinUtilizationPrediction
from app.schemas.bin_optimization import DailyUtilization, UtilizationTrend
from app.services.bin_optimization.exceptions import InsufficientHistoryError
from app.services.bin_optimization.prediction import (
    UtilizationPredictionService,
    daily_averages,
    detect_seasonality,
    determine_trend,
    exponential_moving_average,
    predict_utilization,
    prediction_confidence,
    recommended_actions,
    seasonal_adjustment,
    simple_moving_average,
)

MONDAY = date(2026, 3, 2)


def daily(values, start=MONDAY, optimal=10.0):
    return [
        DailyUtilization(metric_date=start + timedelta(days=i), avg_utilization=v, locations_optimal=optimal)
        for i, v in enumerate(values)
    ]


async def add_history(db, tenant, facility_id, values):
    """One history row per day, ending yesterday."""
    now = datetime.now(timezone.utc)
    for days_ago, value in zip(range(len(values), 0, -1), values):
        db.add(BinUtilizationHistory(
            tenant_id=tenant.id,
            facility_id=facility_id,
            avg_utilization=value,
            locations_optimal=4,
            location_count=10,
            captured_at=now - timedelta(days=days_ago),
        ))
    await db.flush()


# ==================== Pure functions ====================

def test_sma_uses_the_last_week():
    assert simple_moving_average([float(v) for v in range(1, 11)]) == pytest.approx(7.0)
    assert simple_moving_average([]) == 0.0


def test_ema_is_seeded_with_first_value():
    assert exponential_moving_average([10.0, 20.0]) == pytest.approx(13.0)
    assert exponential_moving_average([42.0]) == 42.0


def test_trend_threshold():
    assert determine_trend(50.0, 53.0) == UtilizationTrend.INCREASING
    assert determine_trend(50.0, 48.5) == UtilizationTrend.STABLE
    assert determine_trend(50.0, 47.0) == UtilizationTrend.DECREASING


def test_seasonality_needs_ninety_days():
    alternating = ([40.0] * 7 + [60.0] * 7) * 6 + [40.0] * 7
    assert len(alternating) == 91
    assert detect_seasonality(alternating) is True
    assert detect_seasonality(alternating[:89]) is False
    assert detect_seasonality([50.0] * 91) is False


def test_seasonal_adjustment_by_weekday():
    history = daily([71.0 if i % 7 == 0 else 50.0 for i in range(21)])

    assert seasonal_adjustment(history, MONDAY + timedelta(days=21)) == pytest.approx(18.0)
    assert seasonal_adjustment(history, MONDAY + timedelta(days=22)) == pytest.approx(-3.0)
    assert seasonal_adjustment(history[:14], MONDAY + timedelta(days=21)) == 0.0


def test_confidence_decays_with_horizon():
    assert prediction_confidence(7) == pytest.approx(84.5)
    assert prediction_confidence(30) == pytest.approx(50.0)
    assert prediction_confidence(60) == pytest.approx(50.0)


def test_actions_for_high_utilization():
    urgent = recommended_actions(90.0, UtilizationTrend.STABLE, False, 7)
    planned = recommended_actions(90.0, UtilizationTrend.STABLE, False, 14)

    assert urgent[0].startswith("ALERT: Predicted utilization (90.0%)")
    assert urgent[1].startswith("URGENT")
    assert planned[1] == "Plan proactive re-slotting to redistribute inventory."


def test_actions_for_low_and_falling_utilization():
    actions = recommended_actions(50.0, UtilizationTrend.DECREASING, False, 7)
    assert len(actions) == 3
    assert "below optimal range" in actions[0]
    assert actions[2].startswith("Decreasing trend detected")


def test_actions_for_seasonal_growth():
    actions = recommended_actions(70.0, UtilizationTrend.INCREASING, True, 30)
    assert actions == [
        "Increasing trend detected. Monitor capacity closely for next 30 days.",
        "Seasonal pattern detected. Pre-position high-velocity items for peak period.",
        "Adjust ABC classifications proactively based on seasonal forecasts.",
    ]


def test_actions_in_optimal_range():
    assert recommended_actions(70.0, UtilizationTrend.STABLE, False, 30) == [
        "No actions required. Utilization predicted to remain in optimal range."
    ]


def test_flat_history_predicts_itself():
    facility_id = uuid.uuid4()
    prediction = predict_utilization(facility_id, daily([70.0] * 7), 14, MONDAY)

    assert prediction.facility_id == facility_id
    assert prediction.predicted_avg_utilization == pytest.approx(70.0)
    assert prediction.predicted_locations_optimal == 10
    assert prediction.trend == UtilizationTrend.STABLE
    assert prediction.seasonality_detected is False
    assert prediction.confidence_level == pytest.approx(74.0)


def test_prediction_is_clamped_to_zero():
    prediction = predict_utilization(uuid.uuid4(), daily([100.0] * 6 + [0.0]), 60, MONDAY)

    assert prediction.trend == UtilizationTrend.DECREASING
    assert prediction.predicted_avg_utilization == 0.0
    assert prediction.predicted_locations_optimal == 0


def test_daily_averages_group_refreshes_by_day():
    facility_id = uuid.uuid4()
    morning = datetime(2026, 3, 2, 8, tzinfo=timezone.utc)
    rows = [
        BinUtilizationHistory(facility_id=facility_id, avg_utilization=60.0, locations_optimal=4,
                              captured_at=morning + timedelta(days=1)),
        BinUtilizationHistory(facility_id=facility_id, avg_utilization=40.0, locations_optimal=2,
                              captured_at=morning),
        BinUtilizationHistory(facility_id=facility_id, avg_utilization=60.0, locations_optimal=4,
                              captured_at=morning + timedelta(hours=8)),
    ]

    days = daily_averages(rows)

    assert [d.metric_date for d in days] == [date(2026, 3, 2), date(2026, 3, 3)]
    assert days[0].avg_utilization == pytest.approx(50.0)
    assert days[0].locations_optimal == pytest.approx(3.0)


# ==================== Service ====================

async def test_week_of_history_is_required(db, tenant, facility_id):
    await add_history(db, tenant, facility_id, [70.0] * 6)

    with pytest.raises(InsufficientHistoryError) as exc_info:
        await UtilizationPredictionService(db).generate_predictions(tenant.id, facility_id)

    assert exc_info.value.required == 7
    assert exc_info.value.found == 6


async def test_predictions_are_stored_per_horizon(db, tenant, facility_id):
    await add_history(db, tenant, facility_id, [90.0] * 10)
    service = UtilizationPredictionService(db)

    predictions = await service.generate_predictions(tenant.id, facility_id)

    assert [p.horizon_days for p in predictions] == [7, 14, 30]
    assert all(p.predicted_avg_utilization == pytest.approx(90.0) for p in predictions)
    assert predictions[0].recommended_actions[1].startswith("URGENT")
    assert all(p.id is not None for p in predictions)

    latest = await service.get_latest_predictions(tenant.id, facility_id)
    assert [p.horizon_days for p in latest] == [7, 14, 30]
    assert latest[0].id == predictions[0].id
    assert latest[0].recommended_actions == predictions[0].recommended_actions


async def test_history_is_facility_scoped(db, tenant, facility_id):
    await add_history(db, tenant, uuid.uuid4(), [70.0] * 10)

    with pytest.raises(InsufficientHistoryError):
        await UtilizationPredictionService(db).generate_predictions(tenant.id, facility_id)


async def test_accuracy_against_matured_predictions(db, tenant, facility_id):
    now = datetime.now(timezone.utc)
    for horizon in (7, 30):
        db.add(BinUtilizationPrediction(
            tenant_id=tenant.id,
            facility_id=facility_id,
            prediction_date=now - timedelta(days=10),
            horizon_days=horizon,
            predicted_avg_utilization=60.0,
            predicted_locations_optimal=4,
            confidence_level=84.5,
            model_version="SMA_EMA_V1",
            trend="STABLE",
            seasonality_detected=False,
            recommended_actions=[],
        ))
    db.add(BinUtilizationHistory(
        tenant_id=tenant.id,
        facility_id=facility_id,
        avg_utilization=50.0,
        locations_optimal=4,
        location_count=10,
        captured_at=now - timedelta(days=3),
    ))
    await db.flush()

    accuracy = await UtilizationPredictionService(db).calculate_prediction_accuracy(tenant.id, facility_id)

    assert accuracy.sample_count == 1
    assert accuracy.mape == pytest.approx(20.0)
    assert accuracy.rmse == pytest.approx(10.0)
    assert accuracy.accuracy == pytest.approx(80.0)


async def test_accuracy_without_matured_predictions(db, tenant, facility_id):
    accuracy = await UtilizationPredictionService(db).calculate_prediction_accuracy(tenant.id, facility_id)
    assert accuracy.sample_count == 0
    assert accuracy.accuracy == 0.0
