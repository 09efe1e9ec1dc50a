"""
Bin Utilization Forecasting

Predicts facility utilization 7, 14 and 30 days out from the daily
history the utilization cache records:
- Simple Moving Average over the last week
- Exponential Moving Average over the whole history
- Trend from EMA against SMA
- Weekly seasonality once 90 days of history exist

Predictions are stored per horizon so they can be scored against what
utilization turned out to be.

No external ML libraries required - pure Python implementation.
"""

import logging
import math
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.bin_optimization import BinUtilizationHistory, BinUtilizationPrediction
from app.schemas.bin_optimization import (
    DailyUtilization,
    PredictionAccuracy,
    UtilizationPrediction,
    UtilizationTrend,
)
from app.services.bin_optimization.exceptions import InsufficientHistoryError

logger = logging.getLogger(__name__)

MODEL_VERSION = "SMA_EMA_V1"
DEFAULT_HORIZONS = (7, 14, 30)
HISTORY_DAYS = 90

SMA_WINDOW = 7
EMA_ALPHA = 0.3
TREND_THRESHOLD = 2.0  # utilization points

SEASONALITY_MIN_DAYS = 90
SEASONALITY_MIN_WEEKS = 4
SEASONAL_VARIANCE_THRESHOLD = 25.0
SEASONAL_MIN_SAME_WEEKDAY = 3

MAX_CONFIDENCE = 95.0
MIN_CONFIDENCE = 50.0
CONFIDENCE_DECAY_PER_DAY = 1.5
URGENT_HORIZON_DAYS = 7
SEASONAL_ABC_HORIZON_DAYS = 30


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ==================== Smoothing ====================

def simple_moving_average(values: Sequence[float], window: int = SMA_WINDOW) -> float:
    """Mean of the last `window` values."""
    if not values:
        return 0.0
    recent = values[-window:]
    return sum(recent) / len(recent)


def exponential_moving_average(values: Sequence[float], alpha: float = EMA_ALPHA) -> float:
    """EMA seeded with the first value."""
    if not values:
        return 0.0
    ema = values[0]
    for value in values[1:]:
        ema = alpha * value + (1 - alpha) * ema
    return ema


def determine_trend(sma: float, ema: float) -> UtilizationTrend:
    diff = ema - sma
    if diff > TREND_THRESHOLD:
        return UtilizationTrend.INCREASING
    if diff < -TREND_THRESHOLD:
        return UtilizationTrend.DECREASING
    return UtilizationTrend.STABLE


# ==================== Seasonality ====================

def detect_seasonality(values: Sequence[float]) -> bool:
    """
    Weekly pattern check.

    Needs SEASONALITY_MIN_DAYS of history; the population variance of
    complete weekly averages (at least four weeks) must exceed
    SEASONAL_VARIANCE_THRESHOLD.
    """
    if len(values) < SEASONALITY_MIN_DAYS:
        return False

    weekly = [sum(values[i:i + 7]) / 7 for i in range(0, len(values) - 7, 7)]
    if len(weekly) < SEASONALITY_MIN_WEEKS:
        return False

    mean = sum(weekly) / len(weekly)
    variance = sum((w - mean) ** 2 for w in weekly) / len(weekly)
    return variance > SEASONAL_VARIANCE_THRESHOLD


def seasonal_adjustment(history: Sequence[DailyUtilization], target_day: date) -> float:
    """Same-weekday deviation from the overall mean; 0 with fewer than three samples."""
    same_day = [d.avg_utilization for d in history if d.metric_date.weekday() == target_day.weekday()]
    if len(same_day) < SEASONAL_MIN_SAME_WEEKDAY:
        return 0.0
    overall = sum(d.avg_utilization for d in history) / len(history)
    return sum(same_day) / len(same_day) - overall


# ==================== Prediction ====================

def prediction_confidence(horizon_days: int) -> float:
    return max(MIN_CONFIDENCE, MAX_CONFIDENCE - horizon_days * CONFIDENCE_DECAY_PER_DAY)


def recommended_actions(
    predicted: float,
    trend: UtilizationTrend,
    seasonal: bool,
    horizon_days: int,
) -> List[str]:
    actions = []
    if predicted > settings.OPTIMAL_UTILIZATION_MAX:
        actions.append(
            f"ALERT: Predicted utilization ({predicted:.1f}%) exceeds optimal range. "
            f"Consider capacity expansion."
        )
        if horizon_days <= URGENT_HORIZON_DAYS:
            actions.append("URGENT: Initiate emergency re-slotting within 3 days.")
        else:
            actions.append("Plan proactive re-slotting to redistribute inventory.")

    if predicted < settings.OPTIMAL_UTILIZATION_MIN:
        actions.append(
            f"Predicted utilization ({predicted:.1f}%) below optimal range. Consider consolidation."
        )
        actions.append("Evaluate bin consolidation opportunities to reduce footprint.")

    if trend == UtilizationTrend.INCREASING:
        actions.append("Increasing trend detected. Monitor capacity closely for next 30 days.")
        if seasonal:
            actions.append("Seasonal pattern detected. Pre-position high-velocity items for peak period.")
    elif trend == UtilizationTrend.DECREASING:
        actions.append("Decreasing trend detected. Opportunity for consolidation and space recovery.")

    if seasonal and horizon_days >= SEASONAL_ABC_HORIZON_DAYS:
        actions.append("Adjust ABC classifications proactively based on seasonal forecasts.")

    if not actions:
        actions.append("No actions required. Utilization predicted to remain in optimal range.")
    return actions


def predict_utilization(
    facility_id: UUID,
    history: Sequence[DailyUtilization],
    horizon_days: int,
    today: date,
    predicted_at: Optional[datetime] = None,
) -> UtilizationPrediction:
    """
    Forecast average utilization `horizon_days` after `today`.

    EMA, plus the daily EMA-SMA drift over the horizon, plus the
    same-weekday deviation when a weekly pattern exists; clamped to 0-100.
    """
    values = [d.avg_utilization for d in history]
    sma = simple_moving_average(values)
    ema = exponential_moving_average(values)
    trend = determine_trend(sma, ema)
    seasonal = detect_seasonality(values)

    predicted = ema + (ema - sma) / SMA_WINDOW * horizon_days
    if seasonal:
        predicted += seasonal_adjustment(history, today + timedelta(days=horizon_days))
    predicted = max(0.0, min(100.0, predicted))

    avg_optimal = sum(d.locations_optimal for d in history) / len(history)
    optimal = avg_optimal * (predicted / ema) if ema > 0 else avg_optimal

    return UtilizationPrediction(
        facility_id=facility_id,
        prediction_date=predicted_at or datetime.now(timezone.utc),
        horizon_days=horizon_days,
        predicted_avg_utilization=round(predicted, 2),
        predicted_locations_optimal=int(round(optimal)),
        confidence_level=round(prediction_confidence(horizon_days), 2),
        model_version=MODEL_VERSION,
        trend=trend,
        seasonality_detected=seasonal,
        recommended_actions=recommended_actions(predicted, trend, seasonal, horizon_days),
    )


def daily_averages(rows: Sequence[BinUtilizationHistory]) -> List[DailyUtilization]:
    """Collapse refresh-level history into one point per day, oldest first."""
    by_day: Dict[date, List[BinUtilizationHistory]] = defaultdict(list)
    for row in rows:
        by_day[_utc(row.captured_at).date()].append(row)
    return [
        DailyUtilization(
            metric_date=day,
            avg_utilization=sum(r.avg_utilization for r in day_rows) / len(day_rows),
            locations_optimal=sum(r.locations_optimal for r in day_rows) / len(day_rows),
        )
        for day, day_rows in sorted(by_day.items())
    ]


class UtilizationPredictionService:
    """
    Facility utilization forecasts from daily history.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_daily_history(
        self,
        tenant_id: UUID,
        facility_id: UUID,
        days: int = HISTORY_DAYS,
    ) -> List[DailyUtilization]:
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        result = await self.db.execute(
            select(BinUtilizationHistory)
            .where(
                and_(
                    BinUtilizationHistory.tenant_id == tenant_id,
                    BinUtilizationHistory.facility_id == facility_id,
                    BinUtilizationHistory.captured_at >= cutoff,
                )
            )
            .order_by(BinUtilizationHistory.captured_at)
        )
        return daily_averages(result.scalars().all())

    async def generate_predictions(
        self,
        tenant_id: UUID,
        facility_id: UUID,
        horizons: Sequence[int] = DEFAULT_HORIZONS,
        today: Optional[date] = None,
    ) -> List[UtilizationPrediction]:
        """
        Forecast and store one prediction per horizon.

        Raises:
            InsufficientHistoryError: fewer than SMA_WINDOW days of history
        """
        history = await self.get_daily_history(tenant_id, facility_id)
        if len(history) < SMA_WINDOW:
            raise InsufficientHistoryError(SMA_WINDOW, len(history))

        predicted_at = datetime.now(timezone.utc)
        today = today or predicted_at.date()
        predictions = []
        for horizon in horizons:
            prediction = predict_utilization(facility_id, history, horizon, today, predicted_at)
            row = BinUtilizationPrediction(
                tenant_id=tenant_id,
                facility_id=facility_id,
                prediction_date=prediction.prediction_date,
                horizon_days=prediction.horizon_days,
                predicted_avg_utilization=prediction.predicted_avg_utilization,
                predicted_locations_optimal=prediction.predicted_locations_optimal,
                confidence_level=prediction.confidence_level,
                model_version=prediction.model_version,
                trend=prediction.trend,
                seasonality_detected=prediction.seasonality_detected,
                recommended_actions=prediction.recommended_actions,
            )
            self.db.add(row)
            await self.db.flush()
            prediction.id = row.id
            predictions.append(prediction)

        logger.info(
            f"Utilization forecast for facility {facility_id}: {len(history)} days of history, "
            + ", ".join(f"{p.horizon_days}d={p.predicted_avg_utilization:.1f}%" for p in predictions)
        )
        return predictions

    async def get_latest_predictions(self, tenant_id: UUID, facility_id: UUID) -> List[UtilizationPrediction]:
        """Predictions made in the last day, newest first, then by horizon."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=1)
        result = await self.db.execute(
            select(BinUtilizationPrediction)
            .where(
                and_(
                    BinUtilizationPrediction.tenant_id == tenant_id,
                    BinUtilizationPrediction.facility_id == facility_id,
                    BinUtilizationPrediction.prediction_date >= cutoff,
                )
            )
            .order_by(BinUtilizationPrediction.prediction_date.desc(), BinUtilizationPrediction.horizon_days)
            .limit(10)
        )
        return [
            UtilizationPrediction(
                id=row.id,
                facility_id=row.facility_id,
                prediction_date=_utc(row.prediction_date),
                horizon_days=row.horizon_days,
                predicted_avg_utilization=row.predicted_avg_utilization,
                predicted_locations_optimal=row.predicted_locations_optimal,
                confidence_level=row.confidence_level,
                model_version=row.model_version,
                trend=row.trend,
                seasonality_detected=row.seasonality_detected,
                recommended_actions=list(row.recommended_actions or []),
            )
            for row in result.scalars().all()
        ]

    async def calculate_prediction_accuracy(
        self,
        tenant_id: UUID,
        facility_id: UUID,
        days_back: int = 30,
    ) -> PredictionAccuracy:
        """
        Score matured predictions against the observed daily average.

        A prediction matures when its target day has passed; days with no
        history, or a zero actual for MAPE, are skipped.
        """
        now = datetime.now(timezone.utc)
        cutoff = now - timedelta(days=days_back)
        result = await self.db.execute(
            select(BinUtilizationPrediction).where(
                and_(
                    BinUtilizationPrediction.tenant_id == tenant_id,
                    BinUtilizationPrediction.facility_id == facility_id,
                    BinUtilizationPrediction.prediction_date >= cutoff,
                )
            )
        )
        actuals = {
            d.metric_date: d.avg_utilization
            for d in await self.get_daily_history(tenant_id, facility_id, days=days_back + HISTORY_DAYS)
        }

        pairs = []
        for row in result.scalars().all():
            target = _utc(row.prediction_date) + timedelta(days=row.horizon_days)
            if target > now:
                continue
            actual = actuals.get(target.date())
            if actual is not None:
                pairs.append((row.predicted_avg_utilization, actual))

        if not pairs:
            return PredictionAccuracy()

        pct_errors = [abs(p - a) / a * 100 for p, a in pairs if a != 0]
        mape = sum(pct_errors) / len(pct_errors) if pct_errors else 0.0
        rmse = math.sqrt(sum((p - a) ** 2 for p, a in pairs) / len(pairs))
        return PredictionAccuracy(
            sample_count=len(pairs),
            mape=round(mape, 2),
            rmse=round(rmse, 2),
            accuracy=round(max(0.0, 100 - mape), 2),
        )
