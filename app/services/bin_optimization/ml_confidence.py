"""
ML Confidence Adjuster and Feedback Loop

Blends the rule-based confidence of a recommendation with a learned
weight vector over five boolean features:

    adjusted = min(0.7 * raw + 0.3 * sum(weight[f] for active f), 1.0)

Weights are learned online from accepted/overridden recommendations
(error = actual - predicted, learning rate ML_LEARNING_RATE), clamped at
zero and normalized to sum to 1. Training works on a copy; the stored
vector is replaced in a single write or not at all.

No external ML libraries required - pure Python implementation.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.bin_optimization import MLModelWeights, PutawayRecommendationHistory
from app.schemas.bin_optimization import (
    AccuracyMetrics,
    AlgorithmAccuracy,
    BatchPutawayResult,
    FeedbackRecord,
    HealthStatus,
    MLFeatures,
    MLWeights,
    ModelHealth,
)
from app.services.bin_optimization.exceptions import ModelTrainingError
from app.services.bin_optimization.query_timeout import execute_with_timeout

logger = logging.getLogger(__name__)

MODEL_NAME = "putaway_confidence_adjuster"
RAW_CONFIDENCE_SHARE = 0.7
LEARNED_SHARE = 0.3

FEATURE_NAMES = (
    "abc_match",
    "utilization_optimal",
    "pick_sequence_low",
    "location_type_match",
    "congestion_low",
)


# ==================== Pure Functions ====================

def adjust_confidence(raw_confidence: float, features: MLFeatures, weights: MLWeights) -> float:
    """Blend raw confidence with the weighted active features."""
    learned = sum(
        getattr(weights, name)
        for name in FEATURE_NAMES
        if getattr(features, name)
    )
    return min(RAW_CONFIDENCE_SHARE * raw_confidence + LEARNED_SHARE * learned, 1.0)


def normalize_weights(raw: Dict[str, float], fallback: MLWeights) -> MLWeights:
    """Clamp weights at zero and scale them to sum to 1; keep fallback if all are zero."""
    clamped = {name: max(raw.get(name, 0.0), 0.0) for name in FEATURE_NAMES}
    total = sum(clamped.values())
    if total <= 0:
        return fallback.model_copy()
    return MLWeights(**{name: value / total for name, value in clamped.items()})


def train_weights(
    weights: MLWeights,
    feedback: List[FeedbackRecord],
    learning_rate: Optional[float] = None,
) -> MLWeights:
    """
    One pass of online gradient updates over the feedback.

    Returns a new vector; the input is never modified. Empty feedback
    returns an equal copy.
    """
    if not feedback:
        return weights.model_copy()

    lr = learning_rate if learning_rate is not None else settings.ML_LEARNING_RATE
    working = weights.model_dump()
    for record in feedback:
        current = MLWeights(**working)
        predicted = adjust_confidence(record.confidence_score, record.features, current)
        actual = 1.0 if record.accepted else 0.0
        error = actual - predicted
        for name in FEATURE_NAMES:
            if getattr(record.features, name):
                working[name] += lr * error

    return normalize_weights(working, fallback=weights)


def features_from_json(data: Optional[dict]) -> MLFeatures:
    """Read stored feature flags, ignoring unknown keys."""
    data = data or {}
    return MLFeatures(**{name: bool(data.get(name, False)) for name in FEATURE_NAMES})


def _utc(value: datetime) -> datetime:
    # SQLite returns naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ==================== Adjuster ====================

class MLConfidenceAdjuster:
    """
    Loads, applies and persists the confidence weight vector for a tenant.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.weights = MLWeights()
        self._loaded_for: Optional[UUID] = None

    async def load_weights(self, tenant_id: UUID) -> MLWeights:
        """
        Load persisted weights; defaults when none are stored, the row is
        unreadable or the query fails or times out.
        """
        query = select(MLModelWeights).where(
            and_(
                MLModelWeights.tenant_id == tenant_id,
                MLModelWeights.model_name == MODEL_NAME,
            )
        )
        try:
            async with self.db.begin_nested():
                result = await execute_with_timeout(self.db, query, label="ml_weights")
                row = result.scalar_one_or_none()
            if row is not None:
                self.weights = MLWeights(**row.weights)
            else:
                self.weights = MLWeights()
        except Exception as e:
            logger.warning(f"Failed to load ML weights for tenant {tenant_id}, using defaults: {e}")
            self.weights = MLWeights()
        self._loaded_for = tenant_id
        return self.weights

    def adjust(self, raw_confidence: float, features: MLFeatures) -> float:
        """Adjusted confidence using the currently loaded weights."""
        return adjust_confidence(raw_confidence, features, self.weights)

    async def save_weights(
        self,
        tenant_id: UUID,
        weights: MLWeights,
        accuracy_pct: Optional[float] = None,
        total_samples: int = 0,
    ) -> None:
        """Upsert the weight vector as one row write."""
        result = await self.db.execute(
            select(MLModelWeights).where(
                and_(
                    MLModelWeights.tenant_id == tenant_id,
                    MLModelWeights.model_name == MODEL_NAME,
                )
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = MLModelWeights(tenant_id=tenant_id, model_name=MODEL_NAME, weights={})
            self.db.add(row)
        row.weights = weights.model_dump()
        row.accuracy_pct = accuracy_pct
        row.total_samples = total_samples
        row.updated_at = datetime.now(timezone.utc)
        await self.db.flush()


# ==================== Feedback Loop ====================

class PutawayFeedbackLoop:
    """
    Collects recommendation outcomes, measures accuracy and retrains the adjuster.
    """

    def __init__(self, db: AsyncSession, adjuster: Optional[MLConfidenceAdjuster] = None):
        self.db = db
        self.adjuster = adjuster or MLConfidenceAdjuster(db)

    async def record_recommendations(self, tenant_id: UUID, batch: BatchPutawayResult) -> List[UUID]:
        """Persist a batch's advisory output so outcomes can be learned from."""
        ids = []
        for rec in batch.recommendations.values():
            row = PutawayRecommendationHistory(
                tenant_id=tenant_id,
                facility_id=rec.facility_id,
                material_id=rec.material_id,
                lot_number=rec.lot_number,
                quantity=rec.quantity,
                recommended_location_id=rec.location_id,
                algorithm_used=rec.algorithm,
                confidence_score=rec.confidence_score,
                ml_adjusted_confidence=rec.ml_adjusted_confidence,
                utilization_after=rec.utilization_after,
                congestion_penalty=rec.congestion_penalty,
                is_cross_dock=rec.cross_dock is not None,
                features=rec.features.model_dump(),
            )
            self.db.add(row)
            await self.db.flush()
            ids.append(row.id)
        logger.info(f"Recorded {len(ids)} putaway recommendations for tenant {tenant_id}")
        return ids

    async def record_decision(
        self,
        tenant_id: UUID,
        recommendation_id: UUID,
        actual_location_id: UUID,
    ) -> PutawayRecommendationHistory:
        """Capture where the operator actually put the lot."""
        result = await self.db.execute(
            select(PutawayRecommendationHistory).where(
                and_(
                    PutawayRecommendationHistory.id == recommendation_id,
                    PutawayRecommendationHistory.tenant_id == tenant_id,
                )
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise ValueError("Recommendation not found")

        row.actual_location_id = actual_location_id
        row.accepted = actual_location_id == row.recommended_location_id
        row.decided_at = datetime.now(timezone.utc)
        await self.db.flush()
        return row

    async def collect_feedback(
        self,
        tenant_id: UUID,
        start_date: datetime,
        end_date: datetime,
    ) -> List[FeedbackRecord]:
        """Decided recommendations in [start_date, end_date]."""
        result = await self.db.execute(
            select(PutawayRecommendationHistory)
            .where(
                and_(
                    PutawayRecommendationHistory.tenant_id == tenant_id,
                    PutawayRecommendationHistory.decided_at.isnot(None),
                    PutawayRecommendationHistory.accepted.isnot(None),
                    PutawayRecommendationHistory.decided_at >= start_date,
                    PutawayRecommendationHistory.decided_at <= end_date,
                )
            )
            .order_by(PutawayRecommendationHistory.decided_at, PutawayRecommendationHistory.lot_number)
        )
        return [
            FeedbackRecord(
                recommendation_id=row.id,
                material_id=row.material_id,
                recommended_location_id=row.recommended_location_id,
                actual_location_id=row.actual_location_id,
                accepted=bool(row.accepted),
                algorithm_used=row.algorithm_used,
                confidence_score=row.confidence_score,
                ml_adjusted_confidence=row.ml_adjusted_confidence,
                features=features_from_json(row.features),
                decided_at=_utc(row.decided_at),
            )
            for row in result.scalars().all()
        ]

    async def calculate_accuracy_metrics(self, tenant_id: UUID, days: int = 90) -> AccuracyMetrics:
        """Acceptance rate overall and per algorithm tag."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        result = await self.db.execute(
            select(
                PutawayRecommendationHistory.algorithm_used,
                PutawayRecommendationHistory.accepted,
                func.count(PutawayRecommendationHistory.id).label("total"),
            )
            .where(
                and_(
                    PutawayRecommendationHistory.tenant_id == tenant_id,
                    PutawayRecommendationHistory.decided_at.isnot(None),
                    PutawayRecommendationHistory.accepted.isnot(None),
                    PutawayRecommendationHistory.decided_at >= cutoff,
                )
            )
            .group_by(PutawayRecommendationHistory.algorithm_used, PutawayRecommendationHistory.accepted)
        )

        totals: Dict[str, int] = defaultdict(int)
        accepted: Dict[str, int] = defaultdict(int)
        for row in result.all():
            totals[row.algorithm_used] += int(row.total)
            if row.accepted:
                accepted[row.algorithm_used] += int(row.total)

        total = sum(totals.values())
        total_accepted = sum(accepted.values())
        by_algorithm = [
            AlgorithmAccuracy(
                algorithm=algo,
                accuracy=round(accepted[algo] / count * 100, 2) if count else 0.0,
                count=count,
            )
            for algo, count in sorted(totals.items())
        ]
        return AccuracyMetrics(
            overall_accuracy=round(total_accepted / total * 100, 2) if total else 0.0,
            total_recommendations=total,
            accepted_recommendations=total_accepted,
            by_algorithm=by_algorithm,
        )

    async def train_model(self, tenant_id: UUID, strict: bool = False) -> MLWeights:
        """
        Retrain weights from the last ML_TRAINING_WINDOW_DAYS of feedback.

        Zero feedback is a no-op. On failure the prior weights stay in
        effect; strict callers get ModelTrainingError, others a log entry.
        """
        prior = await self.adjuster.load_weights(tenant_id)
        try:
            # a failed write only rolls back the savepoint; the stored vector is untouched
            async with self.db.begin_nested():
                end = datetime.now(timezone.utc)
                start = end - timedelta(days=settings.ML_TRAINING_WINDOW_DAYS)
                feedback = await self.collect_feedback(tenant_id, start, end)
                if feedback:
                    trained = train_weights(prior, feedback)
                    metrics = await self.calculate_accuracy_metrics(
                        tenant_id, days=settings.ML_TRAINING_WINDOW_DAYS
                    )
                    await self.adjuster.save_weights(
                        tenant_id,
                        trained,
                        accuracy_pct=metrics.overall_accuracy,
                        total_samples=len(feedback),
                    )
        except Exception as e:
            self.adjuster.weights = prior
            logger.error(f"Putaway model training failed for tenant {tenant_id}: {e}")
            if strict:
                raise ModelTrainingError(f"Training failed for tenant {tenant_id}", cause=e) from e
            return prior

        if not feedback:
            logger.info(f"No putaway feedback for tenant {tenant_id}; weights unchanged")
            return prior

        self.adjuster.weights = trained
        logger.info(
            f"Putaway model retrained for tenant {tenant_id} on {len(feedback)} samples "
            f"(accuracy {metrics.overall_accuracy:.1f}%)"
        )
        return trained

    async def evaluate_health(self, tenant_id: UUID, days: int = 7) -> ModelHealth:
        """Map recent accuracy to a health status."""
        metrics = await self.calculate_accuracy_metrics(tenant_id, days=days)
        accuracy = metrics.overall_accuracy

        if metrics.total_recommendations < settings.ML_MIN_HEALTH_SAMPLES:
            return ModelHealth(
                status=HealthStatus.HEALTHY,
                accuracy=accuracy,
                sample_count=metrics.total_recommendations,
                needs_retrain=False,
                needs_alert=False,
                message=f"Insufficient feedback ({metrics.total_recommendations} samples)",
            )
        if accuracy >= settings.ML_HEALTHY_ACCURACY:
            status, retrain, alert = HealthStatus.HEALTHY, False, False
        elif accuracy >= settings.ML_UNHEALTHY_ACCURACY:
            status, retrain, alert = HealthStatus.DEGRADED, True, False
        else:
            status, retrain, alert = HealthStatus.UNHEALTHY, True, True

        return ModelHealth(
            status=status,
            accuracy=accuracy,
            sample_count=metrics.total_recommendations,
            needs_retrain=retrain,
            needs_alert=alert,
            message=f"ML accuracy {accuracy:.1f}% over {metrics.total_recommendations} decisions",
        )
