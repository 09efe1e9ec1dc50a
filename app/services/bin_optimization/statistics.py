"""
Statistical Analysis for Bin Optimization

Pure Python statistics over recommendation history and utilization
snapshots:
- Descriptive statistics (mean, std dev, percentiles)
- Proportion estimates with 95% confidence intervals
- Outlier detection (IQR, Z-score, Modified Z-score)
- Correlation (Pearson, Spearman, linear regression)

Results on fewer than MIN_SIGNIFICANT_SAMPLE observations are reported
but not marked significant.

No external ML libraries required - pure Python implementation.
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.bin_optimization import BinUtilizationSnapshot, PutawayRecommendationHistory
from app.schemas.bin_optimization import (
    CorrelationResult,
    CorrelationStrength,
    DescriptiveStats,
    OutlierAnalysis,
    OutlierMethod,
    OutlierRecord,
    OutlierSeverity,
    ProportionEstimate,
)

logger = logging.getLogger(__name__)

MIN_SIGNIFICANT_SAMPLE = 30
Z_95 = 1.96

Z_SCORE_THRESHOLD = 3.0
MODIFIED_Z_THRESHOLD = 3.5
MODIFIED_Z_CONSTANT = 0.6745
SEVERE_SCORE = 3.5
EXTREME_SCORE = 4.0

IQR_FENCE = 1.5
IQR_SEVERE_EXCESS = 1.5
IQR_EXTREME_EXCESS = 3.0

NO_RELATIONSHIP_R = 0.1


# ==================== Descriptive ====================

def mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def sample_std_dev(values: Sequence[float]) -> float:
    """Sample standard deviation (n - 1)."""
    n = len(values)
    if n < 2:
        return 0.0
    avg = mean(values)
    return math.sqrt(sum((v - avg) ** 2 for v in values) / (n - 1))


def percentile(values: Sequence[float], pct: float) -> float:
    """Percentile with linear interpolation between closest ranks."""
    if not values:
        return 0.0
    ordered = sorted(values)
    if len(ordered) == 1:
        return ordered[0]
    position = (len(ordered) - 1) * pct / 100
    lower = math.floor(position)
    upper = math.ceil(position)
    if lower == upper:
        return ordered[lower]
    return ordered[lower] + (ordered[upper] - ordered[lower]) * (position - lower)


def describe(metric: str, values: Sequence[float]) -> DescriptiveStats:
    """Descriptive statistics for one metric."""
    values = list(values)
    if not values:
        return DescriptiveStats(
            metric=metric, n=0, mean=0.0, std_dev=0.0, median=0.0,
            p25=0.0, p75=0.0, p95=0.0, min=0.0, max=0.0, is_significant=False,
        )
    return DescriptiveStats(
        metric=metric,
        n=len(values),
        mean=round(mean(values), 4),
        std_dev=round(sample_std_dev(values), 4),
        median=round(percentile(values, 50), 4),
        p25=round(percentile(values, 25), 4),
        p75=round(percentile(values, 75), 4),
        p95=round(percentile(values, 95), 4),
        min=min(values),
        max=max(values),
        is_significant=len(values) >= MIN_SIGNIFICANT_SAMPLE,
    )


def proportion_estimate(successes: int, n: int) -> ProportionEstimate:
    """Proportion with a normal-approximation 95% confidence interval."""
    if n <= 0:
        return ProportionEstimate(proportion=0.0, n=0, ci_lower=0.0, ci_upper=0.0, is_significant=False)
    p = successes / n
    margin = Z_95 * math.sqrt(p * (1 - p) / n)
    return ProportionEstimate(
        proportion=round(p, 4),
        n=n,
        ci_lower=round(max(0.0, p - margin), 4),
        ci_upper=round(min(1.0, p + margin), 4),
        is_significant=n >= MIN_SIGNIFICANT_SAMPLE,
    )


# ==================== Outliers ====================

def score_severity(abs_score: float) -> OutlierSeverity:
    """Severity band for a Z or Modified Z score."""
    if abs_score >= EXTREME_SCORE:
        return OutlierSeverity.EXTREME
    if abs_score >= SEVERE_SCORE:
        return OutlierSeverity.SEVERE
    return OutlierSeverity.MODERATE


def iqr_severity(excess: float, iqr: float) -> OutlierSeverity:
    """Severity by distance past the fence, in IQR units."""
    if iqr <= 0:
        return OutlierSeverity.EXTREME if excess > 0 else OutlierSeverity.MODERATE
    if excess > IQR_EXTREME_EXCESS * iqr:
        return OutlierSeverity.EXTREME
    if excess > IQR_SEVERE_EXCESS * iqr:
        return OutlierSeverity.SEVERE
    return OutlierSeverity.MODERATE


def _record(
    key: str,
    value: float,
    method: OutlierMethod,
    outlier_type: str,
    severity: OutlierSeverity,
    score: float,
    lower: Optional[float] = None,
    upper: Optional[float] = None,
) -> OutlierRecord:
    return OutlierRecord(
        key=key,
        value=value,
        method=method,
        outlier_type=outlier_type,
        severity=severity,
        score=round(score, 4),
        lower_bound=lower,
        upper_bound=upper,
        requires_investigation=severity in (OutlierSeverity.SEVERE, OutlierSeverity.EXTREME),
    )


def detect_outliers_iqr(observations: Sequence[Tuple[str, float]]) -> Tuple[List[OutlierRecord], float, float]:
    """Flag values outside Q1 - 1.5*IQR and Q3 + 1.5*IQR. Returns (outliers, lower, upper)."""
    values = [v for _, v in observations]
    q1 = percentile(values, 25)
    q3 = percentile(values, 75)
    iqr = q3 - q1
    lower = q1 - IQR_FENCE * iqr
    upper = q3 + IQR_FENCE * iqr

    outliers = []
    for key, value in observations:
        if value > upper:
            excess = value - upper
            outliers.append(_record(
                key, value, OutlierMethod.IQR, "HIGH", iqr_severity(excess, iqr),
                excess / iqr if iqr else 0.0, lower, upper,
            ))
        elif value < lower:
            excess = lower - value
            outliers.append(_record(
                key, value, OutlierMethod.IQR, "LOW", iqr_severity(excess, iqr),
                excess / iqr if iqr else 0.0, lower, upper,
            ))
    return outliers, lower, upper


def detect_outliers_zscore(observations: Sequence[Tuple[str, float]]) -> List[OutlierRecord]:
    """Flag |z| > 3 using the sample standard deviation."""
    values = [v for _, v in observations]
    std = sample_std_dev(values)
    if std == 0:
        return []
    avg = mean(values)

    outliers = []
    for key, value in observations:
        z = (value - avg) / std
        if abs(z) > Z_SCORE_THRESHOLD:
            outliers.append(_record(
                key, value, OutlierMethod.Z_SCORE, "HIGH" if z > 0 else "LOW", score_severity(abs(z)), z,
            ))
    return outliers


def detect_outliers_modified_zscore(observations: Sequence[Tuple[str, float]]) -> List[OutlierRecord]:
    """Flag |0.6745 * (x - median) / MAD| > 3.5."""
    values = [v for _, v in observations]
    if not values:
        return []
    median = percentile(values, 50)
    mad = percentile([abs(v - median) for v in values], 50)
    if mad == 0:
        return []

    outliers = []
    for key, value in observations:
        mz = MODIFIED_Z_CONSTANT * (value - median) / mad
        if abs(mz) > MODIFIED_Z_THRESHOLD:
            outliers.append(_record(
                key, value, OutlierMethod.MODIFIED_Z_SCORE, "HIGH" if mz > 0 else "LOW",
                score_severity(abs(mz)), mz,
            ))
    return outliers


def detect_outliers(
    metric: str,
    observations: Sequence[Tuple[str, float]],
    method: OutlierMethod = OutlierMethod.IQR,
) -> OutlierAnalysis:
    """Run one outlier method over (key, value) observations."""
    observations = list(observations)
    if not observations:
        return OutlierAnalysis(metric=metric, method=method, n=0)

    method = OutlierMethod(method)
    if method == OutlierMethod.IQR:
        outliers, lower, upper = detect_outliers_iqr(observations)
        return OutlierAnalysis(
            metric=metric, method=method, n=len(observations),
            outliers=outliers, lower_bound=round(lower, 4), upper_bound=round(upper, 4),
        )
    if method == OutlierMethod.Z_SCORE:
        outliers = detect_outliers_zscore(observations)
    else:
        outliers = detect_outliers_modified_zscore(observations)
    return OutlierAnalysis(metric=metric, method=method, n=len(observations), outliers=outliers)


# ==================== Correlation ====================

def pearson(xs: Sequence[float], ys: Sequence[float]) -> float:
    """Pearson r; 0 when either input has no variance."""
    n = len(xs)
    if n < 2 or n != len(ys):
        return 0.0
    mx, my = mean(xs), mean(ys)
    sxy = sum((x - mx) * (y - my) for x, y in zip(xs, ys))
    sxx = sum((x - mx) ** 2 for x in xs)
    syy = sum((y - my) ** 2 for y in ys)
    if sxx == 0 or syy == 0:
        return 0.0
    return max(-1.0, min(1.0, sxy / math.sqrt(sxx * syy)))


def average_ranks(values: Sequence[float]) -> List[float]:
    """1-based ranks; ties share their average rank."""
    order = sorted(range(len(values)), key=lambda i: values[i])
    ranks = [0.0] * len(values)
    i = 0
    while i < len(order):
        j = i
        while j + 1 < len(order) and values[order[j + 1]] == values[order[i]]:
            j += 1
        avg_rank = (i + j) / 2 + 1
        for k in range(i, j + 1):
            ranks[order[k]] = avg_rank
        i = j + 1
    return ranks


def spearman(xs: Sequence[float], ys: Sequence[float]) -> float:
    return pearson(average_ranks(xs), average_ranks(ys))


def linear_regression(xs: Sequence[float], ys: Sequence[float]) -> Tuple[float, float]:
    """Least-squares (slope, intercept); slope 0 when x has no variance."""
    if not xs:
        return 0.0, 0.0
    mx, my = mean(xs), mean(ys)
    sxx = sum((x - mx) ** 2 for x in xs)
    if sxx == 0:
        return 0.0, my
    slope = sum((x - mx) * (y - my) for x, y in zip(xs, ys)) / sxx
    return slope, my - slope * mx


def t_statistic(r: float, n: int) -> float:
    """t = r * sqrt((n - 2) / (1 - r^2))."""
    if n < 3:
        return 0.0
    denominator = 1 - r * r
    if denominator <= 0:
        return math.copysign(math.inf, r)
    return r * math.sqrt((n - 2) / denominator)


def correlation_strength(r: float) -> CorrelationStrength:
    magnitude = abs(r)
    if magnitude < 0.2:
        return CorrelationStrength.VERY_WEAK
    if magnitude < 0.4:
        return CorrelationStrength.WEAK
    if magnitude < 0.6:
        return CorrelationStrength.MODERATE
    if magnitude < 0.8:
        return CorrelationStrength.STRONG
    return CorrelationStrength.VERY_STRONG


def correlation_direction(r: float) -> str:
    if abs(r) < NO_RELATIONSHIP_R:
        return "NONE"
    return "POSITIVE" if r > 0 else "NEGATIVE"


def correlate(metric_x: str, metric_y: str, xs: Sequence[float], ys: Sequence[float]) -> CorrelationResult:
    """Pearson/Spearman correlation with a linear fit of y on x."""
    xs, ys = list(xs), list(ys)
    if len(xs) != len(ys):
        raise ValueError("Correlation inputs must be the same length")

    n = len(xs)
    r = pearson(xs, ys)
    slope, intercept = linear_regression(xs, ys)
    t = t_statistic(r, n)
    return CorrelationResult(
        metric_x=metric_x,
        metric_y=metric_y,
        n=n,
        pearson=round(r, 4),
        spearman=round(spearman(xs, ys), 4),
        slope=round(slope, 6),
        intercept=round(intercept, 6),
        r_squared=round(r * r, 4),
        t_statistic=t if math.isinf(t) else round(t, 4),
        strength=correlation_strength(r),
        relationship=correlation_direction(r),
        is_significant=n >= MIN_SIGNIFICANT_SAMPLE and abs(t) > Z_95,
    )


class BinOptimizationStatisticsService:
    """
    Statistics over stored recommendation and utilization data.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _recommendations(self, tenant_id: UUID, days: int) -> List[PutawayRecommendationHistory]:
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        result = await self.db.execute(
            select(PutawayRecommendationHistory).where(
                and_(
                    PutawayRecommendationHistory.tenant_id == tenant_id,
                    PutawayRecommendationHistory.created_at >= cutoff,
                )
            )
        )
        return list(result.scalars().all())

    async def get_acceptance_statistics(self, tenant_id: UUID, days: int = 30) -> Dict:
        """Acceptance rate plus confidence and utilization distributions."""
        history = await self._recommendations(tenant_id, days)
        decided = [h for h in history if h.accepted is not None]
        accepted = sum(1 for h in decided if h.accepted)

        return {
            "period_days": days,
            "acceptance": proportion_estimate(accepted, len(decided)),
            "confidence": describe("confidence_score", [h.confidence_score for h in history]),
            "utilization_after": describe(
                "utilization_after",
                [h.utilization_after for h in history if h.utilization_after is not None],
            ),
        }

    async def detect_utilization_outliers(
        self,
        tenant_id: UUID,
        facility_id: Optional[UUID] = None,
        method: OutlierMethod = OutlierMethod.IQR,
    ) -> OutlierAnalysis:
        """Outlier locations in the most recent utilization snapshot."""
        latest_query = select(func.max(BinUtilizationSnapshot.captured_at)).where(
            BinUtilizationSnapshot.tenant_id == tenant_id
        )
        if facility_id:
            latest_query = latest_query.where(BinUtilizationSnapshot.facility_id == facility_id)
        latest = (await self.db.execute(latest_query)).scalar()
        if latest is None:
            logger.info(f"No utilization snapshots for tenant {tenant_id}")
            return OutlierAnalysis(metric="utilization_pct", method=method, n=0)

        query = select(BinUtilizationSnapshot).where(
            and_(
                BinUtilizationSnapshot.tenant_id == tenant_id,
                BinUtilizationSnapshot.captured_at == latest,
            )
        )
        if facility_id:
            query = query.where(BinUtilizationSnapshot.facility_id == facility_id)
        result = await self.db.execute(query.order_by(BinUtilizationSnapshot.location_code))

        observations = [(s.location_code, s.utilization_pct) for s in result.scalars().all()]
        return detect_outliers("utilization_pct", observations, method)

    async def confidence_acceptance_correlation(self, tenant_id: UUID, days: int = 90) -> CorrelationResult:
        """Does higher confidence predict acceptance?"""
        history = await self._recommendations(tenant_id, days)
        decided = [h for h in history if h.accepted is not None]
        xs = [
            h.ml_adjusted_confidence if h.ml_adjusted_confidence is not None else h.confidence_score
            for h in decided
        ]
        ys = [1.0 if h.accepted else 0.0 for h in decided]
        return correlate("confidence", "accepted", xs, ys)
