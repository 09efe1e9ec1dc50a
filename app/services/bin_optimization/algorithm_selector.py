"""
Algorithm Selector (FFD / BFD / HYBRID)

Chooses one packing strategy per batch from the spread of item volumes
and how full the candidate bins already are:

- volume std dev > HIGH_VARIANCE_THRESHOLD              -> FFD
- std dev < LOW_VARIANCE_THRESHOLD and avg util > 70%   -> BFD
- otherwise                                             -> HYBRID

The strategy decides both the order items are processed in and how the
winning bin is picked among feasible candidates.
"""

import statistics
from dataclasses import dataclass, field
from typing import List, Sequence

from app.config import settings
from app.schemas.bin_optimization import (
    AlgorithmStrategy,
    AlgorithmType,
    BinCapacity,
    CapacityValidation,
    MLFeatures,
    PlacementItem,
)

# Residual slack difference (cf) under which BFD treats bins as equally tight
BFD_SLACK_TOLERANCE = 1.0
# Max bonus points HYBRID gives for filling a bin's remaining space
HYBRID_FIT_BONUS = 10.0


@dataclass
class ScoredCandidate:
    """A feasible location with its score for one item."""
    location: BinCapacity
    validation: CapacityValidation
    score: float
    confidence: float
    reason: str
    utilization_after: float
    congestion_penalty: float = 0.0
    affinity_score: float = 0.0
    features: MLFeatures = field(default_factory=MLFeatures)

    @property
    def residual_slack(self) -> float:
        """Cubic feet left in the bin after placement."""
        return self.location.available_cubic_feet - self.validation.required_cubic_feet

    @property
    def fill_ratio(self) -> float:
        """Share of the bin's remaining space this item would take."""
        if self.location.available_cubic_feet <= 0:
            return 0.0
        return min(self.validation.required_cubic_feet / self.location.available_cubic_feet, 1.0)


def volume_variance(volumes: Sequence[float]) -> float:
    """Population standard deviation of item volumes."""
    if len(volumes) < 2:
        return 0.0
    return statistics.pstdev(volumes)


def select_algorithm(items: Sequence[PlacementItem], candidate_bins: Sequence[BinCapacity]) -> AlgorithmStrategy:
    """Select the packing algorithm for a batch."""
    volumes = [item.total_cubic_feet for item in items]
    variance = volume_variance(volumes)
    avg_util = (
        sum(b.utilization_percentage for b in candidate_bins) / len(candidate_bins)
        if candidate_bins else 0.0
    )

    if variance > settings.HIGH_VARIANCE_THRESHOLD:
        algorithm = AlgorithmType.FFD
        reason = (
            f"High volume variance ({variance:.2f}) - "
            f"FFD places large items first to avoid stranding them"
        )
    elif variance < settings.LOW_VARIANCE_THRESHOLD and avg_util > settings.HIGH_UTILIZATION_THRESHOLD:
        algorithm = AlgorithmType.BFD
        reason = (
            f"Low volume variance ({variance:.2f}) and high bin utilization ({avg_util:.1f}%) - "
            f"BFD fills remaining gaps tightly"
        )
    else:
        algorithm = AlgorithmType.HYBRID
        reason = (
            f"Mixed batch (variance {variance:.2f}, utilization {avg_util:.1f}%) - "
            f"FFD ordering with slack-aware bin choice"
        )

    return AlgorithmStrategy(
        algorithm=algorithm,
        reason=reason,
        volume_variance=round(variance, 4),
        avg_bin_utilization=round(avg_util, 2),
        item_count=len(items),
    )


def order_items(items: Sequence[PlacementItem], algorithm: AlgorithmType) -> List[PlacementItem]:
    """
    Processing order for a batch.

    FFD/HYBRID: strictly descending volume.
    BFD: similarity order, closest to the batch median volume first.
    Lot number breaks ties so the order is deterministic.
    """
    if algorithm == AlgorithmType.BFD and items:
        median = statistics.median(item.total_cubic_feet for item in items)
        return sorted(
            items,
            key=lambda i: (abs(i.total_cubic_feet - median), -i.total_cubic_feet, i.lot_number),
        )
    return sorted(items, key=lambda i: (-i.total_cubic_feet, i.lot_number))


def rank_candidates(algorithm: AlgorithmType, candidates: Sequence[ScoredCandidate]) -> List[ScoredCandidate]:
    """
    Rank feasible candidates; the first element is the chosen bin.

    FFD: highest score.
    BFD: least residual slack; bins within BFD_SLACK_TOLERANCE of the
    tightest are decided by score.
    HYBRID: score plus a bonus proportional to how much of the bin's
    remaining space the item fills.
    """
    if not candidates:
        return []

    if algorithm == AlgorithmType.BFD:
        by_slack = sorted(candidates, key=lambda c: (c.residual_slack, -c.score, c.location.location_code))
        tightest = by_slack[0].residual_slack
        near = [c for c in by_slack if c.residual_slack - tightest < BFD_SLACK_TOLERANCE]
        primary = min(near, key=lambda c: (-c.score, c.residual_slack, c.location.location_code))
        return [primary] + [c for c in by_slack if c is not primary]

    if algorithm == AlgorithmType.HYBRID:
        return sorted(
            candidates,
            key=lambda c: (-(c.score + HYBRID_FIT_BONUS * c.fill_ratio), c.location.location_code),
        )

    return sorted(candidates, key=lambda c: (-c.score, c.location.location_code))
