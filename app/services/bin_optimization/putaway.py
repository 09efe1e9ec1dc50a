"""
Batch Putaway Orchestrator

Recommends a storage location for every lot in a receiving batch:

1. Validate the whole batch (finite, positive, bounded values; unique
   lots; materials owned by the tenant) before any placement query.
2. Select FFD / BFD / HYBRID once for the batch and order the items.
3. Per item, in order:
   - cross-dock fast path to a staging location when demand is urgent
   - otherwise filter candidates (temperature, security, 3D/cubic/weight),
     score them (ABC, utilization, pick sequence, location type,
     congestion penalty, affinity bonus), rank by the chosen algorithm
     and apply the ML confidence adjustment
   - claim the chosen bin's capacity in memory so later items see it
   - infeasible items become failures; the batch carries on

Items are processed sequentially; the in-memory capacity view is what
prevents two lots from being promised the same space.
"""

import logging
import math
from collections import Counter, defaultdict
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import select, and_, case, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.inventory import Material
from app.models.wms import InventoryLocation, LocationType, SecurityZone
from app.schemas.bin_optimization import (
    AlternativeLocation,
    BatchPutawayResult,
    BinCapacity,
    CapacityFailureType,
    CapacityValidation,
    CapacityValidationFailure,
    CrossDockOpportunity,
    ItemDimensions,
    MLFeatures,
    PlacementItem,
    PlacementRequest,
    PutawayFailure,
    PutawayRecommendation,
)
from app.services.bin_optimization.affinity import NearbyMaterialIndex, SKUAffinityScorer
from app.services.bin_optimization.algorithm_selector import (
    ScoredCandidate,
    order_items,
    rank_candidates,
    select_algorithm,
)
from app.services.bin_optimization.capacity import capacity_failure_type, validate_capacity
from app.services.bin_optimization.congestion import AisleCongestionTracker, congestion_penalty
from app.services.bin_optimization.cross_dock import CrossDockDetector
from app.services.bin_optimization.data_quality import DataQualityService, build_capacity_failure
from app.services.bin_optimization.exceptions import CrossTenantMaterialError, PutawayValidationError
from app.services.bin_optimization.ml_confidence import MLConfidenceAdjuster
from app.services.bin_optimization.query_timeout import execute_with_timeout

logger = logging.getLogger(__name__)

ALGORITHM_SUFFIX = "_ENHANCED_V3"
SINGLE_ITEM_ALGORITHM = "ABC_VELOCITY_BEST_FIT_V2"
CROSS_DOCK_ALGORITHM = "CROSS_DOCK_FAST_PATH"
CROSS_DOCK_CONFIDENCE = 0.99
MAX_ALTERNATIVES = 3
LOW_CONGESTION_SCORE = 30.0
AFFINITY_REASON_MIN_POINTS = 2.0


# ==================== Input Validation ====================

def _is_finite(value) -> bool:
    return isinstance(value, (int, float)) and math.isfinite(value)


def _validate_dimensions(label: str, dims: ItemDimensions, errors: List[str]) -> None:
    for name in ("length_inches", "width_inches", "height_inches"):
        value = getattr(dims, name)
        if not _is_finite(value) or value <= 0:
            errors.append(f"{label}: {name} must be a positive finite number (got {value})")

    if not _is_finite(dims.cubic_feet) or dims.cubic_feet <= 0:
        errors.append(f"{label}: cubic_feet must be a positive finite number (got {dims.cubic_feet})")
    elif dims.cubic_feet > settings.MAX_CUBIC_FEET_PER_UNIT:
        errors.append(
            f"{label}: cubic_feet {dims.cubic_feet} exceeds maximum {settings.MAX_CUBIC_FEET_PER_UNIT:g}"
        )

    weight = dims.weight_lbs_per_unit
    if not _is_finite(weight) or weight < 0:
        errors.append(f"{label}: weight_lbs_per_unit must be a non-negative finite number (got {weight})")
    elif weight > settings.MAX_WEIGHT_LBS_PER_UNIT:
        errors.append(
            f"{label}: weight_lbs_per_unit {weight} exceeds maximum {settings.MAX_WEIGHT_LBS_PER_UNIT:g}"
        )


def validate_placement_requests(items: Sequence[PlacementRequest]) -> None:
    """
    Validate request shape and numeric bounds.

    Collects every violation and raises PutawayValidationError once.
    """
    errors: List[str] = []
    lot_counts = Counter(item.lot_number for item in items)
    for lot_number, count in sorted(lot_counts.items()):
        if count > 1:
            errors.append(f"Lot {lot_number}: appears {count} times in batch")

    for item in items:
        label = f"Lot {item.lot_number}"
        if not _is_finite(item.quantity):
            errors.append(f"{label}: quantity must be a finite number (got {item.quantity})")
        elif item.quantity <= 0:
            errors.append(f"{label}: quantity must be positive (got {item.quantity})")
        elif item.quantity > settings.MAX_QUANTITY:
            errors.append(f"{label}: quantity {item.quantity} exceeds maximum {settings.MAX_QUANTITY:g}")

        if item.dimensions is not None:
            _validate_dimensions(label, item.dimensions, errors)

    if errors:
        raise PutawayValidationError(errors)


def material_dimensions(material: Material) -> Optional[ItemDimensions]:
    """Per-unit dimensions from the material master, or None when incomplete."""
    if not (material.length_inches and material.width_inches and material.height_inches):
        return None
    cubic = material.unit_cubic_feet
    return ItemDimensions(
        length_inches=material.length_inches,
        width_inches=material.width_inches,
        height_inches=material.height_inches,
        cubic_feet=cubic,
        weight_lbs_per_unit=material.weight_lbs_per_unit or 0.0,
    )


# ==================== Scoring ====================

def is_location_eligible(location: BinCapacity, item: PlacementItem) -> bool:
    """Temperature and security requirements."""
    if item.temperature_controlled and not location.temperature_controlled:
        return False
    if item.security_zone != SecurityZone.STANDARD.value and location.security_zone != item.security_zone:
        return False
    return True


def score_location(
    location: BinCapacity,
    item: PlacementItem,
    utilization_after: float,
) -> Tuple[float, float, List[str], MLFeatures]:
    """
    Rule-based score (0-100) and confidence (0-1) of a location for an item.

    Returns (score, confidence, reasons, features).
    """
    score = 0.0
    confidence = 0.5
    reasons: List[str] = []
    features = MLFeatures()
    abc = item.abc_classification

    # ABC velocity match
    if location.abc_classification and location.abc_classification == abc:
        score += 25
        confidence += 0.25
        features.abc_match = True
        reasons.append(f"ABC class match ({abc})")
    else:
        score += 8

    # Post-placement utilization
    if settings.OPTIMAL_UTILIZATION_MIN <= utilization_after <= settings.OPTIMAL_UTILIZATION_MAX:
        score += 25
        confidence += 0.2
        features.utilization_optimal = True
        reasons.append(f"Optimal utilization ({utilization_after:.0f}%)")
    elif 40 <= utilization_after <= 95:
        score += 15
    else:
        score += 5

    # Pick sequence
    if abc == "A":
        if location.pick_sequence is not None and location.pick_sequence < settings.PRIME_PICK_SEQUENCE:
            score += 35
            confidence += 0.2
            features.pick_sequence_low = True
            reasons.append("Prime pick location")
        elif location.pick_sequence is not None and location.pick_sequence < 2 * settings.PRIME_PICK_SEQUENCE:
            score += 20
        else:
            score += 5
    else:
        score += 18

    # Location type
    if location.location_type == LocationType.PICK_FACE.value and abc == "A":
        score += 15
        confidence += 0.1
        features.location_type_match = True
        reasons.append("Pick face for A item")
    elif location.location_type == LocationType.RESERVE.value:
        score += 12
        if abc != "A":
            features.location_type_match = True
    elif location.location_type == LocationType.BULK.value and abc != "A":
        features.location_type_match = True

    return min(score, 100.0), min(confidence, 1.0), reasons, features


def _reason_text(reasons: List[str]) -> str:
    return "; ".join(reasons) if reasons else "Standard placement"


class BatchPutawayService:
    """
    Batch putaway recommendation engine.
    """

    def __init__(
        self,
        db: AsyncSession,
        congestion: Optional[AisleCongestionTracker] = None,
        cross_dock: Optional[CrossDockDetector] = None,
        affinity: Optional[SKUAffinityScorer] = None,
        adjuster: Optional[MLConfidenceAdjuster] = None,
        data_quality: Optional[DataQualityService] = None,
    ):
        self.db = db
        self.congestion = congestion or AisleCongestionTracker(db)
        self.cross_dock = cross_dock or CrossDockDetector(db)
        self.affinity = affinity or SKUAffinityScorer(db)
        self.adjuster = adjuster or MLConfidenceAdjuster(db)
        self.data_quality = data_quality or DataQualityService(db)

    # ==================== Data Loading ====================

    async def _load_materials(self, tenant_id: UUID, material_ids: Sequence[UUID]) -> Dict[UUID, Material]:
        """Materials owned by the tenant; any other reference fails the batch."""
        unique_ids = list(dict.fromkeys(material_ids))
        result = await execute_with_timeout(
            self.db,
            select(Material).where(
                and_(
                    Material.tenant_id == tenant_id,
                    Material.id.in_(unique_ids),
                    Material.deleted_at.is_(None),
                )
            ),
            label="batch_materials",
        )
        materials = {m.id: m for m in result.scalars().all()}
        missing = [mid for mid in unique_ids if mid not in materials]
        if missing:
            raise CrossTenantMaterialError(
                [f"Material {mid} not found for tenant {tenant_id}" for mid in missing]
            )
        return materials

    def _resolve_items(
        self,
        items: Sequence[PlacementRequest],
        materials: Dict[UUID, Material],
    ) -> List[PlacementItem]:
        """Join requests to material snapshots; dimensions override the master data."""
        resolved: List[PlacementItem] = []
        errors: List[str] = []
        for request in items:
            material = materials[request.material_id]
            dims = request.dimensions or material_dimensions(material)
            if dims is None:
                errors.append(f"Lot {request.lot_number}: material {material.material_code} has no dimensions")
                continue
            if request.dimensions is None:
                _validate_dimensions(f"Lot {request.lot_number}", dims, errors)
            abc = (material.abc_classification or "C").upper()
            resolved.append(PlacementItem(
                material_id=material.id,
                material_code=material.material_code,
                facility_id=material.facility_id,
                lot_number=request.lot_number,
                quantity=request.quantity,
                dimensions=dims,
                abc_classification=abc if abc in ("A", "B", "C") else "C",
                temperature_controlled=bool(material.temperature_controlled),
                security_zone=material.security_zone or SecurityZone.STANDARD.value,
            ))
        if errors:
            raise PutawayValidationError(errors)
        return resolved

    async def _load_bins(
        self,
        tenant_id: UUID,
        facility_ids: Sequence[UUID],
    ) -> Tuple[Dict[UUID, List[BinCapacity]], Dict[UUID, List[BinCapacity]]]:
        """Storage and staging capacity views per facility."""
        result = await execute_with_timeout(
            self.db,
            select(InventoryLocation)
            .where(
                and_(
                    InventoryLocation.tenant_id == tenant_id,
                    InventoryLocation.facility_id.in_(list(facility_ids)),
                    InventoryLocation.is_active.is_(True),
                    InventoryLocation.is_available.is_(True),
                    InventoryLocation.deleted_at.is_(None),
                )
            )
            .order_by(InventoryLocation.location_code),
            label="candidate_locations",
        )
        storage: Dict[UUID, List[BinCapacity]] = defaultdict(list)
        staging: Dict[UUID, List[BinCapacity]] = defaultdict(list)
        for location in result.scalars().all():
            view = BinCapacity.from_location(location)
            if location.location_type == LocationType.STAGING.value:
                staging[location.facility_id].append(view)
            else:
                storage[location.facility_id].append(view)
        return storage, staging

    # ==================== Per-Item Placement ====================

    async def _evaluate_candidates(
        self,
        tenant_id: UUID,
        item: PlacementItem,
        bins: List[BinCapacity],
        congestion_scores: Dict[str, float],
        nearby: NearbyMaterialIndex,
    ) -> Tuple[List[ScoredCandidate], Optional[Tuple[BinCapacity, CapacityValidation]], int]:
        """
        Score every feasible bin.

        Returns (feasible, closest infeasible bin with its validation, eligible count).
        """
        feasible: List[ScoredCandidate] = []
        closest_miss: Optional[Tuple[BinCapacity, CapacityValidation]] = None
        eligible = 0

        for location in bins:
            if not is_location_eligible(location, item):
                continue
            eligible += 1
            validation = validate_capacity(location, item.dimensions, item.quantity)
            if not validation.can_fit:
                if closest_miss is None or location.available_cubic_feet > closest_miss[0].available_cubic_feet:
                    closest_miss = (location, validation)
                continue

            utilization_after = location.utilization_after(validation.required_cubic_feet)
            score, confidence, reasons, features = score_location(location, item, utilization_after)

            aisle_score = congestion_scores.get(location.aisle_code, 0.0) if location.aisle_code else 0.0
            penalty = congestion_penalty(aisle_score)
            if aisle_score < LOW_CONGESTION_SCORE:
                features.congestion_low = True
            if penalty > 0:
                reasons.append(f"Aisle congestion (-{penalty:.1f} pts)")
            elif features.congestion_low:
                reasons.append("Low congestion bonus")

            affinity = await self.affinity.get_affinity_score(
                tenant_id, item.material_id, nearby.nearby(location)
            )
            affinity_bonus = affinity * settings.AFFINITY_WEIGHT
            if affinity_bonus > AFFINITY_REASON_MIN_POINTS:
                reasons.append(f"High SKU affinity (+{affinity_bonus:.1f} pts)")

            feasible.append(ScoredCandidate(
                location=location,
                validation=validation,
                score=round(score - penalty + affinity_bonus, 4),
                confidence=confidence,
                reason=_reason_text(reasons),
                utilization_after=utilization_after,
                congestion_penalty=penalty,
                affinity_score=affinity,
                features=features,
            ))

        return feasible, closest_miss, eligible

    def _cross_dock_recommendation(
        self,
        item: PlacementItem,
        staging_bins: List[BinCapacity],
        opportunity: CrossDockOpportunity,
    ) -> Optional[PutawayRecommendation]:
        """Staging recommendation for an urgent lot, or None when no staging bin fits."""
        eligible = [staging for staging in staging_bins if is_location_eligible(staging, item)]
        selection = self.cross_dock.select_staging_location(eligible, item.dimensions, item.quantity)
        if selection is None:
            logger.info(f"Lot {item.lot_number}: cross-dock wanted but no eligible staging location fits")
            return None
        staging, validation = selection
        utilization_after = staging.utilization_after(validation.required_cubic_feet)
        staging.apply_placement(validation.required_cubic_feet, validation.required_weight_lbs)
        return PutawayRecommendation(
            lot_number=item.lot_number,
            material_id=item.material_id,
            facility_id=item.facility_id,
            quantity=item.quantity,
            location_id=staging.location_id,
            location_code=staging.location_code,
            location_type=staging.location_type,
            zone_code=staging.zone_code,
            aisle_code=staging.aisle_code,
            algorithm=CROSS_DOCK_ALGORITHM,
            score=100.0,
            confidence_score=CROSS_DOCK_CONFIDENCE,
            ml_adjusted_confidence=CROSS_DOCK_CONFIDENCE,
            reason=f"Cross-dock: {opportunity.reason}",
            utilization_after=round(utilization_after, 2),
            cross_dock=opportunity,
            capacity_check=validation,
        )

    def _build_recommendation(
        self,
        item: PlacementItem,
        ranked: List[ScoredCandidate],
        algorithm_tag: str,
    ) -> PutawayRecommendation:
        primary = ranked[0]
        alternatives = [
            AlternativeLocation(
                location_id=c.location.location_id,
                location_code=c.location.location_code,
                score=round(c.score, 2),
                confidence_score=round(c.confidence, 4),
                utilization_after=round(c.utilization_after, 2),
                reason=c.reason,
            )
            for c in ranked[1:1 + MAX_ALTERNATIVES]
        ]
        return PutawayRecommendation(
            lot_number=item.lot_number,
            material_id=item.material_id,
            facility_id=item.facility_id,
            quantity=item.quantity,
            location_id=primary.location.location_id,
            location_code=primary.location.location_code,
            location_type=primary.location.location_type,
            zone_code=primary.location.zone_code,
            aisle_code=primary.location.aisle_code,
            algorithm=algorithm_tag,
            score=round(primary.score, 2),
            confidence_score=round(primary.confidence, 4),
            ml_adjusted_confidence=round(self.adjuster.adjust(primary.confidence, primary.features), 4),
            reason=primary.reason,
            utilization_after=round(primary.utilization_after, 2),
            congestion_penalty=round(primary.congestion_penalty, 2),
            affinity_score=round(primary.affinity_score, 4),
            features=primary.features,
            alternatives=alternatives,
            capacity_check=primary.validation,
        )

    # ==================== Public API ====================

    async def suggest_batch_putaway(
        self,
        items: Sequence[PlacementRequest],
        tenant_id: UUID,
        received_at: Optional[date] = None,
    ) -> BatchPutawayResult:
        """
        Recommend locations for a batch of lots.

        Raises:
            PutawayValidationError: bad input; nothing was queried
            CrossTenantMaterialError: unknown or foreign material
            PutawayQueryTimeoutError: a placement query timed out
        """
        if not items:
            return BatchPutawayResult()

        validate_placement_requests(items)
        materials = await self._load_materials(tenant_id, [item.material_id for item in items])
        placement_items = self._resolve_items(items, materials)

        facility_ids = sorted({item.facility_id for item in placement_items}, key=str)
        storage_bins, staging_bins = await self._load_bins(tenant_id, facility_ids)

        all_bins = [b for facility_id in facility_ids for b in storage_bins.get(facility_id, [])]
        strategy = select_algorithm(placement_items, all_bins)
        ordered = order_items(placement_items, strategy.algorithm)
        algorithm_tag = f"{strategy.algorithm}{ALGORITHM_SUFFIX}"
        logger.info(
            f"Batch putaway for tenant {tenant_id}: {len(ordered)} lots, "
            f"{len(all_bins)} candidate bins, algorithm {strategy.algorithm}"
        )

        # Enrichment, loaded once per batch
        await self.adjuster.load_weights(tenant_id)
        await self.affinity.preload(tenant_id, [item.material_id for item in ordered])
        congestion_by_facility: Dict[UUID, Dict[str, float]] = {}
        nearby_by_facility: Dict[UUID, NearbyMaterialIndex] = {}
        for facility_id in facility_ids:
            congestion_by_facility[facility_id] = await self.congestion.get_aisle_congestion(tenant_id, facility_id)
            nearby_by_facility[facility_id] = await self.affinity.build_nearby_index(tenant_id, facility_id)

        result = BatchPutawayResult(
            strategy=strategy,
            processing_order=[item.lot_number for item in ordered],
        )
        capacity_failures: List[CapacityValidationFailure] = []

        for item in ordered:
            opportunity = await self.cross_dock.detect(item.material_id, item.quantity, tenant_id, received_at)
            if opportunity.should_cross_dock:
                recommendation = self._cross_dock_recommendation(
                    item, staging_bins.get(item.facility_id, []), opportunity
                )
                if recommendation is not None:
                    result.recommendations[item.lot_number] = recommendation
                    continue

            feasible, closest_miss, eligible = await self._evaluate_candidates(
                tenant_id,
                item,
                storage_bins.get(item.facility_id, []),
                congestion_by_facility.get(item.facility_id, {}),
                nearby_by_facility[item.facility_id],
            )

            if not feasible:
                if closest_miss is None:
                    failure_type = CapacityFailureType.NO_CANDIDATES
                    reason = "No eligible locations (temperature/security requirements)"
                    capacity_failures.append(build_capacity_failure(tenant_id, item, failure_type))
                else:
                    location, validation = closest_miss
                    failure_type = capacity_failure_type(validation)
                    reason = "; ".join(validation.violation_reasons)
                    capacity_failures.append(
                        build_capacity_failure(tenant_id, item, failure_type, validation, location)
                    )
                result.failures.append(PutawayFailure(
                    lot_number=item.lot_number,
                    material_id=item.material_id,
                    quantity=item.quantity,
                    reason=reason,
                    failure_type=failure_type,
                    required_cubic_feet=item.total_cubic_feet,
                    required_weight_lbs=item.total_weight_lbs,
                    candidates_evaluated=eligible,
                ))
                logger.info(f"Lot {item.lot_number}: no feasible location - {reason}")
                continue

            ranked = rank_candidates(strategy.algorithm, feasible)
            recommendation = self._build_recommendation(item, ranked, algorithm_tag)
            result.recommendations[item.lot_number] = recommendation

            chosen = ranked[0]
            chosen.location.apply_placement(
                chosen.validation.required_cubic_feet,
                chosen.validation.required_weight_lbs,
            )
            nearby_by_facility[item.facility_id].add(
                chosen.location.location_id,
                chosen.location.aisle_code,
                chosen.location.zone_code,
                item.material_id,
            )

        await self.data_quality.record_capacity_failures(capacity_failures)
        logger.info(
            f"Batch putaway complete: {len(result.recommendations)} placed, {len(result.failures)} failed"
        )
        return result

    async def suggest_putaway_location(
        self,
        material_id: UUID,
        lot_number: str,
        quantity: float,
        tenant_id: UUID,
        dimensions: Optional[ItemDimensions] = None,
    ) -> PutawayRecommendation:
        """
        Single-lot suggestion using ABC velocity best fit.

        Considers at most CANDIDATE_LOCATION_LIMIT locations, preferring
        ABC match, then low pick sequence, then low utilization.
        """
        request = PlacementRequest(
            material_id=material_id,
            lot_number=lot_number,
            quantity=quantity,
            dimensions=dimensions,
        )
        validate_placement_requests([request])
        materials = await self._load_materials(tenant_id, [material_id])
        item = self._resolve_items([request], materials)[0]

        utilization = InventoryLocation.used_cubic_feet / func.nullif(InventoryLocation.cubic_feet, 0)
        query = (
            select(InventoryLocation)
            .where(
                and_(
                    InventoryLocation.tenant_id == tenant_id,
                    InventoryLocation.facility_id == item.facility_id,
                    InventoryLocation.is_active.is_(True),
                    InventoryLocation.is_available.is_(True),
                    InventoryLocation.deleted_at.is_(None),
                    InventoryLocation.location_type != LocationType.STAGING.value,
                )
            )
            .order_by(
                case((InventoryLocation.abc_classification == item.abc_classification, 0), else_=1),
                InventoryLocation.pick_sequence.is_(None),
                InventoryLocation.pick_sequence,
                utilization,
                InventoryLocation.location_code,
            )
            .limit(settings.CANDIDATE_LOCATION_LIMIT)
        )
        result = await execute_with_timeout(self.db, query, label="single_item_candidates")

        feasible: List[ScoredCandidate] = []
        for location in result.scalars().all():
            view = BinCapacity.from_location(location)
            if not is_location_eligible(view, item):
                continue
            validation = validate_capacity(view, item.dimensions, item.quantity)
            if not validation.can_fit:
                continue
            utilization_after = view.utilization_after(validation.required_cubic_feet)
            score, confidence, reasons, features = score_location(view, item, utilization_after)
            feasible.append(ScoredCandidate(
                location=view,
                validation=validation,
                score=score,
                confidence=confidence,
                reason=_reason_text(reasons),
                utilization_after=utilization_after,
                features=features,
            ))

        if not feasible:
            raise ValueError(f"No suitable location found for lot {lot_number}")

        await self.adjuster.load_weights(tenant_id)
        ranked = sorted(feasible, key=lambda c: (-c.score, c.location.location_code))
        return self._build_recommendation(item, ranked, SINGLE_ITEM_ALGORITHM)
