"""
Data quality tracking for bin optimization.

Records capacity validation failures for trend analysis, alerts when the
failure rate climbs, and checks material master data before slotting.
Recording is best effort: a failed write is logged and never breaks the
putaway flow.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.bin_optimization import CapacityValidationFailureRecord, PutawayRecommendationHistory
from app.models.inventory import Material
from app.schemas.bin_optimization import (
    BinCapacity,
    CapacityFailureSummary,
    CapacityFailureType,
    CapacityValidation,
    CapacityValidationFailure,
    MaterialDataQuality,
    PlacementItem,
)
from app.services.bin_optimization.capacity import overflow_percentage

logger = logging.getLogger(__name__)

VALID_ABC_CLASSES = ("A", "B", "C")


def build_capacity_failure(
    tenant_id: UUID,
    item: PlacementItem,
    failure_type: CapacityFailureType,
    validation: Optional[CapacityValidation] = None,
    location: Optional[BinCapacity] = None,
) -> CapacityValidationFailure:
    """Capacity failure record for an item, with overflow percentages when a location was checked."""
    required_cubic = item.total_cubic_feet
    required_weight = item.total_weight_lbs
    available_cubic = validation.available_cubic_feet if validation else 0.0
    available_weight = validation.available_weight_lbs if validation else 0.0
    return CapacityValidationFailure(
        tenant_id=tenant_id,
        facility_id=item.facility_id,
        location_id=location.location_id if location else None,
        material_id=item.material_id,
        lot_number=item.lot_number,
        failure_type=failure_type,
        required_cubic_feet=required_cubic,
        available_cubic_feet=available_cubic,
        required_weight_lbs=required_weight,
        available_weight_lbs=available_weight,
        cubic_overflow_pct=overflow_percentage(required_cubic, available_cubic) if validation else 0.0,
        weight_overflow_pct=overflow_percentage(required_weight, available_weight) if validation else 0.0,
        reasons=list(validation.violation_reasons) if validation else [],
    )


class DataQualityService:
    """
    Capacity failure tracking and material data validation.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record_capacity_failures(self, failures: List[CapacityValidationFailure]) -> int:
        """
        Persist capacity failures in one flush under a savepoint.

        Returns the number recorded; 0 when the write fails, in which case
        only the savepoint is rolled back and the caller's pending work stays.
        """
        if not failures:
            return 0
        try:
            async with self.db.begin_nested():
                for failure in failures:
                    self.db.add(
                        CapacityValidationFailureRecord(
                            tenant_id=failure.tenant_id,
                            facility_id=failure.facility_id,
                            location_id=failure.location_id,
                            material_id=failure.material_id,
                            lot_number=failure.lot_number,
                            failure_type=failure.failure_type,
                            required_cubic_feet=failure.required_cubic_feet,
                            available_cubic_feet=failure.available_cubic_feet,
                            required_weight_lbs=failure.required_weight_lbs,
                            available_weight_lbs=failure.available_weight_lbs,
                            cubic_overflow_pct=failure.cubic_overflow_pct,
                            weight_overflow_pct=failure.weight_overflow_pct,
                            reasons=failure.reasons,
                        )
                    )
                await self.db.flush()
        except Exception as e:
            logger.error(f"Failed to record {len(failures)} capacity validation failures: {e}")
            return 0
        return len(failures)

    async def capacity_failure_summary(self, tenant_id: UUID, days: int = 7) -> CapacityFailureSummary:
        """Failure rate against recommendations issued in the same period."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)

        failures = await self.db.execute(
            select(
                CapacityValidationFailureRecord.failure_type,
                func.count(CapacityValidationFailureRecord.id).label("count"),
            )
            .where(
                and_(
                    CapacityValidationFailureRecord.tenant_id == tenant_id,
                    CapacityValidationFailureRecord.created_at >= cutoff,
                )
            )
            .group_by(CapacityValidationFailureRecord.failure_type)
        )
        by_type = defaultdict(int)
        for row in failures.all():
            by_type[row.failure_type] += int(row.count)
        failure_count = sum(by_type.values())

        recommendation_count = (
            await self.db.execute(
                select(func.count(PutawayRecommendationHistory.id)).where(
                    and_(
                        PutawayRecommendationHistory.tenant_id == tenant_id,
                        PutawayRecommendationHistory.created_at >= cutoff,
                    )
                )
            )
        ).scalar() or 0

        attempts = failure_count + recommendation_count
        failure_rate = failure_count / attempts * 100 if attempts else 0.0

        if failure_rate >= settings.CAPACITY_FAILURE_CRITICAL_RATE:
            alert_level = "CRITICAL"
        elif failure_rate >= settings.CAPACITY_FAILURE_WARNING_RATE:
            alert_level = "WARNING"
        else:
            alert_level = "NONE"

        if alert_level != "NONE":
            logger.warning(
                f"Capacity validation failure rate {failure_rate:.1f}% for tenant {tenant_id} "
                f"({failure_count} failures) - {alert_level}"
            )

        return CapacityFailureSummary(
            period_days=days,
            failure_count=failure_count,
            recommendation_count=recommendation_count,
            failure_rate=round(failure_rate, 2),
            alert_level=alert_level,
            by_type=dict(by_type),
        )

    async def validate_material_data_quality(
        self,
        tenant_id: UUID,
        material_ids: Iterable[UUID],
    ) -> List[MaterialDataQuality]:
        """
        Check materials for the data slotting needs.

        Missing dimensions are errors; a missing weight or ABC class is a
        warning (0 lbs and class C are assumed).
        """
        ids = list(dict.fromkeys(material_ids))
        if not ids:
            return []

        result = await self.db.execute(
            select(Material).where(
                and_(
                    Material.tenant_id == tenant_id,
                    Material.id.in_(ids),
                    Material.deleted_at.is_(None),
                )
            )
        )
        materials = {m.id: m for m in result.scalars().all()}

        reports = []
        for material_id in ids:
            material = materials.get(material_id)
            if material is None:
                reports.append(MaterialDataQuality(
                    material_id=material_id,
                    is_valid=False,
                    errors=["Material not found"],
                ))
                continue

            errors, warnings = [], []
            if not material.unit_cubic_feet:
                errors.append("Missing dimensions or cubic feet")
            if material.weight_lbs_per_unit is None:
                warnings.append("Missing unit weight, weight checks assume 0 lbs")
            abc = (material.abc_classification or "").upper()
            if abc not in VALID_ABC_CLASSES:
                warnings.append("Missing ABC classification, defaulting to C")
                abc = "C"

            reports.append(MaterialDataQuality(
                material_id=material_id,
                material_code=material.material_code,
                is_valid=not errors,
                errors=errors,
                warnings=warnings,
                effective_abc_classification=abc,
            ))
        return reports
