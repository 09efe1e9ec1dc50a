"""
Bin Fragmentation Monitor

Fragmentation Index (FI) = total available cubic feet / largest single
available block, over active PICK_FACE, RESERVE and BULK locations.

- FI < 1.5: LOW
- FI < 2.0: MODERATE
- FI < 3.0: HIGH
- FI >= 3.0: SEVERE

FI >= 2.0 requires consolidation: materials split across several bins
are candidates for merging into one larger bin.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.bin_optimization import BinFragmentationHistory
from app.models.inventory import Lot, Material
from app.models.wms import InventoryLocation, LocationType
from app.schemas.bin_optimization import (
    ConsolidationOpportunity,
    FragmentationLevel,
    FragmentationMetrics,
)

logger = logging.getLogger(__name__)

STORAGE_LOCATION_TYPES = (
    LocationType.PICK_FACE.value,
    LocationType.RESERVE.value,
    LocationType.BULK.value,
)
CONSOLIDATION_TARGET_TYPES = (LocationType.RESERVE.value, LocationType.BULK.value)

CONSOLIDATION_THRESHOLD = 2.0
MIN_CONSOLIDATION_CUBIC_FEET = 1.0
MAX_CONSOLIDATION_OPPORTUNITIES = 20
LABOR_HOURS_PER_SOURCE_BIN = 0.1


def classify_fragmentation(index: float) -> FragmentationLevel:
    """Classify a fragmentation index."""
    if index < 1.5:
        return FragmentationLevel.LOW
    if index < 2.0:
        return FragmentationLevel.MODERATE
    if index < 3.0:
        return FragmentationLevel.HIGH
    return FragmentationLevel.SEVERE


def fragmentation_index(available: List[float]) -> float:
    """Total / largest available block; 1.0 when nothing is free."""
    free = [a for a in available if a > 0]
    if not free:
        return 1.0
    return sum(free) / max(free)


def consolidation_priority(space_recovered: float) -> str:
    if space_recovered >= 20:
        return "HIGH"
    if space_recovered >= 10:
        return "MEDIUM"
    return "LOW"


class BinFragmentationMonitor:
    """
    Measures free-space fragmentation and proposes consolidation moves.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _storage_locations(
        self,
        tenant_id: UUID,
        facility_id: UUID,
        zone_code: Optional[str] = None,
    ) -> List[InventoryLocation]:
        query = select(InventoryLocation).where(
            and_(
                InventoryLocation.tenant_id == tenant_id,
                InventoryLocation.facility_id == facility_id,
                InventoryLocation.location_type.in_(STORAGE_LOCATION_TYPES),
                InventoryLocation.is_active.is_(True),
                InventoryLocation.deleted_at.is_(None),
            )
        )
        if zone_code:
            query = query.where(InventoryLocation.zone_code == zone_code)
        result = await self.db.execute(query.order_by(InventoryLocation.location_code))
        return list(result.scalars().all())

    async def calculate_facility_fragmentation(
        self,
        tenant_id: UUID,
        facility_id: UUID,
        zone_code: Optional[str] = None,
    ) -> FragmentationMetrics:
        """Fragmentation for a facility, or one zone of it."""
        locations = await self._storage_locations(tenant_id, facility_id, zone_code)
        available = [loc.available_cubic_feet for loc in locations if loc.available_cubic_feet > 0]
        index = fragmentation_index(available)

        return FragmentationMetrics(
            facility_id=facility_id,
            zone_code=zone_code,
            total_available_cubic_feet=round(sum(available), 4),
            largest_available_cubic_feet=round(max(available), 4) if available else 0.0,
            fragmentation_index=round(index, 4),
            fragmentation_level=classify_fragmentation(index),
            requires_consolidation=index >= CONSOLIDATION_THRESHOLD,
            location_count=len(available),
            recorded_at=datetime.now(timezone.utc),
        )

    async def identify_consolidation_opportunities(
        self,
        tenant_id: UUID,
        facility_id: UUID,
    ) -> List[ConsolidationOpportunity]:
        """
        Materials split across 2+ locations that one RESERVE/BULK bin could hold.

        All holdings except the largest are moved; the target is the
        smallest bin with room for the material's total volume.
        """
        result = await self.db.execute(
            select(Lot, Material, InventoryLocation)
            .join(Material, Material.id == Lot.material_id)
            .join(InventoryLocation, InventoryLocation.id == Lot.location_id)
            .where(
                and_(
                    Lot.tenant_id == tenant_id,
                    Lot.quantity_on_hand > 0,
                    Lot.deleted_at.is_(None),
                    InventoryLocation.facility_id == facility_id,
                    InventoryLocation.deleted_at.is_(None),
                )
            )
        )

        materials: Dict[UUID, Material] = {}
        holdings: Dict[UUID, Dict[UUID, List]] = defaultdict(dict)
        for lot, material, location in result.all():
            materials[material.id] = material
            unit_cubic = material.unit_cubic_feet or 0.0
            entry = holdings[material.id].setdefault(location.id, [location, 0.0, 0.0])
            entry[1] += lot.quantity_on_hand
            entry[2] += lot.quantity_on_hand * unit_cubic

        targets = [
            loc for loc in await self._storage_locations(tenant_id, facility_id)
            if loc.location_type in CONSOLIDATION_TARGET_TYPES and loc.is_available
        ]
        targets.sort(key=lambda loc: (loc.available_cubic_feet, loc.location_code))

        opportunities = []
        for material_id, by_location in holdings.items():
            if len(by_location) < 2:
                continue
            total_volume = sum(entry[2] for entry in by_location.values())
            if total_volume <= MIN_CONSOLIDATION_CUBIC_FEET:
                continue

            target = next(
                (
                    loc for loc in targets
                    if loc.available_cubic_feet >= total_volume and loc.id not in by_location
                ),
                None,
            )
            if target is None:
                continue

            ordered = sorted(by_location.values(), key=lambda e: (e[1], e[0].location_code))
            sources = ordered[:-1]
            space_recovered = sum(e[2] for e in sources)
            opportunities.append(ConsolidationOpportunity(
                material_id=material_id,
                material_code=materials[material_id].material_code,
                source_location_ids=[e[0].id for e in sources],
                source_location_codes=[e[0].location_code for e in sources],
                target_location_id=target.id,
                target_location_code=target.location_code,
                quantity_to_move=sum(e[1] for e in sources),
                total_cubic_feet=round(total_volume, 4),
                space_recovered_cubic_feet=round(space_recovered, 4),
                estimated_labor_hours=round(len(sources) * LABOR_HOURS_PER_SOURCE_BIN, 2),
                priority=consolidation_priority(space_recovered),
            ))

        opportunities.sort(key=lambda o: (-o.space_recovered_cubic_feet, o.material_code))
        return opportunities[:MAX_CONSOLIDATION_OPPORTUNITIES]

    async def log_fragmentation_metrics(self, tenant_id: UUID, metrics: FragmentationMetrics) -> None:
        """Store a metrics snapshot for trend tracking."""
        self.db.add(BinFragmentationHistory(
            tenant_id=tenant_id,
            facility_id=metrics.facility_id,
            zone_code=metrics.zone_code,
            total_available_cubic_feet=metrics.total_available_cubic_feet,
            largest_available_cubic_feet=metrics.largest_available_cubic_feet,
            fragmentation_index=metrics.fragmentation_index,
            fragmentation_level=metrics.fragmentation_level,
            requires_consolidation=metrics.requires_consolidation,
            location_count=metrics.location_count,
            recorded_at=metrics.recorded_at or datetime.now(timezone.utc),
        ))
        await self.db.flush()

    async def get_fragmentation_history(
        self,
        tenant_id: UUID,
        facility_id: UUID,
        days_back: int = 30,
    ) -> List[FragmentationMetrics]:
        """Facility-level history, oldest first."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=days_back)
        result = await self.db.execute(
            select(BinFragmentationHistory)
            .where(
                and_(
                    BinFragmentationHistory.tenant_id == tenant_id,
                    BinFragmentationHistory.facility_id == facility_id,
                    BinFragmentationHistory.zone_code.is_(None),
                    BinFragmentationHistory.recorded_at >= cutoff,
                )
            )
            .order_by(BinFragmentationHistory.recorded_at)
        )
        return [
            FragmentationMetrics(
                facility_id=row.facility_id,
                zone_code=row.zone_code,
                total_available_cubic_feet=row.total_available_cubic_feet,
                largest_available_cubic_feet=row.largest_available_cubic_feet,
                fragmentation_index=row.fragmentation_index,
                fragmentation_level=row.fragmentation_level,
                requires_consolidation=row.requires_consolidation,
                location_count=row.location_count,
                recorded_at=row.recorded_at,
            )
            for row in result.scalars().all()
        ]

    async def check_and_alert(self, tenant_id: UUID, facility_id: UUID) -> Dict:
        """
        Measure, record, and warn on HIGH/SEVERE fragmentation.

        Returns the metrics and, when consolidation is required, the
        suggested moves.
        """
        metrics = await self.calculate_facility_fragmentation(tenant_id, facility_id)
        await self.log_fragmentation_metrics(tenant_id, metrics)

        opportunities: List[ConsolidationOpportunity] = []
        if metrics.requires_consolidation:
            opportunities = await self.identify_consolidation_opportunities(tenant_id, facility_id)

        alert = metrics.fragmentation_level in (FragmentationLevel.HIGH.value, FragmentationLevel.SEVERE.value)
        if alert:
            logger.warning(
                f"Bin fragmentation {metrics.fragmentation_level} in facility {facility_id}: "
                f"index {metrics.fragmentation_index:.2f}, "
                f"{len(opportunities)} consolidation opportunities"
            )

        return {
            "metrics": metrics,
            "alert": alert,
            "consolidation_opportunities": opportunities,
            "estimated_space_recovery": round(
                sum(o.space_recovered_cubic_feet for o in opportunities), 4
            ),
        }
