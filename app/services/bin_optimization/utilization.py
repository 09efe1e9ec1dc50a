"""
Bin utilization cache and warehouse utilization analysis.

The snapshot table is a materialized view of per-location utilization.
Each refresh replaces the tenant's (or facility's) rows in one
transaction and appends one facility-level history row, which the
utilization forecast reads; the health monitor measures how old the
newest snapshot is.

Analysis combines bin-level suggestions (consolidate, rebalance) with
velocity-based ABC re-slotting: materials are ranked by ISSUE
transactions over a rolling window and compared with their current class.
"""

import bisect
import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import select, delete, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.bin_optimization import BinUtilizationHistory, BinUtilizationSnapshot
from app.models.inventory import InventoryTransaction, Lot, Material, TransactionType
from app.models.wms import InventoryLocation
from app.schemas.bin_optimization import OptimizationRecommendation, UtilizationAnalysis

logger = logging.getLogger(__name__)

UNDERUTILIZED_PCT = 30.0
OVERUTILIZED_PCT = 95.0
CONSOLIDATE_BELOW_PCT = 25.0

# Velocity ABC: PERCENT_RANK by 30-day pick count, descending
VELOCITY_LOOKBACK_DAYS = 30
VELOCITY_A_RANK = 0.20
VELOCITY_B_RANK = 0.50
RESLOT_LIMIT = 100

PRIORITY_ORDER = {"HIGH": 0, "MEDIUM": 1, "LOW": 2}


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_optimal_utilization(utilization_pct: float) -> bool:
    return settings.OPTIMAL_UTILIZATION_MIN <= utilization_pct <= settings.OPTIMAL_UTILIZATION_MAX


# ==================== Velocity ABC ====================

def percent_ranks(pick_counts: Dict[UUID, int]) -> Dict[UUID, float]:
    """
    PERCENT_RANK over pick count, highest first.

    (rank - 1) / (n - 1), where tied counts share the lowest rank; a
    single material ranks 0.
    """
    n = len(pick_counts)
    if n <= 1:
        return {key: 0.0 for key in pick_counts}
    ordered = sorted(pick_counts.values())
    return {
        key: (n - bisect.bisect_right(ordered, count)) / (n - 1)
        for key, count in pick_counts.items()
    }


def velocity_abc(rank: float) -> str:
    if rank <= VELOCITY_A_RANK:
        return "A"
    if rank <= VELOCITY_B_RANK:
        return "B"
    return "C"


def reslot_priority(current: Optional[str], recommended: str, pick_count: int) -> str:
    """Fast movers out of prime slots and idle stock in them come first."""
    if recommended == "A" and current != "A" and pick_count > 100:
        return "HIGH"
    if current == "A" and recommended != "A" and pick_count < 10:
        return "HIGH"
    if (current == "B" and recommended == "C" and pick_count < 20) or \
            (current == "C" and recommended == "B" and pick_count > 50):
        return "MEDIUM"
    return "LOW"


def reslot_impact(current: Optional[str], recommended: str, pick_count: int) -> str:
    """Expected benefit, using 30 s (C to A) and 20 s (B to A) saved per pick."""
    if current == "C" and recommended == "A":
        hours = pick_count * 30 / 3600
        return f"Estimated {hours:.1f} labor hours saved per month from reduced travel distance"
    if current == "A" and recommended == "C":
        return "Free up prime pick location for true high-velocity items"
    if current == "B" and recommended == "A":
        hours = pick_count * 20 / 3600
        return f"Estimated {hours:.1f} labor hours saved per month, {pick_count} picks/month"
    if current == "C" and recommended == "B":
        return f"Moderate efficiency gain, {pick_count} picks/month justify a better location"
    return "Improve slotting alignment and warehouse space utilization"


class BinUtilizationCacheService:
    """
    Maintains bin_utilization_snapshots and analyzes them.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def refresh(self, tenant_id: UUID, facility_id: Optional[UUID] = None) -> int:
        """
        Rebuild snapshots from live location data.

        Returns the number of locations captured.
        """
        lot_counts = (
            select(Lot.location_id, func.count(Lot.id).label("lot_count"))
            .where(
                and_(
                    Lot.tenant_id == tenant_id,
                    Lot.quantity_on_hand > 0,
                    Lot.deleted_at.is_(None),
                )
            )
            .group_by(Lot.location_id)
            .subquery()
        )
        query = (
            select(InventoryLocation, func.coalesce(lot_counts.c.lot_count, 0))
            .outerjoin(lot_counts, lot_counts.c.location_id == InventoryLocation.id)
            .where(
                and_(
                    InventoryLocation.tenant_id == tenant_id,
                    InventoryLocation.is_active.is_(True),
                    InventoryLocation.deleted_at.is_(None),
                )
            )
        )
        stale = delete(BinUtilizationSnapshot).where(BinUtilizationSnapshot.tenant_id == tenant_id)
        if facility_id:
            query = query.where(InventoryLocation.facility_id == facility_id)
            stale = stale.where(BinUtilizationSnapshot.facility_id == facility_id)

        result = await self.db.execute(query)
        rows = result.all()

        captured_at = datetime.now(timezone.utc)
        await self.db.execute(stale)
        by_facility: Dict[UUID, List[float]] = defaultdict(list)
        for location, lot_count in rows:
            by_facility[location.facility_id].append(location.utilization_percent)
            self.db.add(BinUtilizationSnapshot(
                tenant_id=tenant_id,
                facility_id=location.facility_id,
                location_id=location.id,
                location_code=location.location_code,
                location_type=location.location_type,
                zone_code=location.zone_code,
                aisle_code=location.aisle_code,
                total_cubic_feet=location.cubic_feet or 0.0,
                used_cubic_feet=location.used_cubic_feet or 0.0,
                available_cubic_feet=location.available_cubic_feet,
                utilization_pct=round(location.utilization_percent, 2),
                lot_count=int(lot_count),
                captured_at=captured_at,
            ))
        for location_facility_id, utilizations in by_facility.items():
            self.db.add(BinUtilizationHistory(
                tenant_id=tenant_id,
                facility_id=location_facility_id,
                avg_utilization=round(sum(utilizations) / len(utilizations), 2),
                locations_optimal=sum(1 for u in utilizations if is_optimal_utilization(u)),
                location_count=len(utilizations),
                captured_at=captured_at,
            ))
        await self.db.flush()

        logger.info(f"Bin utilization cache refreshed for tenant {tenant_id}: {len(rows)} locations")
        return len(rows)

    async def get_cache_age_seconds(self, tenant_id: UUID) -> Optional[float]:
        """Age of the newest snapshot; None when the cache is empty."""
        latest = (
            await self.db.execute(
                select(func.max(BinUtilizationSnapshot.captured_at)).where(
                    BinUtilizationSnapshot.tenant_id == tenant_id
                )
            )
        ).scalar()
        if latest is None:
            return None
        return max((datetime.now(timezone.utc) - _utc(latest)).total_seconds(), 0.0)

    async def get_snapshots(
        self,
        tenant_id: UUID,
        facility_id: Optional[UUID] = None,
    ) -> List[BinUtilizationSnapshot]:
        query = select(BinUtilizationSnapshot).where(BinUtilizationSnapshot.tenant_id == tenant_id)
        if facility_id:
            query = query.where(BinUtilizationSnapshot.facility_id == facility_id)
        result = await self.db.execute(query.order_by(BinUtilizationSnapshot.location_code))
        return list(result.scalars().all())

    async def _pick_counts(
        self,
        tenant_id: UUID,
        facility_id: Optional[UUID],
        since: datetime,
    ) -> Dict[UUID, int]:
        query = (
            select(InventoryTransaction.material_id, func.count(InventoryTransaction.id).label("pick_count"))
            .where(
                and_(
                    InventoryTransaction.tenant_id == tenant_id,
                    InventoryTransaction.transaction_type == TransactionType.ISSUE.value,
                    InventoryTransaction.transaction_date >= since,
                )
            )
            .group_by(InventoryTransaction.material_id)
        )
        if facility_id:
            query = query.where(InventoryTransaction.facility_id == facility_id)
        result = await self.db.execute(query)
        return {row.material_id: int(row.pick_count) for row in result.all()}

    async def _stored_locations(
        self,
        tenant_id: UUID,
        material_ids: Sequence[UUID],
        facility_id: Optional[UUID],
    ) -> Dict[UUID, InventoryLocation]:
        """Location of each material's largest released lot."""
        if not material_ids:
            return {}
        query = (
            select(Lot.material_id, InventoryLocation)
            .join(InventoryLocation, Lot.location_id == InventoryLocation.id)
            .where(
                and_(
                    Lot.tenant_id == tenant_id,
                    Lot.material_id.in_(list(material_ids)),
                    Lot.quality_status == "RELEASED",
                    Lot.quantity_on_hand > 0,
                    Lot.deleted_at.is_(None),
                    InventoryLocation.deleted_at.is_(None),
                )
            )
            .order_by(Lot.quantity_on_hand.desc(), InventoryLocation.location_code)
        )
        if facility_id:
            query = query.where(InventoryLocation.facility_id == facility_id)
        result = await self.db.execute(query)
        stored: Dict[UUID, InventoryLocation] = {}
        for material_id, location in result.all():
            stored.setdefault(material_id, location)
        return stored

    async def identify_reslotting_opportunities(
        self,
        tenant_id: UUID,
        facility_id: Optional[UUID] = None,
        days: int = VELOCITY_LOOKBACK_DAYS,
    ) -> List[OptimizationRecommendation]:
        """
        RESLOT recommendations for stocked materials whose ABC class no
        longer matches their pick velocity.

        Every active material of the tenant (or facility) is ranked, picked
        or not; top 20% by pick count is A, the next 30% B, the rest C.
        At most RESLOT_LIMIT are returned, busiest first.
        """
        since = datetime.now(timezone.utc) - timedelta(days=days)
        query = select(Material).where(
            and_(
                Material.tenant_id == tenant_id,
                Material.is_active.is_(True),
                Material.deleted_at.is_(None),
            )
        )
        if facility_id:
            query = query.where(Material.facility_id == facility_id)
        materials = list((await self.db.execute(query)).scalars().all())
        if not materials:
            return []

        picks = await self._pick_counts(tenant_id, facility_id, since)
        pick_counts = {m.id: picks.get(m.id, 0) for m in materials}
        ranks = percent_ranks(pick_counts)

        mismatched = [
            m for m in materials
            if (m.abc_classification or "").upper() != velocity_abc(ranks[m.id])
        ]
        mismatched.sort(key=lambda m: (-pick_counts[m.id], m.material_code))
        stored = await self._stored_locations(tenant_id, [m.id for m in mismatched], facility_id)

        recommendations = []
        for material in mismatched:
            location = stored.get(material.id)
            if location is None:
                continue
            current = (material.abc_classification or "").upper() or None
            recommended = velocity_abc(ranks[material.id])
            pick_count = pick_counts[material.id]
            percentile = ranks[material.id] * 100
            recommendations.append(OptimizationRecommendation(
                type="RESLOT",
                location_id=location.id,
                location_code=location.location_code,
                current_utilization=round(location.utilization_percent, 2),
                priority=reslot_priority(current, recommended, pick_count),
                reason=(
                    f"ABC mismatch: current {current or 'N/A'}, recommended {recommended} "
                    f"based on {pick_count} picks in {days} days ({percentile:.1f}th percentile)"
                ),
                material_id=material.id,
                material_code=material.material_code,
                current_abc=current,
                recommended_abc=recommended,
                pick_count=pick_count,
                velocity_percentile=round(ranks[material.id], 4),
                expected_impact=reslot_impact(current, recommended, pick_count),
            ))
            if len(recommendations) >= RESLOT_LIMIT:
                break

        logger.info(
            f"Velocity ABC for tenant {tenant_id}: {len(materials)} materials ranked, "
            f"{len(recommendations)} re-slot recommendations"
        )
        return recommendations

    async def analyze_warehouse_utilization(
        self,
        tenant_id: UUID,
        facility_id: Optional[UUID] = None,
    ) -> UtilizationAnalysis:
        """
        Utilization summary with consolidate, rebalance and re-slot suggestions.

        Builds the cache first when it is empty. Recommendations are ordered
        HIGH, MEDIUM, LOW.
        """
        snapshots = await self.get_snapshots(tenant_id, facility_id)
        if not snapshots:
            await self.refresh(tenant_id, facility_id)
            snapshots = await self.get_snapshots(tenant_id, facility_id)
        if not snapshots:
            return UtilizationAnalysis(
                facility_id=facility_id,
                total_locations=0,
                average_utilization=0.0,
                underutilized_count=0,
                overutilized_count=0,
            )

        zone_totals = defaultdict(lambda: [0.0, 0.0])
        recommendations = []
        for snap in snapshots:
            zone = snap.zone_code or "UNASSIGNED"
            zone_totals[zone][0] += snap.used_cubic_feet
            zone_totals[zone][1] += snap.total_cubic_feet

            if snap.utilization_pct < CONSOLIDATE_BELOW_PCT:
                recommendations.append(OptimizationRecommendation(
                    type="CONSOLIDATE",
                    location_id=snap.location_id,
                    location_code=snap.location_code,
                    current_utilization=snap.utilization_pct,
                    priority="MEDIUM" if snap.utilization_pct > 0 else "LOW",
                    reason=f"Low utilization ({snap.utilization_pct:.1f}%), consider consolidating",
                ))
            elif snap.utilization_pct > OVERUTILIZED_PCT:
                recommendations.append(OptimizationRecommendation(
                    type="REBALANCE",
                    location_id=snap.location_id,
                    location_code=snap.location_code,
                    current_utilization=snap.utilization_pct,
                    priority="HIGH",
                    reason=f"Over-utilized ({snap.utilization_pct:.1f}%), move stock to relieve the bin",
                ))

        recommendations.extend(await self.identify_reslotting_opportunities(tenant_id, facility_id))
        recommendations.sort(key=lambda r: PRIORITY_ORDER[r.priority])

        utilizations = [s.utilization_pct for s in snapshots]
        return UtilizationAnalysis(
            facility_id=facility_id,
            total_locations=len(snapshots),
            average_utilization=round(sum(utilizations) / len(utilizations), 2),
            underutilized_count=sum(1 for u in utilizations if u < UNDERUTILIZED_PCT),
            overutilized_count=sum(1 for u in utilizations if u > OVERUTILIZED_PCT),
            zone_utilization={
                zone: round(used / total * 100, 2) if total > 0 else 0.0
                for zone, (used, total) in sorted(zone_totals.items())
            },
            recommendations=recommendations,
        )
