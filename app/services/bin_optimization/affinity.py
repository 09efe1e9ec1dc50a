"""
SKU Affinity Scorer

Materials that are frequently picked on the same sales order should be
stored near each other. Co-pick counts come from ISSUE transactions in
one batched self-join per cache miss:

- pairs seen on fewer than AFFINITY_MIN_CO_PICKS orders are dropped
- score(a, b) = min(count / (max_count_for_a * 0.5), 1.0)

Scores are cached per tenant and material for AFFINITY_CACHE_TTL
seconds. Affinity only ever adds a bonus: any failure scores 0.
"""

import logging
import time
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Set
from uuid import UUID

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from app.config import settings
from app.models.inventory import InventoryTransaction, Lot, TransactionType
from app.models.wms import InventoryLocation
from app.schemas.bin_optimization import BinCapacity
from app.services.bin_optimization.query_timeout import execute_with_timeout

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AffinityEntry:
    """Related material -> score for one material."""
    scores: Dict[UUID, float]
    expires_at: float


# Process-wide cache keyed by "tenant_id:material_id"
_affinity_cache: Dict[str, AffinityEntry] = {}


def _cache_key(tenant_id: UUID, material_id: UUID) -> str:
    return f"{tenant_id}:{material_id}"


def clear_affinity_cache() -> None:
    """Drop all cached affinity scores."""
    _affinity_cache.clear()


def normalize_co_picks(counts: Dict[UUID, int]) -> Dict[UUID, float]:
    """Normalize co-pick counts for one material to [0, 1]."""
    if not counts:
        return {}
    max_count = max(counts.values())
    if max_count <= 0:
        return {}
    return {
        related: min(count / (max_count * 0.5), 1.0)
        for related, count in counts.items()
    }


class NearbyMaterialIndex:
    """
    Materials stored around each location.

    Nearby means the same aisle, or the same zone for locations without
    an aisle. A location's own contents are excluded.
    """

    def __init__(self):
        self._by_area: Dict[str, Dict[UUID, Set[UUID]]] = defaultdict(lambda: defaultdict(set))

    @staticmethod
    def _area_key(aisle_code: Optional[str], zone_code: Optional[str]) -> Optional[str]:
        if aisle_code:
            return f"aisle:{aisle_code}"
        if zone_code:
            return f"zone:{zone_code}"
        return None

    def add(self, location_id: UUID, aisle_code: Optional[str], zone_code: Optional[str], material_id: UUID) -> None:
        area = self._area_key(aisle_code, zone_code)
        if area is not None:
            self._by_area[area][location_id].add(material_id)

    def nearby(self, location: BinCapacity) -> Set[UUID]:
        """Materials near (not in) the location."""
        area = self._area_key(location.aisle_code, location.zone_code)
        if area is None or area not in self._by_area:
            return set()
        materials: Set[UUID] = set()
        for location_id, stored in self._by_area[area].items():
            if location_id != location.location_id:
                materials |= stored
        return materials


class SKUAffinityScorer:
    """
    Scores candidate locations by co-pick affinity with their neighbours.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _load_co_picks(self, tenant_id: UUID, material_ids: List[UUID]) -> Dict[UUID, Dict[UUID, int]]:
        """Co-pick counts for all requested materials in one query."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=settings.AFFINITY_LOOKBACK_DAYS)
        t1 = aliased(InventoryTransaction)
        t2 = aliased(InventoryTransaction)
        co_picks = func.count(t1.sales_order_id.distinct())

        query = (
            select(
                t1.material_id.label("material_id"),
                t2.material_id.label("related_material_id"),
                co_picks.label("co_pick_count"),
            )
            .join(
                t2,
                and_(
                    t2.sales_order_id == t1.sales_order_id,
                    t2.material_id != t1.material_id,
                    t2.tenant_id == tenant_id,
                    t2.transaction_type == TransactionType.ISSUE.value,
                    t2.transaction_date >= cutoff,
                ),
            )
            .where(
                and_(
                    t1.tenant_id == tenant_id,
                    t1.transaction_type == TransactionType.ISSUE.value,
                    t1.material_id.in_(material_ids),
                    t1.sales_order_id.isnot(None),
                    t1.transaction_date >= cutoff,
                )
            )
            .group_by(t1.material_id, t2.material_id)
            .having(co_picks >= settings.AFFINITY_MIN_CO_PICKS)
        )
        result = await execute_with_timeout(self.db, query, label="sku_affinity")

        counts: Dict[UUID, Dict[UUID, int]] = defaultdict(dict)
        for row in result.all():
            counts[row.material_id][row.related_material_id] = int(row.co_pick_count)
        return counts

    async def preload(self, tenant_id: UUID, material_ids: Iterable[UUID]) -> None:
        """
        Load affinity for every material not already cached.

        Materials with no qualifying pairs are cached as empty so they
        are not queried again until expiry.
        """
        now = time.time()
        missing = set()
        for material_id in material_ids:
            entry = _affinity_cache.get(_cache_key(tenant_id, material_id))
            if entry is None or entry.expires_at <= now:
                missing.add(material_id)
        missing = sorted(missing, key=str)
        if not missing:
            return

        try:
            async with self.db.begin_nested():
                counts = await self._load_co_picks(tenant_id, missing)
        except Exception as e:
            logger.warning(f"SKU affinity load failed for {len(missing)} materials: {e}")
            return

        expires_at = now + settings.AFFINITY_CACHE_TTL
        for material_id in missing:
            _affinity_cache[_cache_key(tenant_id, material_id)] = AffinityEntry(
                scores=normalize_co_picks(counts.get(material_id, {})),
                expires_at=expires_at,
            )
        logger.debug(f"SKU affinity cached for {len(missing)} materials")

    async def get_affinity_score(
        self,
        tenant_id: UUID,
        material_id: UUID,
        nearby_material_ids: Iterable[UUID],
    ) -> float:
        """
        Average affinity between a material and its would-be neighbours, in [0, 1].
        """
        try:
            entry = _affinity_cache.get(_cache_key(tenant_id, material_id))
            if entry is None or entry.expires_at <= time.time():
                await self.preload(tenant_id, [material_id])
                entry = _affinity_cache.get(_cache_key(tenant_id, material_id))
            if entry is None:
                return 0.0

            matches = [
                entry.scores[related]
                for related in nearby_material_ids
                if entry.scores.get(related, 0.0) > 0
            ]
            if not matches:
                return 0.0
            return min(sum(matches) / len(matches), 1.0)
        except Exception as e:
            logger.warning(f"SKU affinity scoring failed for material {material_id}: {e}")
            return 0.0

    async def build_nearby_index(self, tenant_id: UUID, facility_id: UUID) -> NearbyMaterialIndex:
        """Index of stored materials by aisle/zone for a facility."""
        index = NearbyMaterialIndex()
        query = (
            select(
                Lot.location_id,
                Lot.material_id,
                InventoryLocation.aisle_code,
                InventoryLocation.zone_code,
            )
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
        try:
            async with self.db.begin_nested():
                result = await execute_with_timeout(self.db, query, label="nearby_materials")
                rows = result.all()
        except Exception as e:
            logger.warning(f"Nearby material lookup failed for facility {facility_id}: {e}")
            return index

        for row in rows:
            index.add(row.location_id, row.aisle_code, row.zone_code, row.material_id)
        return index
