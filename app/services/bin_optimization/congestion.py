"""
Aisle Congestion Tracker

Scores aisles by active picking work so putaway avoids sending
operators into aisles that pickers are already working.

score   = min(active_pick_lists * 10 + min(avg_pick_minutes, 30), cap)
penalty = min(score / 2, 15)

Scores are cached process-wide per tenant/facility for
CONGESTION_CACHE_TTL seconds. Refresh is guarded by the expiry check
only; a duplicate refresh on a cache-miss race just replaces the entry.
"""

import logging
import time
from collections import defaultdict
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, Optional
from uuid import UUID

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.picklist import PickList, PickListLine, PickListStatus
from app.models.wms import InventoryLocation
from app.services.bin_optimization.query_timeout import execute_with_timeout

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    """Immutable cache entry; replaced wholesale on refresh."""
    data: Dict[str, float]
    expires_at: float
    refreshed_at: float


# Process-wide cache keyed by "tenant_id:facility_id"
_congestion_cache: Dict[str, CacheEntry] = {}


def _cache_key(tenant_id: UUID, facility_id: UUID) -> str:
    return f"{tenant_id}:{facility_id}"


def congestion_score(active_pick_lists: int, avg_pick_minutes: float) -> float:
    """Congestion score for an aisle."""
    raw = active_pick_lists * 10 + min(avg_pick_minutes, 30.0)
    return min(raw, settings.CONGESTION_SCORE_CAP)


def congestion_penalty(score: float) -> float:
    """Points subtracted from a location score, capped at CONGESTION_PENALTY_CAP."""
    return min(score / 2, settings.CONGESTION_PENALTY_CAP)


def get_cache_entry(tenant_id: UUID, facility_id: UUID) -> Optional[CacheEntry]:
    """Current cache entry, fresh or stale."""
    return _congestion_cache.get(_cache_key(tenant_id, facility_id))


def tenant_cache_entries(tenant_id: UUID) -> Dict[str, CacheEntry]:
    """Cache entries for one tenant, keyed by facility id."""
    prefix = f"{tenant_id}:"
    return {
        key[len(prefix):]: entry
        for key, entry in list(_congestion_cache.items())
        if key.startswith(prefix)
    }


def invalidate_congestion_cache(tenant_id: Optional[UUID] = None) -> None:
    """Drop cached scores for one tenant, or all tenants."""
    if tenant_id is None:
        _congestion_cache.clear()
        return
    prefix = f"{tenant_id}:"
    for key in [k for k in _congestion_cache if k.startswith(prefix)]:
        _congestion_cache.pop(key, None)


class AisleCongestionTracker:
    """
    Tracks aisle congestion from in-progress pick lists.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _load_congestion(self, tenant_id: UUID, facility_id: UUID) -> Dict[str, float]:
        """Query active pick lists per aisle and compute scores."""
        query = (
            select(
                InventoryLocation.aisle_code,
                PickList.id,
                PickList.started_at,
            )
            .join(PickListLine, PickListLine.pick_list_id == PickList.id)
            .join(InventoryLocation, InventoryLocation.id == PickListLine.location_id)
            .where(
                and_(
                    PickList.tenant_id == tenant_id,
                    PickList.facility_id == facility_id,
                    PickList.status == PickListStatus.IN_PROGRESS.value,
                    InventoryLocation.aisle_code.isnot(None),
                )
            )
            .distinct()
        )
        result = await execute_with_timeout(self.db, query, label="aisle_congestion")
        rows = result.all()

        now = datetime.now(timezone.utc)
        aisle_lists: Dict[str, Dict[UUID, Optional[datetime]]] = defaultdict(dict)
        for row in rows:
            aisle_lists[row.aisle_code][row.id] = row.started_at

        scores: Dict[str, float] = {}
        for aisle, pick_lists in aisle_lists.items():
            minutes = []
            for started_at in pick_lists.values():
                if started_at is None:
                    continue
                if started_at.tzinfo is None:
                    started_at = started_at.replace(tzinfo=timezone.utc)
                minutes.append(max((now - started_at).total_seconds() / 60, 0.0))
            avg_minutes = sum(minutes) / len(minutes) if minutes else 0.0
            scores[aisle] = congestion_score(len(pick_lists), avg_minutes)
        return scores

    async def get_aisle_congestion(self, tenant_id: UUID, facility_id: UUID) -> Dict[str, float]:
        """
        Aisle code -> congestion score.

        Served from cache while fresh. A failed refresh returns an empty
        map (no penalty) and leaves the cache untouched; the query runs
        under a savepoint so the caller's transaction stays usable.
        """
        key = _cache_key(tenant_id, facility_id)
        entry = _congestion_cache.get(key)
        now = time.time()
        if entry is not None and entry.expires_at > now:
            return entry.data

        try:
            async with self.db.begin_nested():
                scores = await self._load_congestion(tenant_id, facility_id)
        except Exception as e:
            logger.warning(f"Congestion refresh failed for facility {facility_id}: {e}")
            return {}

        _congestion_cache[key] = CacheEntry(
            data=scores,
            expires_at=now + settings.CONGESTION_CACHE_TTL,
            refreshed_at=now,
        )
        logger.debug(f"Congestion cache refreshed for facility {facility_id}: {len(scores)} aisles")
        return scores

    async def get_location_penalty(
        self,
        tenant_id: UUID,
        facility_id: UUID,
        aisle_code: Optional[str],
    ) -> float:
        """Penalty for a single location's aisle."""
        if not aisle_code:
            return 0.0
        scores = await self.get_aisle_congestion(tenant_id, facility_id)
        return congestion_penalty(scores.get(aisle_code, 0.0))
