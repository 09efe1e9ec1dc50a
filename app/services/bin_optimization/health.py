"""
Bin Optimization Health Monitor

Five independent checks, each HEALTHY / DEGRADED / UNHEALTHY:
1. Utilization cache freshness
2. ML accuracy (last 7 days)
3. Congestion cache
4. Database latency
5. Algorithm smoke test

Overall status is the worst check. With auto-remediation on:
- UNHEALTHY cache -> refresh snapshots
- DEGRADED/UNHEALTHY ML accuracy -> schedule retrain + alert
- DEGRADED/UNHEALTHY database or algorithm -> alert only

Checks never raise; every remediation attempt is written to
bin_optimization_remediation_log.
"""

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.bin_optimization import BinUtilizationSnapshot, RemediationLog
from app.models.inventory import Material
from app.models.wms import InventoryLocation
from app.schemas.bin_optimization import (
    BinCapacity,
    BinOptimizationHealth,
    HealthCheckResult,
    HealthStatus,
    ItemDimensions,
    RemediationAction,
)
from app.services.bin_optimization.algorithm_selector import select_algorithm
from app.services.bin_optimization.capacity import validate_capacity
from app.services.bin_optimization.congestion import tenant_cache_entries
from app.services.bin_optimization.ml_confidence import PutawayFeedbackLoop
from app.services.bin_optimization.utilization import BinUtilizationCacheService

logger = logging.getLogger(__name__)

CACHE_FRESHNESS = "cache_freshness"
ML_ACCURACY = "ml_accuracy"
CONGESTION_CACHE = "congestion_cache"
DATABASE_LATENCY = "database_latency"
ALGORITHM_PERFORMANCE = "algorithm_performance"

ACTION_CACHE_REFRESHED = "CACHE_REFRESHED"
ACTION_ML_RETRAIN_SCHEDULED = "ML_RETRAIN_SCHEDULED"
ACTION_ALERT_SENT = "ALERT_SENT"

STATUS_RANK = {
    HealthStatus.HEALTHY.value: 0,
    HealthStatus.DEGRADED.value: 1,
    HealthStatus.UNHEALTHY.value: 2,
}

RetrainScheduler = Callable[[UUID], None]


def worst_status(statuses: List[str]) -> str:
    """Worst of the given statuses; HEALTHY when empty."""
    worst = HealthStatus.HEALTHY.value
    for status in statuses:
        value = HealthStatus(status).value
        if STATUS_RANK[value] > STATUS_RANK[worst]:
            worst = value
    return worst


def _default_retrain_scheduler(tenant_id: UUID) -> None:
    from app.jobs.scheduler import schedule_retrain

    schedule_retrain(tenant_id)


class BinOptimizationHealthMonitor:
    """
    Health checks with optional auto-remediation.
    """

    def __init__(
        self,
        db: AsyncSession,
        retrain_scheduler: Optional[RetrainScheduler] = None,
        auto_remediate: Optional[bool] = None,
    ):
        self.db = db
        self.retrain_scheduler = retrain_scheduler or _default_retrain_scheduler
        self.auto_remediate = settings.AUTO_REMEDIATION_ENABLED if auto_remediate is None else auto_remediate
        self.cache_service = BinUtilizationCacheService(db)
        self.feedback = PutawayFeedbackLoop(db)

    # ==================== Checks ====================

    async def check_cache_freshness(self, tenant_id: UUID) -> HealthCheckResult:
        try:
            age = await self.cache_service.get_cache_age_seconds(tenant_id)
        except Exception as e:
            return HealthCheckResult(
                name=CACHE_FRESHNESS,
                status=HealthStatus.UNHEALTHY,
                message=f"Cache freshness check failed: {e}",
            )

        if age is None:
            return HealthCheckResult(
                name=CACHE_FRESHNESS,
                status=HealthStatus.UNHEALTHY,
                message="Utilization cache is empty",
            )
        if age > settings.CACHE_UNHEALTHY_AGE_SECONDS:
            status = HealthStatus.UNHEALTHY
        elif age > settings.CACHE_DEGRADED_AGE_SECONDS:
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.HEALTHY
        return HealthCheckResult(
            name=CACHE_FRESHNESS,
            status=status,
            message=f"Last refreshed {age:.0f}s ago",
            metric=round(age, 1),
        )

    async def check_ml_accuracy(self, tenant_id: UUID) -> HealthCheckResult:
        try:
            health = await self.feedback.evaluate_health(tenant_id, days=7)
        except Exception as e:
            return HealthCheckResult(
                name=ML_ACCURACY,
                status=HealthStatus.DEGRADED,
                message=f"ML accuracy check failed: {e}",
            )
        return HealthCheckResult(
            name=ML_ACCURACY,
            status=health.status,
            message=health.message,
            metric=health.accuracy,
        )

    async def check_congestion_cache(self, tenant_id: UUID) -> HealthCheckResult:
        try:
            entries = tenant_cache_entries(tenant_id)
            now = time.time()
            fresh = [e for e in entries.values() if e.expires_at > now]
            aisles = sum(len(e.data) for e in fresh)
        except Exception as e:
            return HealthCheckResult(
                name=CONGESTION_CACHE,
                status=HealthStatus.DEGRADED,
                message=f"Congestion cache check failed: {e}",
            )
        message = f"Tracking {aisles} aisles" if aisles else "No active congestion (normal)"
        return HealthCheckResult(
            name=CONGESTION_CACHE,
            status=HealthStatus.HEALTHY,
            message=message,
            metric=float(aisles),
        )

    async def check_database_latency(self, tenant_id: UUID) -> HealthCheckResult:
        started = time.perf_counter()
        try:
            await self.db.execute(
                select(func.count(BinUtilizationSnapshot.id)).where(
                    BinUtilizationSnapshot.tenant_id == tenant_id
                )
            )
        except Exception as e:
            return HealthCheckResult(
                name=DATABASE_LATENCY,
                status=HealthStatus.UNHEALTHY,
                message=f"Database check failed: {e}",
            )
        elapsed_ms = (time.perf_counter() - started) * 1000
        status = (
            HealthStatus.DEGRADED if elapsed_ms > settings.DB_LATENCY_DEGRADED_MS else HealthStatus.HEALTHY
        )
        return HealthCheckResult(
            name=DATABASE_LATENCY,
            status=status,
            message=f"Query time {elapsed_ms:.1f}ms",
            metric=round(elapsed_ms, 2),
        )

    async def check_algorithm_performance(self, tenant_id: UUID) -> HealthCheckResult:
        """Round-trip the tables placement reads plus one in-memory validation."""
        started = time.perf_counter()
        try:
            await self.db.execute(select(Material.id).where(Material.tenant_id == tenant_id).limit(1))
            await self.db.execute(
                select(InventoryLocation.id).where(InventoryLocation.tenant_id == tenant_id).limit(1)
            )
            sample_bin = BinCapacity(
                location_id=uuid.uuid4(),
                facility_id=uuid.uuid4(),
                location_code="HEALTH-CHECK",
                location_type="RESERVE",
                total_cubic_feet=100.0,
                used_cubic_feet=0.0,
                available_cubic_feet=100.0,
                max_weight_lbs=1000.0,
                current_weight_lbs=0.0,
                available_weight_lbs=1000.0,
                utilization_percentage=0.0,
                length_inches=48.0,
                width_inches=48.0,
                height_inches=72.0,
            )
            sample_item = ItemDimensions(
                length_inches=12.0, width_inches=12.0, height_inches=12.0, cubic_feet=1.0,
            )
            validate_capacity(sample_bin, sample_item, 10)
            select_algorithm([], [sample_bin])
        except Exception as e:
            return HealthCheckResult(
                name=ALGORITHM_PERFORMANCE,
                status=HealthStatus.DEGRADED,
                message=f"Algorithm smoke test failed: {e}",
            )
        elapsed_ms = (time.perf_counter() - started) * 1000
        status = (
            HealthStatus.DEGRADED
            if elapsed_ms > settings.ALGORITHM_LATENCY_DEGRADED_MS
            else HealthStatus.HEALTHY
        )
        return HealthCheckResult(
            name=ALGORITHM_PERFORMANCE,
            status=status,
            message=f"Algorithm smoke test {elapsed_ms:.1f}ms",
            metric=round(elapsed_ms, 2),
        )

    # ==================== Remediation ====================

    async def _log_action(self, tenant_id: UUID, status: str, action: RemediationAction) -> None:
        try:
            self.db.add(RemediationLog(
                tenant_id=tenant_id,
                health_check=action.health_check,
                status=status,
                action=action.action,
                successful=action.successful,
                pre_action_metric=action.pre_action_metric,
                post_action_metric=action.post_action_metric,
                error_message=action.error_message,
            ))
            await self.db.flush()
        except Exception as e:
            logger.error(f"Failed to log remediation action {action.action}: {e}")

    async def _refresh_cache(self, tenant_id: UUID, check: HealthCheckResult) -> RemediationAction:
        try:
            await self.cache_service.refresh(tenant_id)
            post_age = await self.cache_service.get_cache_age_seconds(tenant_id)
            action = RemediationAction(
                health_check=check.name,
                action=ACTION_CACHE_REFRESHED,
                successful=True,
                pre_action_metric=check.metric,
                post_action_metric=round(post_age, 1) if post_age is not None else None,
            )
            logger.info(f"Utilization cache auto-refreshed for tenant {tenant_id}")
        except Exception as e:
            logger.error(f"Utilization cache refresh failed for tenant {tenant_id}: {e}")
            action = RemediationAction(
                health_check=check.name,
                action=ACTION_CACHE_REFRESHED,
                successful=False,
                pre_action_metric=check.metric,
                error_message=str(e),
            )
        await self._log_action(tenant_id, check.status, action)
        return action

    async def _schedule_retrain(self, tenant_id: UUID, check: HealthCheckResult) -> RemediationAction:
        try:
            self.retrain_scheduler(tenant_id)
            action = RemediationAction(
                health_check=check.name,
                action=ACTION_ML_RETRAIN_SCHEDULED,
                successful=True,
                pre_action_metric=check.metric,
            )
            logger.info(f"Putaway model retrain scheduled for tenant {tenant_id}")
        except Exception as e:
            logger.error(f"Could not schedule retrain for tenant {tenant_id}: {e}")
            action = RemediationAction(
                health_check=check.name,
                action=ACTION_ML_RETRAIN_SCHEDULED,
                successful=False,
                pre_action_metric=check.metric,
                error_message=str(e),
            )
        await self._log_action(tenant_id, check.status, action)
        return action

    async def _alert(self, tenant_id: UUID, check: HealthCheckResult) -> RemediationAction:
        severity = "CRITICAL" if check.status == HealthStatus.UNHEALTHY.value else "WARNING"
        log = logger.critical if severity == "CRITICAL" else logger.warning
        log(f"[{severity}] Bin optimization {check.name} {check.status} for tenant {tenant_id}: {check.message}")
        action = RemediationAction(
            health_check=check.name,
            action=ACTION_ALERT_SENT,
            successful=True,
            pre_action_metric=check.metric,
        )
        await self._log_action(tenant_id, check.status, action)
        return action

    async def _remediate(self, tenant_id: UUID, checks: Dict[str, HealthCheckResult]) -> List[RemediationAction]:
        actions = []
        unhealthy = HealthStatus.UNHEALTHY.value
        degraded_or_worse = (HealthStatus.DEGRADED.value, unhealthy)

        if checks[CACHE_FRESHNESS].status == unhealthy:
            actions.append(await self._refresh_cache(tenant_id, checks[CACHE_FRESHNESS]))

        if checks[ML_ACCURACY].status in degraded_or_worse:
            actions.append(await self._schedule_retrain(tenant_id, checks[ML_ACCURACY]))
            actions.append(await self._alert(tenant_id, checks[ML_ACCURACY]))

        for name in (DATABASE_LATENCY, ALGORITHM_PERFORMANCE):
            if checks[name].status in degraded_or_worse:
                actions.append(await self._alert(tenant_id, checks[name]))

        return actions

    # ==================== Public API ====================

    async def check_health(self, tenant_id: UUID, auto_remediate: Optional[bool] = None) -> BinOptimizationHealth:
        """Run all checks, remediate when enabled, and report the worst status."""
        checks = {
            CACHE_FRESHNESS: await self.check_cache_freshness(tenant_id),
            ML_ACCURACY: await self.check_ml_accuracy(tenant_id),
            CONGESTION_CACHE: await self.check_congestion_cache(tenant_id),
            DATABASE_LATENCY: await self.check_database_latency(tenant_id),
            ALGORITHM_PERFORMANCE: await self.check_algorithm_performance(tenant_id),
        }

        remediate = self.auto_remediate if auto_remediate is None else auto_remediate
        actions: List[RemediationAction] = []
        if remediate:
            actions = await self._remediate(tenant_id, checks)

        status = worst_status([c.status for c in checks.values()])
        if status != HealthStatus.HEALTHY.value:
            logger.warning(f"Bin optimization health {status} for tenant {tenant_id}")

        return BinOptimizationHealth(
            status=status,
            checks=checks,
            remediation_actions=actions,
            timestamp=datetime.now(timezone.utc),
        )
