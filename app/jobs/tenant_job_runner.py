"""
Per-tenant execution of the bin optimization background jobs.

A job is an async function registered under a name with @tenant_job. The
runner loads the active tenants, opens one session per tenant, commits when
the job returns and rolls back when it raises. A failing tenant is reported
in the summary and the remaining tenants still run.

Usage:
    @tenant_job("refresh_bin_utilization_cache")
    async def refresh_cache(session, tenant):
        ...
"""

import logging
import asyncio
from typing import Callable, Dict, List, Optional
from datetime import datetime, timezone
from functools import wraps
from uuid import UUID

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.tenant import Tenant
from app.models.wms import InventoryLocation

logger = logging.getLogger(__name__)

# job name -> wrapped coroutine function
_tenant_jobs: Dict[str, Callable] = {}


def tenant_job(name: str):
    """
    Register a coroutine as a per-tenant job under name.

    It is called with:
    - session: AsyncSession for the tenant's work (committed on success)
    - tenant: dict with id, name and code
    """
    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(session: AsyncSession, tenant: dict):
            return await func(session, tenant)

        _tenant_jobs[name] = wrapper
        logger.debug(f"Registered tenant job: {name}")
        return wrapper
    return decorator


def registered_jobs() -> List[str]:
    return sorted(_tenant_jobs)


class TenantJobRunner:
    """
    Fans a registered job out over the active tenants, at most
    max_concurrent at a time.
    """

    def __init__(self, max_concurrent: int = 5, session_factory: Optional[Callable] = None):
        self.max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._session_factory = session_factory

    @property
    def session_factory(self) -> Callable:
        if self._session_factory is None:
            from app.database import async_session_factory
            self._session_factory = async_session_factory
        return self._session_factory

    async def get_active_tenants(self, tenant_id: Optional[UUID] = None) -> List[dict]:
        """Active tenants, optionally narrowed to one."""
        async with self.session_factory() as session:
            query = select(Tenant).where(Tenant.status == "active")
            if tenant_id is not None:
                query = query.where(Tenant.id == tenant_id)
            result = await session.execute(query.order_by(Tenant.created_at))
            return [
                {"id": tenant.id, "name": tenant.name, "code": tenant.code}
                for tenant in result.scalars().all()
            ]

    async def run_job_for_tenant(
        self,
        job_name: str,
        job_func: Callable,
        tenant: dict
    ) -> dict:
        """Execute a job for a single tenant and report status and duration."""
        start_time = datetime.now(timezone.utc)
        result = {
            "tenant_id": str(tenant["id"]),
            "tenant_code": tenant["code"],
            "job": job_name,
            "status": "pending",
            "started_at": start_time.isoformat(),
            "error": None,
            "duration_ms": 0
        }

        try:
            async with self._semaphore:
                async with self.session_factory() as session:
                    try:
                        result["output"] = await job_func(session, tenant)
                        await session.commit()
                        result["status"] = "success"
                    except Exception:
                        await session.rollback()
                        raise

        except Exception as e:
            result["status"] = "failed"
            result["error"] = str(e)
            logger.error(f"Job '{job_name}' failed for tenant '{tenant['code']}': {e}")

        end_time = datetime.now(timezone.utc)
        result["duration_ms"] = int((end_time - start_time).total_seconds() * 1000)
        result["completed_at"] = end_time.isoformat()
        return result

    async def run_job(self, job_name: str, tenant_id: Optional[UUID] = None) -> dict:
        """
        Run a job across all active tenants (or one tenant).

        Returns:
            Summary dictionary with results per tenant
        """
        if job_name not in _tenant_jobs:
            raise ValueError(f"Unknown job: {job_name}. Registered: {registered_jobs()}")

        job_func = _tenant_jobs[job_name]
        start_time = datetime.now(timezone.utc)

        tenants = await self.get_active_tenants(tenant_id)
        if not tenants:
            logger.info(f"No active tenants found. Job '{job_name}' skipped.")
            return {
                "job": job_name,
                "status": "skipped",
                "reason": "no_active_tenants",
                "tenant_count": 0
            }

        logger.info(f"Running '{job_name}' for {len(tenants)} tenants")
        results = await asyncio.gather(*[
            self.run_job_for_tenant(job_name, job_func, tenant)
            for tenant in tenants
        ])

        successful = sum(1 for r in results if r["status"] == "success")
        failed = sum(1 for r in results if r["status"] == "failed")
        end_time = datetime.now(timezone.utc)
        total_duration = int((end_time - start_time).total_seconds() * 1000)

        logger.info(
            f"Job '{job_name}' completed: {successful}/{len(tenants)} successful "
            f"in {total_duration}ms"
        )
        return {
            "job": job_name,
            "status": "completed",
            "started_at": start_time.isoformat(),
            "completed_at": end_time.isoformat(),
            "duration_ms": total_duration,
            "tenant_count": len(tenants),
            "successful": successful,
            "failed": failed,
            "results": list(results)
        }


_runner: Optional[TenantJobRunner] = None


def get_tenant_job_runner() -> TenantJobRunner:
    """Process-wide runner used by the scheduler."""
    global _runner
    if _runner is None:
        _runner = TenantJobRunner()
    return _runner


async def run_tenant_job(job_name: str, tenant_id: Optional[UUID] = None) -> dict:
    """Run job_name through the process-wide runner."""
    runner = get_tenant_job_runner()
    return await runner.run_job(job_name, tenant_id)


async def _tenant_facilities(session: AsyncSession, tenant_id: UUID) -> List[UUID]:
    result = await session.execute(
        select(InventoryLocation.facility_id)
        .where(
            and_(
                InventoryLocation.tenant_id == tenant_id,
                InventoryLocation.is_active.is_(True),
                InventoryLocation.deleted_at.is_(None),
            )
        )
        .distinct()
    )
    return sorted(result.scalars().all(), key=str)


# ============================================================
# BIN OPTIMIZATION JOBS
# ============================================================

@tenant_job("refresh_bin_utilization_cache")
async def refresh_bin_utilization_cache_job(session: AsyncSession, tenant: dict):
    """Rebuild the utilization snapshots for a tenant."""
    from app.services.bin_optimization.utilization import BinUtilizationCacheService

    count = await BinUtilizationCacheService(session).refresh(tenant["id"])
    return {"locations": count}


@tenant_job("bin_optimization_health_check")
async def bin_optimization_health_check_job(session: AsyncSession, tenant: dict):
    """Run health checks with auto-remediation."""
    from app.services.bin_optimization.health import BinOptimizationHealthMonitor

    health = await BinOptimizationHealthMonitor(session).check_health(tenant["id"])
    return {
        "status": health.status,
        "remediation_actions": [a.action for a in health.remediation_actions],
    }


@tenant_job("monitor_bin_fragmentation")
async def monitor_bin_fragmentation_job(session: AsyncSession, tenant: dict):
    """Record fragmentation per facility and warn on HIGH/SEVERE."""
    from app.services.bin_optimization.fragmentation import BinFragmentationMonitor

    monitor = BinFragmentationMonitor(session)
    levels = {}
    for facility_id in await _tenant_facilities(session, tenant["id"]):
        report = await monitor.check_and_alert(tenant["id"], facility_id)
        levels[str(facility_id)] = report["metrics"].fragmentation_level
    return {"facilities": levels}


@tenant_job("retrain_putaway_confidence_model")
async def retrain_putaway_confidence_model_job(session: AsyncSession, tenant: dict):
    """Retrain the confidence adjuster from recent feedback."""
    from app.services.bin_optimization.ml_confidence import PutawayFeedbackLoop

    weights = await PutawayFeedbackLoop(session).train_model(tenant["id"])
    return {"weights": weights.model_dump()}


@tenant_job("predict_bin_utilization")
async def predict_bin_utilization_job(session: AsyncSession, tenant: dict):
    """Forecast utilization per facility; facilities without a week of history are skipped."""
    from app.services.bin_optimization.exceptions import InsufficientHistoryError
    from app.services.bin_optimization.prediction import UtilizationPredictionService

    service = UtilizationPredictionService(session)
    forecasts = {}
    for facility_id in await _tenant_facilities(session, tenant["id"]):
        try:
            predictions = await service.generate_predictions(tenant["id"], facility_id)
        except InsufficientHistoryError as e:
            logger.info(f"Skipping utilization forecast for facility {facility_id}: {e}")
            continue
        forecasts[str(facility_id)] = {p.horizon_days: p.predicted_avg_utilization for p in predictions}
    return {"facilities": forecasts}
