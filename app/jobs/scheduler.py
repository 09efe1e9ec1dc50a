"""
Recurring schedule for the bin optimization jobs.

Each trigger hands a job name to the TenantJobRunner, which runs it for
every active tenant. Retrains requested by the health monitor are queued
as one-off date jobs keyed by tenant.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from app.config import settings

logger = logging.getLogger(__name__)

RETRAIN_JOB = "retrain_putaway_confidence_model"

jobstores = {
    'default': MemoryJobStore()
}

executors = {
    'default': AsyncIOExecutor(),
}

job_defaults = {
    'coalesce': True,  # collapse missed runs
    'max_instances': 1,
    'misfire_grace_time': 60,
}

scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone=settings.SCHEDULER_TIMEZONE
)


async def run_tenant_aware_job(job_name: str, tenant_id: Optional[UUID] = None):
    """
    Scheduler entry point for a registered tenant job.

    Errors are logged here so a bad run never unschedules the job.
    """
    from app.jobs.tenant_job_runner import run_tenant_job

    try:
        result = await run_tenant_job(job_name, tenant_id)
        logger.info(
            f"Job '{job_name}' completed: "
            f"{result.get('successful', 0)}/{result.get('tenant_count', 0)} tenants successful"
        )
        return result
    except Exception as e:
        logger.error(f"Job '{job_name}' failed: {e}")


def schedule_retrain(tenant_id: UUID, delay_seconds: int = 5):
    """
    Queue a one-off model retrain for a tenant.

    Repeated requests for the same tenant replace the pending job.
    """
    job = scheduler.add_job(
        run_tenant_aware_job,
        'date',
        run_date=datetime.now(timezone.utc) + timedelta(seconds=delay_seconds),
        args=[RETRAIN_JOB, tenant_id],
        id=f'{RETRAIN_JOB}:{tenant_id}',
        name=f'[Remediation] Retrain putaway model ({tenant_id})',
        replace_existing=True,
    )
    logger.info(f"Retrain scheduled for tenant {tenant_id} at {job.trigger}")
    return job


def register_jobs():
    """Register the recurring tenant-aware jobs."""
    # registers the @tenant_job functions
    from app.jobs import tenant_job_runner  # noqa: F401

    # Refresh utilization snapshots (per tenant)
    scheduler.add_job(
        run_tenant_aware_job,
        'interval',
        minutes=settings.CACHE_REFRESH_INTERVAL_MINUTES,
        args=['refresh_bin_utilization_cache'],
        id='refresh_bin_utilization_cache',
        name='[Tenants] Refresh Bin Utilization Cache',
        replace_existing=True,
    )

    # Health checks with auto-remediation (per tenant)
    scheduler.add_job(
        run_tenant_aware_job,
        'interval',
        minutes=settings.HEALTH_CHECK_INTERVAL_MINUTES,
        args=['bin_optimization_health_check'],
        id='bin_optimization_health_check',
        name='[Tenants] Bin Optimization Health Check',
        replace_existing=True,
    )

    # Fragmentation trend and alerts (per tenant)
    scheduler.add_job(
        run_tenant_aware_job,
        'interval',
        hours=settings.FRAGMENTATION_CHECK_INTERVAL_HOURS,
        args=['monitor_bin_fragmentation'],
        id='monitor_bin_fragmentation',
        name='[Tenants] Monitor Bin Fragmentation',
        replace_existing=True,
    )

    # Nightly model retrain (per tenant)
    scheduler.add_job(
        run_tenant_aware_job,
        'cron',
        hour=settings.ML_RETRAIN_HOUR,
        minute=0,
        args=[RETRAIN_JOB],
        id=RETRAIN_JOB,
        name='[Tenants] Retrain Putaway Confidence Model',
        replace_existing=True,
    )

    # Daily utilization forecast (per tenant)
    scheduler.add_job(
        run_tenant_aware_job,
        'cron',
        hour=settings.UTILIZATION_PREDICTION_HOUR,
        minute=0,
        args=['predict_bin_utilization'],
        id='predict_bin_utilization',
        name='[Tenants] Predict Bin Utilization',
        replace_existing=True,
    )


def start_scheduler():
    """Register the recurring jobs and start the scheduler once."""
    if not scheduler.running:
        register_jobs()
        scheduler.start()
        logger.info("Bin optimization scheduler started")

        for job in scheduler.get_jobs():
            logger.info(f"Scheduled job: {job.name} - Next run: {job.next_run_time}")


def shutdown_scheduler():
    """Stop the scheduler, waiting for running jobs."""
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background job scheduler stopped")


def get_job_status():
    """Id, name, trigger and next run of each scheduled job."""
    jobs = scheduler.get_jobs()
    return [
        {
            'id': job.id,
            'name': job.name,
            'next_run_time': str(job.next_run_time) if getattr(job, 'next_run_time', None) else None,
            'trigger': str(job.trigger),
        }
        for job in jobs
    ]
