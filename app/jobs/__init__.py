"""
Background Jobs Module

Handles scheduled bin optimization tasks:
- Utilization cache refresh
- Health checks with auto-remediation
- Fragmentation monitoring
- Putaway confidence model retraining
"""

from app.jobs.scheduler import (
    scheduler,
    start_scheduler,
    shutdown_scheduler,
    schedule_retrain,
    get_job_status,
)

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
    "schedule_retrain",
    "get_job_status",
]
