"""
Per-query timeouts for the placement path.

A timeout surfaces as PutawayQueryTimeoutError for the calling batch,
never as a process-level failure.
"""
import asyncio
import logging
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.services.bin_optimization.exceptions import PutawayQueryTimeoutError

logger = logging.getLogger(__name__)


async def execute_with_timeout(
    db: AsyncSession,
    statement: Any,
    timeout: Optional[float] = None,
    label: str = "query",
):
    """
    Execute a statement, cancelling it after the timeout.

    Args:
        db: Async session
        statement: SQLAlchemy executable
        timeout: Seconds to wait (default: QUERY_TIMEOUT_SECONDS)
        label: Name used in logs and the raised error

    Returns:
        The SQLAlchemy Result
    """
    timeout = timeout if timeout is not None else settings.QUERY_TIMEOUT_SECONDS
    try:
        return await asyncio.wait_for(db.execute(statement), timeout=timeout)
    except asyncio.TimeoutError:
        logger.error(f"Query '{label}' exceeded {timeout}s timeout")
        raise PutawayQueryTimeoutError(label, timeout)
