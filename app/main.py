"""
Bin optimization worker.

Runs the background scheduler (cache refresh, health checks with
auto-remediation, fragmentation monitoring, nightly retraining) until
interrupted:

    python -m app.main
"""
import asyncio
import logging
from contextlib import asynccontextmanager

from app.config import settings
from app.core.logging_config import configure_logging
from app.database import init_db, engine
from app.jobs.scheduler import start_scheduler, shutdown_scheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan():
    """
    Worker lifespan.

    Startup:
    - Create any missing tables
    - Start background scheduler

    Shutdown:
    - Stop scheduler, then dispose the engine
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    await init_db()

    start_scheduler()
    logger.info("Background scheduler started")

    try:
        yield
    finally:
        shutdown_scheduler()
        await engine.dispose()
        logger.info("Shutting down...")


async def run_worker(stop: asyncio.Event = None) -> None:
    """Run until the stop event is set (forever when none is given)."""
    stop = stop or asyncio.Event()
    async with lifespan():
        await stop.wait()


def main() -> None:
    configure_logging()
    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
