"""Logging setup for the scheduler process and scripts."""
import logging

from app.config import settings


def configure_logging(level: str = None) -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(
        level=getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    # SQLAlchemy engine logging is controlled by DEBUG via echo
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
