# backend/app/core/logging.py
import logging

from backend.app.core.config import settings


def configure_logging() -> None:
    """Configure root logging once at application start."""
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # SQL statements are controlled by DATABASE_ECHO, not by LOG_LEVEL
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
