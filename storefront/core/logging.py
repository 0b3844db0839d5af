"""
Logging configuration
"""

import logging

from .config import settings

def setup_logging(level: str = None) -> None:
    """Configure root logging for the application"""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format=settings.LOG_FORMAT,
    )

    # SQLAlchemy echoes through its own logger
    if not settings.DATABASE_ECHO:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
