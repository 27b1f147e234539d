"""
Logging configuration
"""

import logging
import sys
from typing import Optional
from core.config import settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# Third-party loggers that flood INFO with per-query and per-request lines
NOISY_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "httpx", "openai", "apscheduler")


def setup_logging(level: Optional[str] = None):
    """Configure root logging once per process; ``level`` overrides LOG_LEVEL."""
    name = (level or settings.LOG_LEVEL).upper()
    log_level = getattr(logging, name, logging.INFO)

    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(max(log_level, logging.WARNING))

    logging.getLogger(__name__).info(f"Logging configured at {logging.getLevelName(log_level)} level")
