"""
Logging configuration for the Leave Management System core
"""
import logging
import sys
from typing import Optional

from lms.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Modules whose INFO lines trace every balance movement; kept at WARNING in prod
LEDGER_LOGGERS = (
    "lms.services.leave_balance_service",
    "lms.services.leave_policy_service",
)


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure root logging to stdout.

    Args:
        level: Overrides settings.LOG_LEVEL (used by the admin scripts' --verbose)
    """
    level_name = (level or settings.LOG_LEVEL).upper()
    log_level = getattr(logging, level_name, logging.INFO)

    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    if settings.APP_ENV == "prod" and log_level < logging.WARNING and level is None:
        for name in LEDGER_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging configured: level=%s, env=%s", level_name, settings.APP_ENV,
    )
