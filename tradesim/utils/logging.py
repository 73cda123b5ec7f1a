"""Process-wide logging configuration."""

import logging
import sys

from tradesim.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

# Chatty third-party loggers that drown out tick logs at INFO
_QUIET_LOGGERS = ("apscheduler.executors.default", "urllib3")


def setup_logging(level: str | None = None):
    """Configure the root logger from settings.log_level."""
    level_name = (level or settings.log_level).upper()
    logging.basicConfig(level=level_name, format=LOG_FORMAT, stream=sys.stdout)
    logging.getLogger().setLevel(level_name)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
