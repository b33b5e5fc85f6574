"""Root logger configuration."""

import logging
import sys

from arena.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

# Third-party loggers that are noisy at INFO
_QUIET_LOGGERS = ("apscheduler.executors.default", "ccxt.base.exchange", "httpx")


def setup_logging(level: str | None = None):
    """Configure the root logger once. Safe to call again (handlers are replaced)."""
    level_name = (level or settings.log_level).upper()
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(getattr(logging, level_name, logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
