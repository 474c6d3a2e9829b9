"""Logging setup shared by the API process and the scheduler."""

import logging
import sys

from tracker.config import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: str | None = None):
    """Configure the root logger once. Safe to call repeatedly."""
    level_name = (level or settings.log_level).upper()
    root = logging.getLogger()
    root.setLevel(level_name)

    if not any(getattr(h, "_tracker_handler", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._tracker_handler = True
        root.addHandler(handler)

    # Quiet chatty client libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler.executors.default").setLevel(logging.WARNING)
