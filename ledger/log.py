import logging
import sys
from typing import Optional

DEFAULT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: Optional[str] = None, format_string: Optional[str] = None) -> logging.Logger:
    """Configure the root ``ledger``/``games`` loggers with a single stream handler."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(format_string or DEFAULT_FORMAT))

    resolved = getattr(logging, (level or "INFO").upper(), logging.INFO)
    for name in ("ledger", "games"):
        logger = logging.getLogger(name)
        logger.handlers.clear()
        logger.addHandler(handler)
        logger.setLevel(resolved)
        logger.propagate = False

    return logging.getLogger("ledger")
