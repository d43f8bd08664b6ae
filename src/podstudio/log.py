import logging
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(log_level: str = "INFO", fmt: Optional[str] = None) -> logging.Logger:
    """Configure the ``podstudio`` logger with a single console handler.

    Safe to call more than once: existing handlers are replaced.
    """
    logger = logging.getLogger("podstudio")
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    logger.handlers = []

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(fmt or LOG_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False
    return logger
