"""Logging setup for the rollup namespace."""

import logging
import sys
import threading

_LOGGER_PREFIX = "rollup"
_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_configured = False
_lock = threading.Lock()


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the rollup namespace."""
    if name == _LOGGER_PREFIX or name.startswith(f"{_LOGGER_PREFIX}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def configure_logging(level: int | str = logging.INFO, handler: logging.Handler | None = None) -> None:
    """Configure the rollup logger hierarchy (idempotent)."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root_logger = logging.getLogger(_LOGGER_PREFIX)
    root_logger.setLevel(level.upper() if isinstance(level, str) else level)

    h = handler or logging.StreamHandler(sys.stderr)
    h.setFormatter(logging.Formatter(_FORMAT))
    root_logger.addHandler(h)


def reset_logging() -> None:
    """Reset logging configuration. FOR TESTING ONLY."""
    global _configured
    with _lock:
        _configured = False
    logger = logging.getLogger(_LOGGER_PREFIX)
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
