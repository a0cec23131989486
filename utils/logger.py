"""
utils/logger.py
---------------
Process-wide logging setup.
Modules call `get_logger(__name__)`; the first call installs a stdout
handler on the root logger at LOG_LEVEL.
"""

import logging
import sys

from config import LOG_LEVEL

_FORMAT = "%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Chatty third-party loggers: httpx logs every Telegram long poll,
# urllib3 every remove.bg connection, PIL every image plugin it tries.
_QUIET = ("httpx", "urllib3", "PIL")

_configured = False


def _level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def _configure() -> None:
    global _configured
    if _configured:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(_FORMAT, _DATE_FORMAT))
    root = logging.getLogger()
    root.setLevel(_level(LOG_LEVEL))
    root.addHandler(handler)
    for name in _QUIET:
        logging.getLogger(name).setLevel(logging.WARNING)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """
    Get a named logger, configuring logging on first use.

    Args:
        name: Usually ``__name__`` of the calling module.
    """
    _configure()
    return logging.getLogger(name)
