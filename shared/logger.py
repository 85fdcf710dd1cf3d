"""
Logging setup shared by the pointstream server and viewer.

Modules never configure handlers themselves; they ask for a logger:

    from shared.logger import get_logger

    logger = get_logger(__name__)
    logger.debug("Evicted %d points (budget=%d)", evicted, budget)
"""

import logging
import sys
from typing import Union

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Third-party loggers that are chatty at INFO / DEBUG
_NOISY_LOGGERS = {
    "websockets": logging.WARNING,
    "uvicorn.access": logging.WARNING,
    "asyncio": logging.WARNING,
}

_handler_installed = False


def _to_level(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(level: Union[str, int] = "INFO") -> None:
    """Install the stdout handler once; later calls only change the level.

    The server calls this from ``create_app`` with the configured
    ``log_level``, so building several apps in one process (tests) does not
    stack handlers.
    """
    global _handler_installed
    root = logging.getLogger()
    root.setLevel(_to_level(level))
    if _handler_installed:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))
    root.addHandler(handler)
    for name, noisy_level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)
    _handler_installed = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
