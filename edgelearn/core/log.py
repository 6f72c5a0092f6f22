"""
EdgeLearn Core - Logging Setup

Modules log through ``from loguru import logger``. ``configure_logging``
installs a sink whose patcher scrubs bound ``extra`` fields with the
anonymization policy, so per-user context bound with ``logger.bind`` never
reaches shared sinks in the clear.
"""

import sys
from typing import Optional, Any

from loguru import logger

from ..privacy.anonymize import scrub, DEFAULT_SALT

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level> | {extra}"
)


def configure_logging(level: str = "INFO", sink: Optional[Any] = None, salt: str = DEFAULT_SALT) -> int:
    """Replace loguru's default handler with a scrubbing one. Returns the handler id."""

    def _patch(record):
        cleaned = scrub(record["extra"], salt)
        record["extra"].clear()
        record["extra"].update(cleaned)

    logger.remove()
    logger.configure(patcher=_patch)
    return logger.add(sink if sink is not None else sys.stderr, level=level, format=LOG_FORMAT)


__all__ = ['configure_logging', 'LOG_FORMAT']
