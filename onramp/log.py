"""
Logging setup.

Configures the loguru logger for the service.
"""

import sys

from loguru import logger


def setup_logging(level: str = "INFO", *, json: bool = False) -> None:
    """Replace the default sink with a single stderr sink."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        serialize=json,
        backtrace=False,
        diagnose=False,
    )
