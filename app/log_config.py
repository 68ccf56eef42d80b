"""Loguru configuration.

Call ``setup_logger()`` once at process start; repeated calls only change the
level of the existing sink.
"""

import sys

from loguru import logger

_sink_id: int | None = None


def setup_logger(level: str = "INFO") -> None:
    global _sink_id
    if _sink_id is None:
        logger.remove()
    else:
        logger.remove(_sink_id)

    _sink_id = logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <level>{message}</level>",
        colorize=True,
    )
