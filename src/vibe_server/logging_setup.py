"""Process-wide logging setup driven by ``config.logging``."""

from __future__ import annotations

import logging

from vibe_server.config import LoggingSettings

_FORMATS = {
    "simple": "%(levelname)s %(message)s",
    "detailed": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
}


def configure_logging(settings: LoggingSettings) -> None:
    """Apply the configured level and format to the root logger.

    Safe to call more than once; ``force=True`` replaces handlers installed
    by an earlier call (or by uvicorn's defaults).
    """
    level = logging.getLevelName(settings.level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(
        level=level,
        format=_FORMATS.get(settings.format, _FORMATS["detailed"]),
        force=True,
    )
