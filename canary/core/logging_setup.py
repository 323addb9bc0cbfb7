from __future__ import annotations

import logging
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
    "panic": logging.CRITICAL,
    "critical": logging.CRITICAL,
}


def parse_level(raw: Optional[str]) -> Optional[int]:
    """Return the logging level for a LOG_LEVEL value, or None when unrecognized."""
    return _LEVELS.get((raw or "").strip().lower() or "info")


def configure_logging(raw_level: Optional[str]) -> int:
    level = parse_level(raw_level)
    logging.basicConfig(level=level or logging.INFO, format=LOG_FORMAT, stream=sys.stderr)
    log = logging.getLogger("canary")
    if level is None:
        log.warning(
            "Invalid log level '%s', using 'info'. Valid levels: %s", raw_level, ", ".join(sorted(_LEVELS))
        )
        level = logging.INFO
    logging.getLogger().setLevel(level)
    log.info("Log level configured: level=%s", logging.getLevelName(level))
    return level
