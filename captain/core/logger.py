from __future__ import annotations

import logging
import os
import sys

LOGGER_NAME = "captain"


def _level_from_env() -> int:
    raw = (os.getenv("CAPTAIN_LOG_LEVEL") or "INFO").strip().upper()
    level = logging.getLevelName(raw)
    return level if isinstance(level, int) else logging.INFO


logger = logging.getLogger(LOGGER_NAME)
logger.setLevel(_level_from_env())
logger.propagate = False
if not logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    )
    logger.addHandler(handler)


def get_logger(area: str) -> logging.Logger:
    """Child logger under the shared `captain` handler (e.g. `captain.channel`)."""
    return logger.getChild(area)
