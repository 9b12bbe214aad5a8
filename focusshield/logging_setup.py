from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler

from .config import AppConfig

LOGGER_NAME = "focusshield"


def setup_logging(config: AppConfig) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    level = logging.getLevelName(config.log_level)
    logger.setLevel(level if isinstance(level, int) else logging.INFO)

    if config.log_to_file and not logger.handlers:
        config.log_dir.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            config.log_file,
            maxBytes=1_000_000,
            backupCount=3,
            encoding="utf-8",
        )
        fmt = logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")
        handler.setFormatter(fmt)
        logger.addHandler(handler)

    return logger
