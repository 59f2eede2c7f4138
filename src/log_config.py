"""Logging setup for the threat engine using loguru."""

import os
import sys
from pathlib import Path

from loguru import logger

FMT = "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan> | {message}"


def setup_logging(log_dir=None, level=None):
    """
    Configure loguru sinks. Call once at process start (CLI / web app).

    THREAT_ENGINE_LOG_LEVEL picks the level, THREAT_ENGINE_LOG_DIR enables a
    rotating file sink.
    """
    lvl = (level or os.getenv("THREAT_ENGINE_LOG_LEVEL", "INFO")).upper()
    log_dir = log_dir or os.getenv("THREAT_ENGINE_LOG_DIR")

    logger.remove()
    logger.add(sys.stderr, format=FMT, level=lvl, colorize=True, diagnose=False)
    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        logger.add(
            Path(log_dir) / "threat-engine.log",
            format=FMT,
            level=lvl,
            rotation="10 MB",
            retention=5,
            diagnose=False,
        )
    return logger
