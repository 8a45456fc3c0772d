"""
Logging utility with loguru.
Provides structured logging with file rotation.
"""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from bizsql.config.settings import settings, PROJECT_ROOT

_configured = False


def setup_logger(level: Optional[str] = None, log_dir: Optional[Path] = None):
    """
    Configure loguru logger with console and rotating file outputs.

    Safe to call more than once; only the first call installs handlers.
    """
    global _configured
    if _configured:
        return logger

    logger.remove()

    logger.add(
        sys.stdout,
        colorize=True,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        level=level or settings.log_level,
    )

    log_dir = log_dir or PROJECT_ROOT / "data" / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)

    logger.add(
        log_dir / "pipeline.log",
        rotation="10 MB",
        retention="1 week",
        compression="zip",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
        level="DEBUG",
    )

    _configured = True
    logger.info("Logger initialized")
    return logger


if __name__ == "__main__":
    setup_logger()
    logger.debug("This is a debug message")
    logger.info("This is an info message")
    logger.warning("This is a warning message")
