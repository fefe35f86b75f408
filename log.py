"""Logging initialization using loguru."""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger

CONSOLE_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <7}</level> | {message}"


def init_logging(verbose: bool = False, log_dir: Optional[Path] = None) -> None:
    """Log to stderr and, when log_dir is given, to a rotating file in that directory."""
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO", format=CONSOLE_FORMAT)

    if log_dir is not None:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(log_path / "photo_catalog_{time:YYYYMMDD}.log"),
            rotation="10 MB",
            retention="10 days",
            compression="zip",
            enqueue=True,
            backtrace=False,
            diagnose=False,
            level="DEBUG" if verbose else "INFO",
        )
