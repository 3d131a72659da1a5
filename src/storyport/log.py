"""Logging setup for storyport.

Library modules log through loguru's shared ``logger`` and never configure
sinks themselves; the CLI (or an embedding application) calls
``configure_logging`` once.
"""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from storyport.config import get_settings

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> | "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}"


def configure_logging(
    level: Optional[str] = None,
    verbose: bool = False,
    log_file: Optional[Path] = None,
) -> None:
    """Replace loguru's default sink with storyport's console sink.

    Args:
        level: Minimum level; defaults to STORYPORT_LOG_LEVEL
        verbose: Force DEBUG output regardless of ``level``
        log_file: Optional file that receives the same records
    """
    if verbose:
        level = "DEBUG"
    elif level is None:
        level = get_settings().log_level

    logger.remove()
    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level, colorize=True)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(log_file),
            format=FILE_FORMAT,
            level=level,
            rotation="10 MB",
            encoding="utf-8",
        )
