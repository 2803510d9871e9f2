"""
Logging setup using loguru.

Installs a colourised console sink and, when ``LOG_DIR`` is set, two rotated
file sinks: ``{service}.log`` for everything at the configured level and
``{service}-error.log`` for errors only.
"""

from pathlib import Path
import sys

from loguru import logger

from pixel_analytics.config import Settings, get_settings


def setup_logging(settings: Settings | None = None) -> None:
    """Configure loguru sinks. Safe to call more than once."""
    settings = settings or get_settings()

    logger.remove()

    logger.add(
        sys.stdout,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
        "<level>{message}</level>",
        level=settings.LOG_LEVEL,
        colorize=True,
    )

    if not settings.LOG_DIR:
        return

    logs_dir = Path(settings.LOG_DIR)
    logs_dir.mkdir(parents=True, exist_ok=True)

    file_format = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}"

    logger.add(
        logs_dir / f"{settings.SERVICE_NAME}-error.log",
        format=file_format,
        level="ERROR",
        rotation="10 MB",
        retention="30 days",
        compression="zip",
    )

    logger.add(
        logs_dir / f"{settings.SERVICE_NAME}.log",
        format=file_format,
        level=settings.LOG_LEVEL,
        rotation="50 MB",
        retention="7 days",
        compression="zip",
    )
