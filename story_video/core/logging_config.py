"""Structured logging configuration."""

import sys
from pathlib import Path
from typing import Any, Optional

from loguru import logger


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[Path] = None,
    rotation: str = "10 MB",
    retention: str = "7 days",
) -> None:
    """
    Configure structured logging with console and file output.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional path to log file
        rotation: Log rotation size
        retention: Log retention period
    """
    # Remove default handler
    logger.remove()

    # Console handler with colors
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | <level>{message}</level>",
        level=log_level,
        colorize=True,
    )

    # File handler if specified
    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message} | {extra}",
            level=log_level,
            rotation=rotation,
            retention=retention,
            compression="zip",
        )


def configure_from_settings(settings: Any) -> None:
    """Apply log level and optional log file from application settings."""
    log_file = getattr(settings, "log_file", None)
    setup_logging(
        log_level=getattr(settings, "log_level", "INFO"),
        log_file=Path(log_file) if log_file else None,
    )


def get_logger(name: str, **context: Any) -> Any:
    """
    Get a logger instance with optional context.

    Args:
        name: Logger name (typically __name__)
        **context: Additional context fields (story_id, job_kind, shot_id, etc.)

    Returns:
        Logger instance with bound context
    """
    if context:
        return logger.bind(name=name, **context)
    return logger.bind(name=name)


def log_stage(logger: Any, title: str, **fields: Any) -> None:
    """
    Log a banner marking the start of a pipeline stage.

    Args:
        logger: Logger instance
        title: Stage title (e.g., "Generation batch: video")
        **fields: Key facts about the stage, one line each
    """
    logger.info("=" * 60)
    logger.info(title)
    for key, value in fields.items():
        logger.info(f"  {key}: {value}")
    logger.info("=" * 60)


# Initialize logging on import
setup_logging()
