"""Logging configuration using Loguru."""

import sys
from pathlib import Path

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[module]}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[module]}:{function}:{line} - {message}"


def setup_logging(
    level: str = "INFO",
    log_to_file: bool = True,
    log_dir: str = "logs",
    file_rotation: str = "10 MB",
    file_retention: str = "7 days",
    compression: str = "zip",
    serialize: bool = True,
) -> None:
    """Configure Loguru sinks: colored console plus optional rotating JSON file."""
    logger.remove()
    # Records emitted without get_logger() still need a module for the formats
    logger.configure(extra={"module": "cardgraph"})

    logger.add(
        sys.stderr,
        level=level,
        format=CONSOLE_FORMAT,
        colorize=True,
        serialize=False,
    )

    if log_to_file:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        logger.add(
            log_path / "cardgraph_{time:YYYY-MM-DD}.log",
            level=level,
            format=FILE_FORMAT,
            rotation=file_rotation,
            retention=file_retention,
            compression=compression,
            serialize=serialize,
            enqueue=True,
        )


def setup_logging_from_config(config) -> None:
    """Apply a LoggingConfig section."""
    setup_logging(
        level=config.level,
        log_to_file=config.log_to_file,
        log_dir=config.log_dir,
        file_rotation=config.file_rotation,
        file_retention=config.file_retention,
        compression=config.compression,
        serialize=config.serialize,
    )


def get_logger(name: str):
    """Get a logger instance for a module."""
    return logger.bind(module=name)
