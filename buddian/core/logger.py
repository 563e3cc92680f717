from pathlib import Path
import sys
from typing import Any

from loguru import logger

from buddian.config.schema import Config

# Component-scoped logger for the plugin subsystem
plugin_logger = logger.bind(component="plugins")


def configure_logger(config: Config) -> None:
    """Configure loguru logger based on settings."""
    logger.remove()  # Remove default handler

    if not config.logging.enabled:
        return

    # Console (stderr)
    logger.add(sys.stderr, level=config.logging.level)

    # File
    if config.logging.file_enabled:
        path = Path(config.logging.file_path).expanduser()
        try:
            logger.add(
                path,
                rotation=config.logging.rotation,
                retention=config.logging.retention,
                level=config.logging.level,
                enqueue=True,  # Async safe
            )
        except (OSError, PermissionError) as e:
            logger.warning(f"File logging disabled, cannot open {path}: {e}")


def log_error(log: Any, error: BaseException, **context: Any) -> None:
    """Log an exception with structured context fields attached to the record."""
    operation = context.get("operation", "operation")
    log.bind(**context).opt(exception=error).error(
        "{} failed: {}: {}", operation, type(error).__name__, error
    )
