"""Logging configuration for Fronius SunSpec"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

LOGGER_NAME = "fronius_sunspec"

_logger: Optional[logging.Logger] = None


def setup_logging(log_level: str = "INFO", log_file: str = None,
                  max_bytes: int = 5 * 1024 * 1024, backup_count: int = 3) -> logging.Logger:
    """
    Setup and configure logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional file path for logging output
        max_bytes: Maximum log file size before rotation (default 5MB)
        backup_count: Number of rotated files to keep

    Returns:
        Configured logger instance
    """
    global _logger

    # Create logger
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # Clear any existing handlers
    logger.handlers = []

    # Create formatter
    formatter = logging.Formatter(
        fmt="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # Rotating file handler (optional)
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    _logger = logger
    return logger


def get_logger() -> logging.Logger:
    """
    Get the configured logger instance.

    Returns:
        Logger instance, creates default if not configured
    """
    global _logger

    if _logger is None:
        _logger = setup_logging()

    return _logger
