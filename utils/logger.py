"""
Logging utilities for the Kokbok recipe pipeline.

Provides structured logging setup with proper formatting and file rotation.
"""

import logging
import logging.handlers
import sys
import time
from pathlib import Path
from typing import Optional

from .config import Config

ROOT_LOGGER_NAME = "kokbok"


def setup_logging(config: Config, log_level: Optional[str] = None) -> logging.Logger:
    """
    Set up pipeline logging with both console and file output.

    Args:
        config: Configuration holding the log level and log file path
        log_level: Optional override for the configured level

    Returns:
        Configured root logger for the pipeline
    """
    log_level = (log_level or config.log_level).upper()
    log_file = config.log_file

    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level))
    logger.handlers.clear()

    console_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )

    file_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(pathname)s:%(lineno)d - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(console_formatter)
    console_handler.setLevel(logging.INFO)
    logger.addHandler(console_handler)

    file_handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
        encoding='utf-8'
    )
    file_handler.setFormatter(file_formatter)
    file_handler.setLevel(getattr(logging, log_level))
    logger.addHandler(file_handler)

    # Third-party libraries are noisy at INFO
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("playwright").setLevel(logging.WARNING)

    logger.info(f"Logging initialized - Level: {log_level}, File: {log_file}")

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a specific module.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Logger instance under the pipeline namespace
    """
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


class ContextLogger:
    """Context manager for logging operations with timing"""

    def __init__(self, logger: logging.Logger, operation: str, level: int = logging.INFO):
        self.logger = logger
        self.operation = operation
        self.level = level
        self.start_time = None

    def __enter__(self):
        self.start_time = time.monotonic()
        self.logger.log(self.level, f"Starting: {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = time.monotonic() - self.start_time

        if exc_type is None:
            self.logger.log(self.level, f"Completed: {self.operation} ({duration:.2f}s)")
        else:
            self.logger.error(f"Failed: {self.operation} ({duration:.2f}s) - {exc_val}")

    def info(self, message: str):
        self.logger.info(f"[{self.operation}] {message}")

    def warning(self, message: str):
        self.logger.warning(f"[{self.operation}] {message}")


def log_operation(logger: logging.Logger, operation: str, level: int = logging.INFO):
    """Create a context logger for an operation"""
    return ContextLogger(logger, operation, level)
