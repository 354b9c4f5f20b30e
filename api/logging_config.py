"""
Logging configuration for Scheduled Publisher.
Provides structured logging with proper formatting.
"""

import os
import sys
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

# Log directory
LOG_DIR = Path(os.getenv("LOG_DIR", Path(__file__).parent.parent / "logs"))
LOG_DIR.mkdir(parents=True, exist_ok=True)

# Log level from environment
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors for console output."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        color = self.COLORS.get(record.levelname, self.RESET)
        record = logging.makeLogRecord(record.__dict__)
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


# Package loggers that share the publisher handlers
PACKAGE_LOGGERS = ("api", "adapters", "core", "ai")


def setup_logging(name: str = "publisher", packages=PACKAGE_LOGGERS) -> logging.Logger:
    """
    Setup and return a configured logger.

    The same handlers are attached to each package logger, so module
    loggers from logging.getLogger(__name__) write to them too.

    Args:
        name: Logger name (default: publisher)
        packages: Top-level package loggers to attach the handlers to

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))

    # Console handler with colors
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG)
    console_format = ColoredFormatter(
        '%(asctime)s | %(levelname)s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(console_format)
    logger.addHandler(console_handler)

    # File handler with rotation
    file_handler = RotatingFileHandler(
        LOG_DIR / f"{name}.log",
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5
    )
    file_handler.setLevel(logging.DEBUG)
    file_format = logging.Formatter(
        '%(asctime)s | %(levelname)s | %(name)s | %(funcName)s:%(lineno)d | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    file_handler.setFormatter(file_format)
    logger.addHandler(file_handler)

    # Error file handler (errors and above)
    error_handler = RotatingFileHandler(
        LOG_DIR / f"{name}_errors.log",
        maxBytes=10 * 1024 * 1024,
        backupCount=5
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(file_format)
    logger.addHandler(error_handler)

    for package in packages:
        package_logger = logging.getLogger(package)
        package_logger.setLevel(logger.level)
        for handler in logger.handlers:
            package_logger.addHandler(handler)

    return logger


# Create default logger
logger = setup_logging()


def log_request(method: str, path: str, status_code: int = None, duration_ms: float = None):
    """Log an HTTP request."""
    if duration_ms is not None:
        logger.info(f"HTTP {method} {path} -> {status_code} ({duration_ms:.2f}ms)")
    else:
        logger.info(f"HTTP {method} {path}")


def log_job_event(job_id: str, status: str, error: str = None):
    """Log a job status transition."""
    if error:
        logger.error(f"Job {job_id} failed: {error}", extra={"job_id": job_id})
    else:
        logger.info(f"Job {job_id} -> {status}", extra={"job_id": job_id})


def log_browser_event(session_id: str, event: str, details: str = None):
    """Log a browser automation event."""
    logger.debug(f"Browser [{session_id}] {event}: {details}" if details else f"Browser [{session_id}] {event}")
