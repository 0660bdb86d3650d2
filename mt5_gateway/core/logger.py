"""
Logging Configuration
=====================
Centralized logging setup with file rotation and credential masking.
"""

import logging
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

# Global logger cache
_loggers = {}

# Query/body parameters whose values must never reach a log sink
_SECRET_PARAM = re.compile(
    r"(?P<key>\b(?:password|id|token|apiKey|api_key|accessToken)\b['\"]?\s*[=:]\s*['\"]?)"
    r"(?P<value>[^&\s'\",}]+)",
    re.IGNORECASE,
)


def redact(text: str) -> str:
    """Mask secret parameter values in a log line."""
    return _SECRET_PARAM.sub(lambda m: f"{m.group('key')}***", text)


class CredentialFilter(logging.Filter):
    """
    Masks passwords and session tokens in log records.

    httpx logs every request URL at INFO, and bridge URLs carry the
    password (ConnectEx) or the session token (every other call).
    """

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = redact(message)
        if masked != message:
            record.msg = masked
            record.args = ()
        return True


def setup_logger(
    name: str = "mt5_gateway",
    level: str = "INFO",
    log_file: Optional[str] = None,
    max_size_mb: int = 10,
    backup_count: int = 3,
    console: bool = True,
) -> logging.Logger:
    """
    Set up a logger with file and console handlers.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Path to log file (optional)
        max_size_mb: Max log file size before rotation
        backup_count: Number of backup files to keep
        console: Whether to log to console

    Returns:
        Configured logger
    """
    # Check cache
    if name in _loggers:
        return _loggers[name]

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper()))
    logger.handlers = []  # Clear existing handlers

    # Format
    formatter = logging.Formatter(
        '%(asctime)s | %(levelname)s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    secrets = CredentialFilter()

    # Console handler
    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(formatter)
        console_handler.addFilter(secrets)
        logger.addHandler(console_handler)

    # File handler
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(secrets)
        logger.addHandler(file_handler)

    # Prevent propagation to root logger
    logger.propagate = False

    # httpx request lines go through the same masked handlers
    httpx_logger = logging.getLogger("httpx")
    httpx_logger.handlers = list(logger.handlers)
    httpx_logger.propagate = False
    httpx_logger.setLevel(logging.WARNING if logger.level > logging.DEBUG else logging.INFO)

    # Cache
    _loggers[name] = logger

    return logger


def get_logger(name: str = "mt5_gateway") -> logging.Logger:
    """Get a configured logger, setting it up with defaults if needed."""
    if name in _loggers:
        return _loggers[name]
    return setup_logger(name)
