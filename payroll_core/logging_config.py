"""
Structured Logging Configuration Module

JSON log lines for loan operations. Each line carries the request correlation
id when one is bound, so every write made while serving one API call can be
traced together.
"""

import contextvars
import json
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .config import PayrollConfig


# Correlation id of the request being served
_correlation_id = contextvars.ContextVar('correlation_id', default=None)

STRUCTURED_FIELDS = ("correlation_id", "user_id", "action", "resource", "extra")


def get_correlation_id() -> Optional[str]:
    return _correlation_id.get()


@contextmanager
def correlation_context(correlation_id: Optional[str] = None):
    """Bind a correlation id for the duration of the block"""
    correlation_id = correlation_id or uuid.uuid4().hex
    token = _correlation_id.set(correlation_id)
    try:
        yield correlation_id
    finally:
        _correlation_id.reset(token)


class JSONFormatter(logging.Formatter):
    """One JSON object per record; unset fields are omitted"""

    def format(self, record):
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in STRUCTURED_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value

        if "correlation_id" not in entry and get_correlation_id():
            entry["correlation_id"] = get_correlation_id()
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def setup_logging(level: str = "INFO", logger_name: str = "payroll_core",
                  log_file: Optional[str] = None) -> logging.Logger:
    """
    Attach a single JSON handler to the named logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logger_name: Name of the logger; child loggers inherit the handler
        log_file: Append to this file instead of stderr

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name)

    # Calling twice must not duplicate output
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    handler = logging.FileHandler(log_file, encoding="utf-8") if log_file \
        else logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    logger.addHandler(handler)
    logger.setLevel(level.upper())
    logger.propagate = False

    return logger


def configure_logging(config: "PayrollConfig") -> logging.Logger:
    """Set up the package logger from PAYROLL_LOG_* settings"""
    return setup_logging(config.log_level, log_file=config.log_file)


def get_logger(name: str = "payroll_core") -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               user_id: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, correlation_id: Optional[str] = None,
               extra: Optional[dict] = None):
    """
    Emit a record describing something an actor did.

    Args:
        logger: Logger to emit on
        level: Level name (info, warning, error, ...)
        message: Human-readable summary
        user_id: Acting user
        action: Operation name, e.g. create_loan
        resource: What was acted on, e.g. loan:<id>
        correlation_id: Overrides the bound request correlation id
        extra: Additional structured data
    """
    levelno = logging.getLevelName(level.upper())
    if not logger.isEnabledFor(levelno):
        return

    fields = {
        "user_id": user_id,
        "action": action,
        "resource": resource,
        "correlation_id": correlation_id,
        "extra": extra,
    }
    logger.log(levelno, message, extra={k: v for k, v in fields.items() if v is not None})
