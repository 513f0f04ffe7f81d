"""
Structured Logging Configuration Module

JSON-formatted structured logging for engine warnings and ledger operations.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Optional

ROOT_LOGGER = "peer_lending"

# LogRecord attributes copied into the JSON payload when present
_STRUCTURED_FIELDS = ("correlation_id", "user_id", "action", "resource", "loan_id", "extra")


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in _STRUCTURED_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_entry[name] = value

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", logger_name: str = ROOT_LOGGER,
                  fmt: str = "json", log_file: Optional[str] = None) -> logging.Logger:
    """
    Setup logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logger_name: Name of the logger
        fmt: "json" for structured output, anything else for plain text
        log_file: Optional file path; stderr when omitted

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.FileHandler(log_file) if log_file else logging.StreamHandler()
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False

    return logger


def setup_logging_from_config() -> logging.Logger:
    """Configure the package logger from PeerLendingConfig"""
    from .config import get_config
    config = get_config()
    return setup_logging(config.log_level, ROOT_LOGGER, config.log_format, config.log_file)


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """Get logger instance"""
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               user_id: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, correlation_id: Optional[str] = None,
               loan_id: Optional[str] = None, extra: Optional[dict] = None):
    """
    Log an action with structured data.

    Args:
        logger: Logger instance
        level: Log level (info, warning, error, etc.)
        message: Log message
        user_id: ID of the payer/investor performing the action
        action: Action being performed
        resource: Resource being acted upon
        correlation_id: Correlation ID for request tracing
        loan_id: Loan the message refers to
        extra: Additional structured data
    """
    levelno = getattr(logging, level.upper())
    if not logger.isEnabledFor(levelno):
        return

    record = logger.makeRecord(logger.name, levelno, __name__, 0, message, (), None)

    if user_id:
        record.user_id = user_id
    if action:
        record.action = action
    if resource:
        record.resource = resource
    if correlation_id:
        record.correlation_id = correlation_id
    if loan_id:
        record.loan_id = loan_id
    if extra:
        record.extra = extra

    logger.handle(record)
