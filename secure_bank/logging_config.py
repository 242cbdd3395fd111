"""
Structured Logging

One JSON object per line. Records emitted while a request is being served
for an authenticated user carry that user's id even when the call site does
not pass one, so storage and service records can be joined to the caller.
"""

import contextvars
import json
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional


STRUCTURED_FIELDS = ("user_id", "action", "resource", "extra")

# Authenticated caller of the request being served
_request_user = contextvars.ContextVar('request_user', default=None)


def get_request_user() -> Optional[int]:
    return _request_user.get()


@contextmanager
def request_user_context(user_id: int):
    """Tag every record logged inside the block with user_id"""
    token = _request_user.set(user_id)
    try:
        yield
    finally:
        _request_user.reset(token)


class JSONFormatter(logging.Formatter):
    """Render a record and its structured fields as JSON"""

    def format(self, record):
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in STRUCTURED_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = value

        if "user_id" not in entry and get_request_user() is not None:
            entry["user_id"] = get_request_user()

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def setup_logging(level: str = "INFO", logger_name: str = "secure_bank") -> logging.Logger:
    """
    Attach a single JSON handler to the application logger.

    Calling it again (one app per test, for instance) replaces the handler
    instead of stacking a second one.
    """
    logger = logging.getLogger(logger_name)
    logger.handlers.clear()

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    logger.addHandler(handler)
    logger.setLevel(level.upper())
    logger.propagate = False

    return logger


def get_logger(name: str = "secure_bank") -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               user_id: Optional[int] = None, action: Optional[str] = None,
               resource: Optional[str] = None, extra: Optional[dict] = None):
    """
    Log an authentication or ledger access event.

    Args:
        logger: Logger instance
        level: Level name (info, warning, error, ...)
        message: Human-readable summary
        user_id: User the event concerns; defaults to the request's caller
        action: Event name, e.g. "signin_failed"
        resource: What was accessed, e.g. "account:12"
        extra: Additional structured data
    """
    levelno = logging.getLevelName(level.upper())
    if not logger.isEnabledFor(levelno):
        return

    fields = {"user_id": user_id, "action": action, "resource": resource, "extra": extra}
    logger.log(levelno, message, extra={k: v for k, v in fields.items() if v is not None})
