"""
Logging for the identity service.

Every record carries the request ID of the request that produced it, and
the authenticated user's ID once the bearer token has been resolved. In
production records are JSON lines; in development they are one-line text.

Structured fields go through extra=:
    logger.info("User logged in", extra={"user_id": str(user.id)})

Passwords, raw tokens, token hashes and credentials must never reach the
logs. Callers should not pass them, and the formatter redacts any extra
field whose name marks it as one of those.
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

REDACTED = "[redacted]"

# Set by RequestIdMiddleware for the lifetime of a request
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
# Set once the request's access token has been resolved to an active account
user_id_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)

_RECORD_ATTRIBUTES = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "request_id"}

_SENSITIVE_NAMES = frozenset({"password", "token", "authorization", "cookie", "secret", "admin_code"})
_SENSITIVE_SUFFIXES = ("_password", "_token", "_hash", "_secret")


def is_sensitive_field(name: str) -> bool:
    """True for field names that hold credentials, tokens or their hashes."""
    lowered = name.lower()
    return lowered in _SENSITIVE_NAMES or lowered.endswith(_SENSITIVE_SUFFIXES)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


class RequestContextFilter(logging.Filter):
    """Stamp records with the current request ID and, when known, the user ID."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id() or "-"  # type: ignore[attr-defined]
        user_id = user_id_var.get()
        if user_id and getattr(record, "user_id", None) is None:
            record.user_id = user_id  # type: ignore[attr-defined]
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record, with extra fields inlined and secrets redacted."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        req_id = getattr(record, "request_id", None)
        if req_id and req_id != "-":
            log_obj["request_id"] = req_id

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRIBUTES or value is None:
                continue
            log_obj[key] = REDACTED if is_sensitive_field(key) else _jsonable(value)

        return json.dumps(log_obj)


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


def configure_logging(
    *,
    log_level: str = "INFO",
    environment: str = "development",
    debug: bool = False,
) -> None:
    """
    Configure application-wide logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        environment: 'development' or 'production'
        debug: If True, use DEBUG level regardless of log_level
    """
    level = logging.DEBUG if debug else getattr(logging, log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    # Replace handlers so a reload does not duplicate output
    for h in root.handlers[:]:
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.addFilter(RequestContextFilter())

    if environment == "production":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s %(levelname)-5s [%(name)s] req=%(request_id)s %(message)s",
                datefmt="%H:%M:%S",
            )
        )

    root.addHandler(handler)

    # Access logs duplicate RequestIdMiddleware; SQL echo is opt-in via DEBUG
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
