"""
Structured logging for the realtime gateway.

Every logger returned by get_logger() accepts keyword context:

    logger.info("Order room released", order_id=42, members=3)

Context is rendered as a JSON object in production and as `key=value`
pairs on the console in development. The request correlation id is
attached to every record emitted while one is bound.

Identity ids and push tokens must go through mask_user_id() / mask_token()
before they reach a log line.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from shared.config.settings import settings

# Attribute on LogRecord that carries the keyword context
CONTEXT_ATTR = "context"

# Third-party loggers that are too chatty at INFO
_QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "redis": logging.WARNING,
}


def _record_context(record: logging.LogRecord) -> dict[str, Any]:
    return getattr(record, CONTEXT_ATTR, None) or {}


def _record_request_id(record: logging.LogRecord) -> str | None:
    request_id = getattr(record, "request_id", None)
    return request_id if request_id and request_id != "-" else None


# =============================================================================
# Formatters
# =============================================================================


class JsonFormatter(logging.Formatter):
    """One JSON object per line, for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        request_id = _record_request_id(record)
        if request_id:
            entry["request_id"] = request_id

        context = _record_context(record)
        if context:
            entry["ctx"] = context

        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """Single-line, colored output for local development."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[2m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, "")
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]
        parts = [f"{clock} {color}{record.levelname[:4]}{self.RESET} {record.name}"]

        request_id = _record_request_id(record)
        if request_id:
            parts.append(f"[{request_id[:8]}]")

        parts.append(record.getMessage())

        context = _record_context(record)
        if context:
            parts.append(" ".join(f"{key}={value}" for key, value in context.items()))

        line = " ".join(parts)
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


# =============================================================================
# Logger
# =============================================================================


class StructuredLogger(logging.Logger):
    """Logger whose level methods take keyword context instead of `extra`."""

    def _emit(self, level: int, msg: str, args: tuple, exc_info: Any, context: dict[str, Any]) -> None:
        if self.isEnabledFor(level):
            self._log(level, msg, args, exc_info=exc_info, extra={CONTEXT_ATTR: context}, stacklevel=3)

    def debug(self, msg: str, *args: Any, exc_info: Any = None, **context: Any) -> None:
        self._emit(logging.DEBUG, msg, args, exc_info, context)

    def info(self, msg: str, *args: Any, exc_info: Any = None, **context: Any) -> None:
        self._emit(logging.INFO, msg, args, exc_info, context)

    def warning(self, msg: str, *args: Any, exc_info: Any = None, **context: Any) -> None:
        self._emit(logging.WARNING, msg, args, exc_info, context)

    def error(self, msg: str, *args: Any, exc_info: Any = None, **context: Any) -> None:
        self._emit(logging.ERROR, msg, args, exc_info, context)

    def critical(self, msg: str, *args: Any, exc_info: Any = None, **context: Any) -> None:
        self._emit(logging.CRITICAL, msg, args, exc_info, context)


logging.setLoggerClass(StructuredLogger)


def _resolve_level() -> int:
    if settings.log_level:
        return logging.getLevelName(settings.log_level.upper())
    return logging.DEBUG if settings.debug else logging.INFO


def _resolve_formatter() -> logging.Formatter:
    log_format = settings.log_format.lower() or (
        "json" if settings.environment == "production" else "console"
    )
    return JsonFormatter() if log_format == "json" else ConsoleFormatter()


def setup_logging() -> None:
    """Install the gateway's handler on the root logger. Called once from the app lifespan."""
    from shared.infrastructure.correlation import CorrelationIdFilter

    level = _resolve_level()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_resolve_formatter())
    handler.addFilter(CorrelationIdFilter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)

    for name, quiet_level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)


def get_logger(name: str) -> StructuredLogger:
    """
    Usage:
        from shared.config.logging import get_logger
        logger = get_logger(__name__)
    """
    logger = logging.getLogger(name)
    if not isinstance(logger, StructuredLogger):
        # Created before setLoggerClass ran (e.g. by a library at import time)
        logger.__class__ = StructuredLogger
    return logger  # type: ignore[return-value]


# =============================================================================
# Masking
# =============================================================================


def mask_user_id(user_id: int | str | None) -> str:
    """Keep the first two characters of an identity id."""
    if user_id is None:
        return "<none>"
    value = str(user_id)
    return f"{value[:2]}***" if len(value) > 2 else f"{value[:1]}***"


def mask_token(token: str | None) -> str:
    """Keep the first eight characters of a push or session token."""
    if not token:
        return "<none>"
    return f"{token[:8]}..." if len(token) > 8 else f"{token[:2]}***"


gateway_logger = get_logger("realtime_gateway")


# =============================================================================
# Audit trail
# =============================================================================

audit_logger = get_logger("realtime_gateway.audit")


def audit_ws_connection(
    event_type: str,
    endpoint: str,
    user_id: int | str | None = None,
    origin: str | None = None,
    reason: str | None = None,
    **extra: Any,
) -> None:
    """
    Record a connection lifecycle event (ADMITTED, REJECTED, CLOSED, ...).

    The user id is masked here; callers pass it raw.
    """
    audit_logger.info(
        f"ws.{event_type.lower()}",
        endpoint=endpoint,
        user_id=mask_user_id(user_id) if user_id is not None else None,
        origin=origin,
        reason=reason,
        **extra,
    )


def audit_rate_limit_event(
    context: str,
    identifier: int | str,
    limit: int,
    window: int,
    **extra: Any,
) -> None:
    """Record a request or message rejected by a rate limiter."""
    audit_logger.warning(
        f"rate_limit.{context}",
        identifier=identifier,
        limit=limit,
        window=window,
        **extra,
    )
