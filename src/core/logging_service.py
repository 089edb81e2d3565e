"""
Structured logging service with correlation ID tracking.
Provides JSON-formatted logs for production observability.
"""

import json
import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator
from functools import lru_cache


# Context variable for request correlation ID
correlation_id_ctx: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> str | None:
    """Get the current correlation ID from context."""
    return correlation_id_ctx.get()


def set_correlation_id(correlation_id: str | None = None) -> str:
    """
    Set correlation ID for current context.
    Generates a new ID if none provided.
    """
    cid = correlation_id or str(uuid.uuid4())[:8]
    correlation_id_ctx.set(cid)
    return cid


# Trade the current operation acts on; stamped on every record logged meanwhile
trade_id_ctx: ContextVar[str | None] = ContextVar("trade_id", default=None)


@contextmanager
def trade_log_context(trade_id: Any) -> Iterator[None]:
    """
    Tags every log line emitted inside the block with trade_id.

    Usage:
        with trade_log_context(trade_id):
            await engine_step()
    """
    token = trade_id_ctx.set(str(trade_id))
    try:
        yield
    finally:
        trade_id_ctx.reset(token)


def trade_fields(trade: Any) -> dict[str, Any]:
    """Standard log fields for a trade revision."""
    return {
        "trade_id": str(trade.id),
        "trade_number": trade.trade_number,
        "status": trade.status,
        "revision": trade.revision,
    }


class JSONFormatter(logging.Formatter):
    """
    Log formatter that outputs one JSON object per record.

    Includes standard fields:
    - timestamp: ISO format timestamp
    - level: Log level name
    - logger: Logger name
    - message: Log message
    - correlation_id: Request correlation ID
    - source: module/function/line
    - extra: Any additional context
    """

    RESERVED_ATTRS = {
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "pathname", "process", "processName", "relativeCreated",
        "stack_info", "exc_info", "exc_text", "thread", "threadName",
        "taskName",
    }

    def __init__(self, include_source: bool = True):
        super().__init__()
        self.include_source = include_source

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        cid = get_correlation_id()
        if cid:
            log_data["correlation_id"] = cid

        if self.include_source:
            log_data["source"] = {
                "module": record.module,
                "function": record.funcName,
                "line": record.lineno,
            }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra = {}
        for key, value in record.__dict__.items():
            if key not in self.RESERVED_ATTRS and not key.startswith("_"):
                try:
                    json.dumps(value)
                    extra[key] = value
                except (TypeError, ValueError):
                    extra[key] = str(value)

        if extra:
            log_data["extra"] = extra

        return json.dumps(log_data)


class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter that folds keyword arguments into the record's extra,
    together with the correlation id and the trade bound by
    trade_log_context. Explicit keywords win over the bound trade.

    Usage:
        logger = get_logger(__name__)
        logger.info("Lock refused", listings=conflicts)
    """

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        extra = kwargs.get("extra", {})

        cid = get_correlation_id()
        if cid:
            extra["correlation_id"] = cid

        trade_id = trade_id_ctx.get()
        if trade_id:
            extra["trade_id"] = trade_id

        for key, value in list(kwargs.items()):
            if key not in ("exc_info", "stack_info", "stacklevel", "extra"):
                extra[key] = value
                del kwargs[key]

        kwargs["extra"] = extra
        return msg, kwargs


@lru_cache(maxsize=128)
def get_logger(name: str) -> ContextLogger:
    """
    Get a context-aware logger by name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        ContextLogger instance
    """
    logger = logging.getLogger(name)
    return ContextLogger(logger, {})


def setup_structured_logging(
    level: str = "INFO",
    json_output: bool = True,
    include_source: bool = True,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        level: Minimum log level
        json_output: Use JSON formatting (True for production)
        include_source: Include source file/line info
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))

    if json_output:
        handler.setFormatter(JSONFormatter(include_source=include_source))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        ))

    root_logger.addHandler(handler)

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


class RequestLoggingMiddleware:
    """
    ASGI middleware for request/response logging with correlation IDs.

    - Assigns correlation ID to each request
    - Logs request start/end with timing
    - Propagates correlation ID in response headers
    """

    def __init__(self, app):
        self.app = app
        self.logger = get_logger("api.requests")

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            return await self.app(scope, receive, send)

        headers = dict(scope.get("headers", []))
        correlation_id = headers.get(b"x-correlation-id", b"").decode() or None
        correlation_id = set_correlation_id(correlation_id)

        method = scope.get("method", "UNKNOWN")
        path = scope.get("path", "/")

        start_time = datetime.now(timezone.utc)
        self.logger.info(
            f"Request started: {method} {path}",
            method=method,
            path=path,
        )

        response_status = 0

        async def send_wrapper(message):
            nonlocal response_status
            if message["type"] == "http.response.start":
                response_status = message["status"]
                headers = list(message.get("headers", []))
                headers.append((b"x-correlation-id", correlation_id.encode()))
                message["headers"] = headers
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as e:
            self.logger.error(
                f"Request failed: {method} {path}",
                method=method,
                path=path,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            raise
        finally:
            duration_ms = (datetime.now(timezone.utc) - start_time).total_seconds() * 1000
            log_level = logging.WARNING if response_status >= 400 else logging.INFO

            self.logger.log(
                log_level,
                f"Request completed: {method} {path} -> {response_status}",
                method=method,
                path=path,
                status=response_status,
                duration_ms=round(duration_ms, 2),
            )


def log_trade_event(
    event_type: str,
    trade: Any,
    **kwargs: Any
) -> None:
    """
    Log a committed trade transition with the trade's standard fields.

    Args:
        event_type: Type of event (trade_proposed, trade_shipped, etc.)
        trade: The trade revision after the transition
        **kwargs: Additional event-specific data
    """
    logger = get_logger("trading.events")
    logger.info(
        f"Trade event: {event_type} {trade.trade_number}",
        event_type=event_type,
        **trade_fields(trade),
        **kwargs
    )


def log_system_event(
    event_type: str,
    component: str,
    **kwargs: Any
) -> None:
    """
    Log a system-level event.

    Args:
        event_type: Type of event (startup, shutdown, sweep, etc.)
        component: System component name
        **kwargs: Additional event data
    """
    logger = get_logger("system.events")
    logger.info(
        f"System event: {event_type}",
        event_type=event_type,
        component=component,
        **kwargs
    )
