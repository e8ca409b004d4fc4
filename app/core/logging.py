"""Structured logging configuration using structlog."""

import logging
import sys
from contextvars import ContextVar
from typing import Any, cast

import structlog
from structlog.types import EventDict, Processor

# Context variables for request- and run-scoped data
_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)
_tenant_id: ContextVar[str | None] = ContextVar("tenant_id", default=None)
_queue_id: ContextVar[str | None] = ContextVar("queue_id", default=None)

SENSITIVE_KEYS = {
    "password",
    "token",
    "secret",
    "authorization",
    "api_key",
    "apikey",
    "access_token",
    "refresh_token",
    "client_secret",
    "private_key",
    "jwt",
    "bearer",
}


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add application context to log events."""
    event_dict["app"] = "tenant-deletion"
    return event_dict


def censor_sensitive_data(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Censor sensitive data in log events.

    Redacts values whose key looks like a credential (passwords, tokens,
    secrets). Nested dictionaries, including those inside lists, are walked
    recursively.

    Args:
        logger: Logger instance
        method_name: Method name being called
        event_dict: Event dictionary

    Returns:
        Updated event dictionary with censored data
    """

    def _is_sensitive(key: str) -> bool:
        return any(sensitive in key.lower() for sensitive in SENSITIVE_KEYS)

    def _censor_dict(data: dict[str, Any]) -> dict[str, Any]:
        censored: dict[str, Any] = {}
        for k, v in data.items():
            if _is_sensitive(k):
                censored[k] = "***REDACTED***"
            elif isinstance(v, dict):
                censored[k] = _censor_dict(v)
            elif isinstance(v, list):
                censored[k] = [_censor_dict(item) if isinstance(item, dict) else item for item in v]
            else:
                censored[k] = v
        return censored

    event_dict.update(_censor_dict(event_dict))
    return event_dict


def configure_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    """
    Configure structured logging with structlog.

    Called once per process: by the API at import time and by each worker
    entry point before it starts polling.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: Whether to output logs in JSON format (default: True)
    """
    numeric_level = getattr(logging, str(log_level).upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=numeric_level,
    )

    processors: list[Processor] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_app_context,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        censor_sensitive_data,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_logs:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def bind_request_context(
    request_id: str | None = None,
    tenant_id: str | None = None,
    queue_id: str | None = None,
) -> None:
    """
    Bind request or run context to the current context variables.

    Middleware binds request_id/tenant_id; the orchestrator binds
    tenant_id/queue_id for the duration of a deletion run.
    """
    if request_id:
        _request_id.set(request_id)
    if tenant_id:
        _tenant_id.set(tenant_id)
    if queue_id:
        _queue_id.set(queue_id)


def clear_request_context() -> None:
    """Clear request context variables."""
    _request_id.set(None)
    _tenant_id.set(None)
    _queue_id.set(None)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger
    """
    return cast(structlog.stdlib.BoundLogger, structlog.get_logger(name))


def get_context_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get logger with the current request/run context bound.

    Example:
        ```python
        from app.core.logging import get_context_logger

        logger = get_context_logger(__name__)
        logger.info("deletion_step_completed")  # includes request_id, tenant_id, queue_id
        ```
    """
    logger = get_logger(name)

    context_vars = {
        key: value
        for key, value in (
            ("request_id", _request_id.get()),
            ("tenant_id", _tenant_id.get()),
            ("queue_id", _queue_id.get()),
        )
        if value is not None
    }

    if context_vars:
        return cast(structlog.stdlib.BoundLogger, logger.bind(**context_vars))

    return logger
