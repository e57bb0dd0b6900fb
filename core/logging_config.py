"""
Structured logging for the relay quota service.

Every event is a JSON line carrying the service name plus any context bound
for the current request (request id, remote address), so admission and
accounting decisions can be traced across the API and the reaper.
"""

import logging
import sys
import time
from functools import wraps
from typing import Any, Dict, Optional
import structlog
from config.app_config import get_config

SERVICE_NAME = "relay-quota"

# Engine calls slower than this are logged at warning level
SLOW_OPERATION_MS = 250.0

def _add_service_name(logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict

def setup_structured_logging(log_level: Optional[str] = None) -> None:
    """Route structlog through stdlib logging and render JSON to stdout."""
    level = log_level or get_config().monitoring.log_level

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper())
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            _add_service_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)

def bind_request_context(**values: Any) -> None:
    """Attach values to every event logged by the current thread's request."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**values)

def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()

class LoggerMixin:
    """Gives a class a ``logger`` named after it."""

    @property
    def logger(self) -> structlog.BoundLogger:
        return get_logger(self.__class__.__name__)

def log_performance(func):
    """Time an engine operation; slow calls and failures are reported."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        logger = get_logger(func.__module__)
        start_time = time.perf_counter()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            logger.debug(
                "Operation failed",
                operation=func.__qualname__,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 3),
                error_type=type(e).__name__
            )
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000
        log = logger.warning if duration_ms > SLOW_OPERATION_MS else logger.debug
        log("Operation timing", operation=func.__qualname__, duration_ms=round(duration_ms, 3))
        return result
    return wrapper
