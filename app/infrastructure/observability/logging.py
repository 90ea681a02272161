"""
Structured logging for the credit analysis API.

Every line is a JSON object carrying the request_id bound by
RequestContextMiddleware; development can switch to the console renderer.
"""

import logging
import sys

import structlog
from structlog.stdlib import LoggerFactory

# Third-party loggers that are chatty at INFO, or warn on every malformed PDF
_QUIET_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "openai": logging.WARNING,
    "uvicorn.access": logging.WARNING,
    "psycopg.pool": logging.WARNING,
    "pypdf": logging.ERROR,
}


def setup_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    """
    Configure structlog on top of the standard library logging module.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_logs: JSON lines when True, coloured key=value output otherwise
    """
    renderer = (
        structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    for name, level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_request_context(**values) -> None:
    """Replace the per-request log context (request_id, user_id, ...)."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**values)


def log_health_check(service: str, healthy: bool, latency_ms: float, error: str | None = None):
    """One log line per dependency check, shared by /health, /readyz and diagnostics."""
    logger = get_logger("health")

    fields = {"service": service, "healthy": healthy, "latency_ms": latency_ms}
    if error:
        fields["error"] = error

    if healthy:
        logger.info("Health check passed", **fields)
    else:
        logger.error("Health check failed", **fields)


def log_request(method: str, path: str, status_code: int, duration_ms: float):
    logger = get_logger("http")

    fields = {
        "method": method,
        "path": path,
        "status_code": status_code,
        "duration_ms": round(duration_ms, 2),
    }

    if status_code >= 500:
        logger.error("HTTP request failed", **fields)
    elif status_code >= 400:
        logger.warning("HTTP request rejected", **fields)
    else:
        logger.info("HTTP request completed", **fields)
