"""
Structured logging setup for the email activity tracker.
Provides JSON-formatted logs with consistent fields for production monitoring.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import LoggerFactory


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging with JSON output for production.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            # tracker_id and friends bound via bind_tracker_context
            structlog.contextvars.merge_contextvars,
            structlog.processors.JSONRenderer(),
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

    # Suppress noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def bind_tracker_context(**values: Any) -> None:
    """Bind fields that every log line emitted in this task should carry."""
    structlog.contextvars.bind_contextvars(**values)


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def log_poll_result(
    tracker_id: str, status: str, record_count: int, duration_ms: float, error: str = None
):
    """Log history poll outcomes with consistent fields."""
    logger = get_logger("email_tracking.poll")

    log_data = {
        "tracker_id": tracker_id,
        "poll_status": status,
        "record_count": record_count,
        "duration_ms": duration_ms,
    }

    if error:
        log_data["error"] = error

    if status == "ok":
        logger.info("History poll completed", **log_data)
    else:
        logger.warning("History poll did not complete", **log_data)
