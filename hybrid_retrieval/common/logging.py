"""Structured logging configuration for the retrieval engine.

Logging is standardized on ``structlog``. Output is either JSON (for
machines) or a pretty console format (for humans), and the service name is
bound into the context so aggregated logs stay attributable.

Records and query vectors travel through most of the engine, so a processor
replaces embedding payloads in log events with a short ``<vector dim=N>``
marker; a 384-float list never lands in a log line.

Typical usage
- Call ``configure_logging(service_name, log_level, log_format)`` at startup
- Acquire loggers via ``structlog.get_logger(name)`` or ``get_logger(name)``
"""

import logging
import sys
from numbers import Real
from typing import Any, Mapping, MutableMapping

import numpy as np
import structlog
from structlog.stdlib import LoggerFactory, add_logger_name

# Numeric sequences at least this long are logged as a vector marker
VECTOR_LOG_MIN_LENGTH = 16


def _is_vector(value: Any) -> bool:
    if isinstance(value, np.ndarray):
        return value.ndim == 1 and value.size >= VECTOR_LOG_MIN_LENGTH
    if isinstance(value, (list, tuple)) and len(value) >= VECTOR_LOG_MIN_LENGTH:
        return all(isinstance(v, Real) and not isinstance(v, bool) for v in value)
    return False


def _summarize(value: Any) -> Any:
    if _is_vector(value):
        return f"<vector dim={len(value)}>"
    if isinstance(value, Mapping):
        return {k: _summarize(v) for k, v in value.items()}
    return value


def summarize_vectors(
    logger: Any,
    method_name: str,
    event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor replacing embedding payloads with their dimension.

    Applies to top-level values and to values nested in mappings (records
    logged whole carry their ``_vector``).
    """
    for key, value in list(event_dict.items()):
        event_dict[key] = _summarize(value)
    return event_dict


def configure_logging(
    service_name: str,
    log_level: str = "INFO",
    log_format: str = "json",
    **kwargs: Any
) -> None:
    """Configure structured logging for a process.

    Parameters
    - service_name: Logical service identifier bound to each log line
    - log_level: ``DEBUG``, ``INFO``, ``WARNING``, ``ERROR`` (case-insensitive)
    - log_format: ``json`` for production; ``console`` for local dev
    - kwargs: Extra context bound next to the service name
    """

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_logger_name,
        summarize_vectors,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=service_name, **kwargs)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def log_performance(operation: str, duration_ms: float, **kwargs: Any) -> None:
    """Log timing for a unit of work.

    Parameters
    - operation: A stable identifier for the measured unit of work
    - duration_ms: Elapsed time in milliseconds
    - kwargs: Additional dimensions (e.g., mode, result count)
    """
    get_logger("performance").info(
        f"Operation {operation} completed",
        operation=operation,
        duration_ms=duration_ms,
        **kwargs
    )
