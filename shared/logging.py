"""
Structured logging for the rollout services.

Log events are JSON lines produced by structlog on top of stdlib logging.
Request, experiment and subject identifiers live in context variables so
that every event emitted while a comparison runs carries them without
being passed down explicitly.
"""

import sys
import logging
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator, Optional

import structlog
from opentelemetry import trace

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
experiment_var: ContextVar[Optional[str]] = ContextVar("experiment", default=None)
subject_id_var: ContextVar[Optional[int]] = ContextVar("subject_id", default=None)

_CORRELATION_VARS = {
    "request_id": request_id_var,
    "experiment": experiment_var,
    "subject_id": subject_id_var,
}


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Configure structlog and the stdlib root logger for a service."""
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            _service_processor(service_name),
            add_trace_context,
            add_correlation_context,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)


def _service_processor(service_name: str):
    def add_service_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict["service"] = service_name
        # "rollout.eligibility.criteria" -> "eligibility.criteria"
        logger_name = event_dict.get("logger", "")
        if logger_name.startswith(f"{service_name}."):
            event_dict["component"] = logger_name[len(service_name) + 1:]
        return event_dict

    return add_service_context


def add_trace_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Attach the active OpenTelemetry trace and span ids, if any."""
    span = trace.get_current_span()
    if span and span.is_recording():
        span_context = span.get_span_context()
        if span_context.trace_id != 0:
            event_dict["trace_id"] = f"{span_context.trace_id:032x}"
        if span_context.span_id != 0:
            event_dict["span_id"] = f"{span_context.span_id:016x}"
    return event_dict


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Attach request, experiment and subject ids; explicit event keys win."""
    for key, var in _CORRELATION_VARS.items():
        value = var.get()
        if value is not None:
            event_dict.setdefault(key, value)
    return event_dict


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind a request id, generating one when the caller sent none."""
    request_id = request_id or str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


@contextmanager
def experiment_context(experiment: Optional[str] = None, subject_id: Optional[int] = None) -> Iterator[None]:
    """Bind experiment context for a block and restore the previous values after it."""
    tokens = []
    if experiment:
        tokens.append((experiment_var, experiment_var.set(experiment)))
    if subject_id is not None:
        tokens.append((subject_id_var, subject_id_var.set(subject_id)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def clear_context():
    """Drop every correlation id bound in this context."""
    for var in _CORRELATION_VARS.values():
        var.set(None)


def get_logger(name: str) -> structlog.BoundLogger:
    """Return a structlog logger named with a dotted component path."""
    return structlog.get_logger(name)
