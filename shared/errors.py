"""
Error types for the rollout services.

Every error carries a stable ``code`` and the HTTP status the service
answers with when the error escapes a route. Errors raised inside the
execution engine never escape: eligibility errors become ineligible
verdicts and publication errors stay behind the publisher boundary.
"""

from typing import Dict, Any, Optional

from opentelemetry import trace
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Error body returned by the HTTP surface."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


def current_trace_id() -> Optional[str]:
    span = trace.get_current_span()
    if span and span.is_recording():
        trace_id = span.get_span_context().trace_id
        if trace_id != 0:
            return f"{trace_id:032x}"
    return None


class RolloutException(Exception):
    """Base exception for rollout services."""

    http_status = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(
            trace_id=current_trace_id(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class ConfigurationError(RolloutException):
    """Rejected configuration write; the stored value is left unchanged."""

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class EligibilityEvaluationError(RolloutException):
    """Malformed eligibility input. Always converted to an ineligible verdict."""

    def __init__(self, message: str = "Eligibility evaluation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("ELIGIBILITY_EVALUATION_ERROR", message, details)


class ExternalServiceError(RolloutException):
    """A collaborator answered badly or not at all."""

    http_status = 502

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        self.service = service
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)


class NotFoundError(RolloutException):
    """Unknown resource, such as an unregistered experiment."""

    http_status = 404

    def __init__(self, message: str = "Resource not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)
