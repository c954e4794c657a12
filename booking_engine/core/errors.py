"""
Booking engine error taxonomy and error logging helpers.

Every failure the engine can surface to a channel adapter is one of:

- ``NotFound``: org, service, staff or appointment missing (or in another org).
- ``ValidationError``: the request itself is wrong; never retried.
- ``Conflict``: the slot stopped being free; re-query availability.
- ``TransientStoreError``: the store kept failing after internal retries.
- ``Unauthorized`` / ``RateLimited``: raised by channel adapters, never by the engine.

``OracleUnavailable`` exists for logging only; the busy-time oracle never
fails a request.
"""
from enum import Enum
from typing import Any, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


class ErrorSeverity(Enum):
    LOW = "low"           # client errors, expected conflicts
    MEDIUM = "medium"     # timeouts, degraded collaborators
    HIGH = "high"         # store failures, auth failures
    CRITICAL = "critical"


class BookingEngineError(Exception):
    """Base class for errors surfaced to channel adapters."""

    code = "engine_error"
    status_code = 500
    retryable = False

    def __init__(self, message: str = "", *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload.update(self.details)
        return payload


class NotFound(BookingEngineError):
    code = "not_found"
    status_code = 404


class ValidationError(BookingEngineError):
    code = "validation_error"
    status_code = 422


class Conflict(BookingEngineError):
    """The requested slot is no longer free at commit time."""

    code = "conflict"
    status_code = 409

    def __init__(self, message: str = "Selected time is no longer available",
                 *, reason: str = "staff_busy", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details={"reason": reason, **(details or {})})
        self.reason = reason


class TransientStoreError(BookingEngineError):
    code = "store_unavailable"
    status_code = 503
    retryable = True


class Unauthorized(BookingEngineError):
    """Channel credentials (API key, webhook signature) missing or wrong."""

    code = "unauthorized"
    status_code = 401


class RateLimited(BookingEngineError):
    code = "rate_limited"
    status_code = 429
    retryable = True


class OracleUnavailable(Exception):
    """Busy-time oracle failed; logged and treated as 'no busy data'."""


_SEVERITY_BY_TYPE = {
    NotFound: ErrorSeverity.LOW,
    ValidationError: ErrorSeverity.LOW,
    Conflict: ErrorSeverity.LOW,
    OracleUnavailable: ErrorSeverity.MEDIUM,
    TransientStoreError: ErrorSeverity.HIGH,
    Unauthorized: ErrorSeverity.HIGH,
    RateLimited: ErrorSeverity.LOW,
}


def _determine_severity(error: Exception) -> ErrorSeverity:
    for error_type, severity in _SEVERITY_BY_TYPE.items():
        if isinstance(error, error_type):
            return severity
    if "timeout" in str(error).lower():
        return ErrorSeverity.MEDIUM
    return ErrorSeverity.HIGH


def log_error(error: Exception, context: Optional[Dict[str, Any]] = None,
              severity: Optional[ErrorSeverity] = None) -> ErrorSeverity:
    """Log an error with a severity level; returns the severity used."""
    context = context or {}
    if severity is None:
        severity = _determine_severity(error)

    log = logger.warning if severity in (ErrorSeverity.LOW, ErrorSeverity.MEDIUM) else logger.error
    log(
        "engine_error",
        error_type=type(error).__name__,
        error=str(error),
        severity=severity.value,
        **context
    )
    return severity
