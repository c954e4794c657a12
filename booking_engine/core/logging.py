"""
Structured logging for the booking engine.

Every line carries the request's correlation id plus whatever the channel
router bound (org, channel). Customer contact details are masked before
rendering so log shipping never sees full phone numbers or emails.
"""
import logging
import time
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog
from fastapi import Request

# Request correlation context
request_id: ContextVar[str] = ContextVar('request_id', default="")
request_context: ContextVar[Dict[str, Any]] = ContextVar('request_context', default={})

PII_FIELDS = ("phone", "customer_phone", "email", "customer_email")


def mask_value(value: Any) -> str:
    """Keep the last three characters: '+64215550199' -> '*********199'."""
    text = str(value)
    if len(text) <= 3:
        return "***"
    return "*" * (len(text) - 3) + text[-3:]


class PIIMaskingProcessor:
    """Mask customer contact fields and clip long free-text values."""

    def __init__(self, max_length: int = 200):
        self.max_length = max_length

    def __call__(self, logger, method_name, event_dict):
        for key in PII_FIELDS:
            if event_dict.get(key):
                event_dict[key] = mask_value(event_dict[key])

        for key in ('message', 'error', 'detail'):
            if key in event_dict:
                event_dict[key] = str(event_dict[key])[:self.max_length]

        return event_dict


class RequestContextProcessor:
    """Merge the correlation id and bound request context into each event."""

    def __call__(self, logger, method_name, event_dict):
        correlation_id = request_id.get("")
        if correlation_id:
            event_dict.setdefault('correlation_id', correlation_id)

        for key, value in request_context.get({}).items():
            event_dict.setdefault(key, value)

        return event_dict


def setup_logging(debug: bool = False, max_log_length: int = 200, level: str = "INFO"):
    """Configure structlog on top of stdlib logging; JSON outside development."""

    log_level = logging.DEBUG if debug else getattr(logging, level.upper(), logging.INFO)

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        RequestContextProcessor(),
        PIIMaskingProcessor(max_length=max_log_length),
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer(),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=log_level, format="%(message)s")
    # The google client logs every discovery fetch at INFO
    logging.getLogger("googleapiclient.discovery_cache").setLevel(logging.ERROR)


def get_logger(name: str = __name__):
    return structlog.get_logger(name)


def set_request_context(org_id: Optional[str] = None, channel: Optional[str] = None, **kwargs):
    """Bind org and channel (plus any extras) for the rest of the request."""
    context = dict(request_context.get({}))
    if org_id:
        context['org_id'] = org_id
    if channel:
        context['channel'] = channel
    context.update({k: v for k, v in kwargs.items() if v is not None})
    request_context.set(context)


def clear_context():
    request_id.set("")
    request_context.set({})


class LoggingMiddleware:
    """HTTP middleware: correlation ids, slow-request and error logging."""

    def __init__(self, log_requests: bool = False, log_responses: bool = False,
                 slow_threshold: float = 2.0):
        self.log_requests = log_requests
        self.log_responses = log_responses
        self.slow_threshold = slow_threshold
        self.logger = get_logger("booking_engine.http")

    async def __call__(self, request: Request, call_next):
        correlation_id = request.headers.get("x-request-id", "")[:36] or uuid.uuid4().hex[:12]
        request_id.set(correlation_id)
        set_request_context(
            endpoint=request.url.path,
            method=request.method,
            idempotency_key=request.headers.get("idempotency-key"),
        )
        request.state.correlation_id = correlation_id
        started = time.monotonic()

        if self.log_requests:
            self.logger.info("request_start", query_params=dict(request.query_params))

        try:
            response = await call_next(request)
        except Exception as e:
            self.logger.error(
                "request_error",
                error=str(e),
                error_type=type(e).__name__,
                duration=round(time.monotonic() - started, 3),
            )
            raise
        else:
            duration = time.monotonic() - started
            slow = duration > self.slow_threshold
            if self.log_responses or slow or response.status_code >= 400:
                self.logger.info(
                    "request_complete",
                    status_code=response.status_code,
                    duration=round(duration, 3),
                    slow=slow,
                )
            response.headers["X-Request-ID"] = correlation_id
            return response
        finally:
            clear_context()
