"""
Structured logging for the service.

structlog renders both its own events and plain ``logging.getLogger`` records
(the services use the stdlib API), so every line carries the request's
correlation id and goes through the same redaction and truncation.
"""
import logging
import time
import uuid

import structlog
from fastapi import Request

# Field names whose values never reach the log output
SECRET_FIELDS = frozenset({"authorization", "api_key", "password", "token", "remote_api_key"})

_HANDLER_NAME = "meraki"


class RedactingProcessor:
    """Mask credential-looking fields, e.g. a bearer header passed as context."""

    def __call__(self, logger, method_name, event_dict):
        for key in event_dict:
            if key.lower() in SECRET_FIELDS and event_dict[key]:
                event_dict[key] = "***"
        return event_dict


class TruncatingProcessor:

    def __init__(self, max_length: int = 200):
        self.max_length = max_length

    def __call__(self, logger, method_name, event_dict):
        for key in ("event", "error"):
            value = event_dict.get(key)
            if isinstance(value, str) and len(value) > self.max_length:
                event_dict[key] = value[:self.max_length] + "…"
        return event_dict


def setup_logging(debug: bool = False, max_log_length: int = 200, level: str = "INFO"):
    """Route structlog and stdlib logging through one renderer on the root logger."""
    shared = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        RedactingProcessor(),
        TruncatingProcessor(max_length=max_log_length),
    ]
    renderer = structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    ))

    root = logging.getLogger()
    for existing in [h for h in root.handlers if h.get_name() == _HANDLER_NAME]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug else getattr(logging, level.upper(), logging.INFO))

    # Uvicorn's access log duplicates LoggingMiddleware
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str = __name__):
    return structlog.get_logger(name)


class LoggingMiddleware:
    """Bind a short correlation id per request and log slow or failed ones."""

    def __init__(self, log_requests: bool = False, log_responses: bool = False,
                 slow_threshold: float = 2.0):
        self.log_requests = log_requests
        self.log_responses = log_responses
        self.slow_threshold = slow_threshold
        self.logger = get_logger("meraki.http")

    async def __call__(self, request: Request, call_next):
        correlation_id = uuid.uuid4().hex[:8]
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            correlation_id=correlation_id,
            method=request.method,
            path=request.url.path,
        )
        request.state.correlation_id = correlation_id
        started = time.perf_counter()

        if self.log_requests:
            self.logger.info("request_start", query=str(request.query_params) or None)

        try:
            response = await call_next(request)

            duration = time.perf_counter() - started
            slow = duration > self.slow_threshold
            if self.log_responses or slow or response.status_code >= 400:
                log = self.logger.warning if slow or response.status_code >= 500 else self.logger.info
                log("request_complete", status_code=response.status_code, duration=round(duration, 3), slow=slow)

            response.headers["X-Correlation-ID"] = correlation_id
            return response
        except Exception as e:
            self.logger.error("request_error", error=str(e), error_type=type(e).__name__,
                              duration=round(time.perf_counter() - started, 3))
            raise
        finally:
            structlog.contextvars.clear_contextvars()
