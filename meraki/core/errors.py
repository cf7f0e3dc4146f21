"""
Domain exceptions and error aggregation for noisy, swallowed failures.

Remote sync failures are expected (offline salons, flaky Wi-Fi) and are never
surfaced to callers, so they are funnelled through ``log_error`` which
deduplicates repeats instead of logging every occurrence.
"""
import hashlib
import time
from enum import Enum
from typing import Any, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


class MerakiError(Exception):
    """Base class for service errors."""


class StorageError(MerakiError):
    """The local durable store could not be read or written."""


class RemoteError(MerakiError):
    """The remote collaborator failed, timed out or answered with garbage."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404

    @property
    def is_retryable(self) -> bool:
        # Transport errors carry no status; 5xx and 429 are worth another try
        return self.status_code is None or self.status_code >= 500 or self.status_code == 429


class InvalidTransitionError(MerakiError):
    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot move appointment from {current} to {requested}")
        self.current = current
        self.requested = requested


class ErrorSeverity(Enum):
    LOW = "low"           # expected failures: offline remote, 404s
    MEDIUM = "medium"     # timeouts, recoverable errors
    HIGH = "high"         # auth failures, storage failures
    CRITICAL = "critical"


class ErrorPattern:
    """Track error patterns to reduce duplicate logging."""

    def __init__(self, error_type: str, message: str, context: Dict[str, Any]):
        self.error_type = error_type
        self.message = message[:100]
        self.context = {k: v for k, v in context.items() if k in ['endpoint', 'operation', 'component']}
        self.fingerprint = self._generate_fingerprint()
        self.first_seen = time.time()
        self.last_seen = self.first_seen
        self.count = 1

    def _generate_fingerprint(self) -> str:
        content = f"{self.error_type}:{self.message}:{self.context.get('operation', '')}"
        return hashlib.md5(content.encode(), usedforsecurity=False).hexdigest()[:8]

    def update(self):
        self.last_seen = time.time()
        self.count += 1


class ErrorAggregator:
    """Aggregate and deduplicate errors."""

    def __init__(self, log_threshold: int = 10, time_window: int = 300):
        self.log_threshold = log_threshold  # log every Nth repeat
        self.time_window = time_window
        self.patterns: Dict[str, ErrorPattern] = {}
        self.severity_override = {
            "StorageError": ErrorSeverity.HIGH,
            "TimeoutError": ErrorSeverity.MEDIUM,
            "RemoteError": ErrorSeverity.LOW,
        }

    def _determine_severity(self, error: Exception) -> ErrorSeverity:
        error_type = type(error).__name__
        if error_type in self.severity_override:
            return self.severity_override[error_type]
        if "timeout" in str(error).lower():
            return ErrorSeverity.MEDIUM
        return ErrorSeverity.MEDIUM

    def should_log(self, pattern: ErrorPattern, severity: ErrorSeverity) -> bool:
        if severity in (ErrorSeverity.HIGH, ErrorSeverity.CRITICAL):
            return True
        if pattern.count == 1:
            return True
        if severity == ErrorSeverity.MEDIUM and pattern.count % self.log_threshold == 0:
            return True
        if severity == ErrorSeverity.LOW and pattern.count % (self.log_threshold * 5) == 0:
            return True
        return False

    def log_error(self, error: Exception, context: Optional[Dict[str, Any]] = None,
                  severity: Optional[ErrorSeverity] = None) -> str:
        context = context or {}
        if severity is None:
            severity = self._determine_severity(error)

        pattern = ErrorPattern(type(error).__name__, str(error), context)
        fingerprint = pattern.fingerprint
        if fingerprint in self.patterns:
            pattern = self.patterns[fingerprint]
            pattern.update()
        else:
            self.patterns[fingerprint] = pattern

        if self.should_log(pattern, severity):
            log = logger.error if severity in (ErrorSeverity.HIGH, ErrorSeverity.CRITICAL) else logger.warning
            log(
                "aggregated_error",
                error_hash=fingerprint,
                error_type=pattern.error_type,
                error=str(error),
                count=pattern.count,
                severity=severity.value,
                **context
            )

        return fingerprint

    def get_error_summary(self) -> Dict[str, Any]:
        now = time.time()
        recent = [p for p in self.patterns.values() if now - p.last_seen < self.time_window]
        return {
            "total_patterns": len(self.patterns),
            "recent_patterns": len(recent),
            "recent_errors": sum(p.count for p in recent),
            "top_errors": [
                {"hash": p.fingerprint, "type": p.error_type, "count": p.count}
                for p in sorted(recent, key=lambda p: p.count, reverse=True)[:5]
            ],
        }


error_aggregator = ErrorAggregator()


def log_error(error: Exception, context: Optional[Dict[str, Any]] = None,
              severity: Optional[ErrorSeverity] = None) -> str:
    return error_aggregator.log_error(error, context, severity)
