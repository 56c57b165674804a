"""
Sync Exception Hierarchy

Structured exception classes for the catalog sync pipeline. All exceptions
carry code, message, and details so that an item-level failure can be
reported in its SyncOutcome without losing context.

Exception Hierarchy:
    SyncBaseError
    ├── ConfigError          missing credential, fatal before dispatch
    ├── AuthError            rejected credential, never retried
    ├── RateLimitExceeded    429 after the attempt ceiling
    ├── UpstreamError        5xx / transport failure after the attempt ceiling
    ├── NotFoundError        catalog object no longer exists
    ├── ConflictError        stale catalog version
    ├── DownloadError        asset source fetch failed
    ├── UploadError          catalog rejected the image
    └── QueueUnavailable     job queue could not be reached
"""
import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class SyncBaseError(Exception):
    """
    Base exception for all sync errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging
        retryable: Whether a worker-level retry can succeed
    """

    default_code: str = "SYNC_ERROR"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    @property
    def kind(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.kind,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class ConfigError(SyncBaseError):
    """A required credential or setting is missing."""
    default_code = "CONFIG_MISSING"


class AuthError(SyncBaseError):
    """
    Credential rejected by a remote service (401/403).

    Credentials do not self-heal, so this is never retried and counts
    toward the run's auth circuit breaker.
    """
    default_code = "AUTH_REJECTED"

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        self.status_code = status_code
        details = kwargs.pop("details", {})
        details.setdefault("status_code", status_code)
        super().__init__(message, details=details, **kwargs)


class RateLimitExceeded(SyncBaseError):
    """Still rate limited (429) after the attempt ceiling."""
    default_code = "RATE_LIMITED"
    retryable = True

    def __init__(self, host: str, attempts: int, **kwargs):
        self.host = host
        self.attempts = attempts
        super().__init__(
            f"Rate limited by {host} after {attempts} attempts",
            details={"host": host, "attempts": attempts},
            **kwargs,
        )


class _StatusError(SyncBaseError):
    """Errors tied to an HTTP status; retryable unless the status is a 4xx."""

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        self.status_code = status_code
        details = kwargs.pop("details", {})
        details.setdefault("status_code", status_code)
        super().__init__(message, details=details, **kwargs)

    @property
    def retryable(self) -> bool:
        # 4xx (other than 429) will not change on replay
        code = self.status_code
        return code is None or code == 429 or code >= 500


class UpstreamError(_StatusError):
    """Remote service kept failing (5xx or transport error) or answered unexpectedly."""
    default_code = "UPSTREAM_FAILED"


class NotFoundError(SyncBaseError):
    """Catalog object is gone; needs re-enumeration, not replay."""
    default_code = "NOT_FOUND"


class ConflictError(SyncBaseError):
    """Optimistic concurrency version was stale."""
    default_code = "VERSION_MISMATCH"


class DownloadError(_StatusError):
    """Asset source returned non-2xx or could not be reached."""
    default_code = "DOWNLOAD_FAILED"


class UploadError(_StatusError):
    """Catalog service rejected the image."""
    default_code = "UPLOAD_FAILED"


class QueueUnavailable(SyncBaseError):
    """Job queue (Redis) could not be reached; nothing was dispatched."""
    default_code = "QUEUE_UNAVAILABLE"


def is_retryable(error: BaseException) -> bool:
    """Whether a worker should replay the step that raised ``error``."""
    return isinstance(error, SyncBaseError) and bool(error.retryable)
