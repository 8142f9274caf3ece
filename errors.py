# errors.py - domain error taxonomy and the single best-effort boundary

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """Base for every error the API reports with a stable code"""

    code = "INTERNAL_ERROR"
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, **extra):
        self.message = message or self.default_message
        self.extra = extra
        super().__init__(self.message)

    def to_body(self) -> dict:
        body = {"ok": False, "error": self.code, "message": self.message}
        body.update({k: v for k, v in self.extra.items() if v is not None})
        return body

    def headers(self) -> dict:
        return {}


class Unauthenticated(ServiceError):
    code = "UNAUTHORIZED"
    status_code = 401
    default_message = "Authentication required"


class Forbidden(ServiceError):
    code = "FORBIDDEN"
    status_code = 403
    default_message = "Access denied"


class NotFound(ServiceError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Not found"


class InvalidInput(ServiceError):
    code = "INVALID_INPUT"
    status_code = 400
    default_message = "Invalid input"


class InsufficientCredits(ServiceError):
    code = "NO_CREDITS"
    status_code = 402
    default_message = "Not enough credits"

    def __init__(self, message: Optional[str] = None, balance: Optional[int] = None):
        super().__init__(message, balance=balance)
        self.balance = balance


class RateLimited(ServiceError):
    code = "RATE_LIMITED"
    status_code = 429
    default_message = "Too many requests, please wait a moment"

    def __init__(self, message: Optional[str] = None, retry_after_ms: int = 0, limit: Optional[int] = None):
        retry_after_seconds = max(1, -(-int(retry_after_ms) // 1000))
        super().__init__(message, retryAfterSeconds=retry_after_seconds)
        self.retry_after_ms = int(retry_after_ms)
        self.retry_after_seconds = retry_after_seconds
        self.limit = limit

    def headers(self) -> dict:
        headers = {"Retry-After": str(self.retry_after_seconds)}
        if self.limit is not None:
            headers["X-RateLimit-Limit"] = str(self.limit)
            headers["X-RateLimit-Remaining"] = "0"
        return headers


class InvalidState(ServiceError):
    code = "INVALID_STATE"
    status_code = 409
    default_message = "Operation not allowed in the current state"

    def __init__(self, message: Optional[str] = None, status: Optional[str] = None):
        super().__init__(message, status=status)
        self.status = status


class UpstreamFailure(ServiceError):
    code = "UPSTREAM_FAILURE"
    status_code = 500
    default_message = "Upstream service failed"


class ConfigurationError(ServiceError):
    code = "CONFIGURATION_ERROR"
    status_code = 500
    default_message = "Service temporarily unavailable"


class GenerationFailed(ServiceError):
    code = "GENERATION_FAILED"
    status_code = 500
    default_message = "Service temporarily unavailable"


class SynthesisError(Exception):
    """Speech provider call failed, timed out or returned unusable audio"""


class StorageError(Exception):
    """Blob backend failed to read or write"""


class BlobNotFound(StorageError):
    """No backend holds the requested key"""


# ----------------------------------------------------------------------------
# Best-effort side effects
# ----------------------------------------------------------------------------

@dataclass
class Outcome:
    ok: bool
    value: Any = None
    error: Optional[BaseException] = None


async def run_best_effort(description: str, func, *args, **kwargs) -> Outcome:
    """
    The one place non-critical failures are caught: the error is logged and
    returned as an Outcome so the critical path can carry on.
    """
    try:
        value = func(*args, **kwargs)
        if inspect.isawaitable(value):
            value = await value
        return Outcome(ok=True, value=value)
    except Exception as e:
        logger.warning(f"Best-effort step failed ({description}): {e}", exc_info=True)
        return Outcome(ok=False, error=e)


__all__ = [
    'ServiceError',
    'Unauthenticated',
    'Forbidden',
    'NotFound',
    'InvalidInput',
    'InsufficientCredits',
    'RateLimited',
    'InvalidState',
    'UpstreamFailure',
    'ConfigurationError',
    'GenerationFailed',
    'SynthesisError',
    'StorageError',
    'BlobNotFound',
    'Outcome',
    'run_best_effort',
]
