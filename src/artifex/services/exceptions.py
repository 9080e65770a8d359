"""Service error hierarchy for generation providers, media storage, quota and history.

- ServiceError: Base for all service errors
- TransientError: Retryable errors (network, rate limits, timeouts, 5xx)
- PermanentError: Non-retryable errors (authentication, validation)
"""

from enum import Enum
from typing import Any, Optional


class ServiceError(Exception):
    """Base exception for all service errors."""

    retryable: bool = False


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - Network timeouts
    - Rate limit exceeded (429)
    - Service unavailable (5xx)
    """

    retryable = True


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Authentication failures (401, 403)
    - Invalid request parameters (400, 422)
    - Configuration errors
    """

    retryable = False


# Request validation
class RequestValidationError(PermanentError):
    """Caller input is malformed or outside the caller's tier capabilities."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


# Generation provider errors
class ProviderErrorKind(str, Enum):
    """Failure taxonomy exposed by every provider client."""

    AUTHENTICATION_FAILED = "authentication_failed"
    RATE_LIMITED = "rate_limited"
    VALIDATION_REJECTED = "validation_rejected"
    TRANSIENT = "transient"
    UNEXPECTED = "unexpected"


class ProviderError(ServiceError):
    """Base exception for generation provider errors."""

    kind: ProviderErrorKind = ProviderErrorKind.UNEXPECTED

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        payload: Any = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class ProviderAuthenticationError(ProviderError):
    """Bad or missing provider credentials (401, 403). Never retried."""

    kind = ProviderErrorKind.AUTHENTICATION_FAILED
    retryable = False


class ProviderRateLimitError(ProviderError):
    """Rate limit exceeded (429). Retried with backoff."""

    kind = ProviderErrorKind.RATE_LIMITED
    retryable = True


class ProviderValidationError(ProviderError):
    """Provider rejected the request (400, 422). Never retried."""

    kind = ProviderErrorKind.VALIDATION_REJECTED
    retryable = False


class ProviderTransientError(ProviderError):
    """Network timeout, connection failure or 5xx. Retried."""

    kind = ProviderErrorKind.TRANSIENT
    retryable = True


class ProviderUnexpectedError(ProviderError):
    """Unclassified provider failure. Logged with its raw payload, not retried."""

    kind = ProviderErrorKind.UNEXPECTED
    retryable = False


# Media storage errors
class MediaUploadError(ServiceError):
    """Base exception for media upload errors."""

    pass


class MediaStoreNotConfiguredError(MediaUploadError, PermanentError):
    """Media storage credentials are not configured."""

    pass


class MediaRateLimitError(MediaUploadError, TransientError):
    """Rate limit exceeded (429)."""

    pass


class MediaNetworkError(MediaUploadError, TransientError):
    """Network timeout or service unavailable."""

    pass


class MediaAuthError(MediaUploadError, PermanentError):
    """Authentication failure (401, 403)."""

    pass


class MediaValidationError(MediaUploadError, PermanentError):
    """Bad request (400)."""

    pass


# Quota ledger errors
class QuotaLedgerError(ServiceError):
    """Ledger could not be read or written."""

    pass


class InsufficientQuotaError(PermanentError):
    """Owner cannot afford the requested units."""

    def __init__(self, owner_id: str, needed: int, remaining: int):
        super().__init__(f"Insufficient quota. Need {needed} credits, have {remaining}")
        self.owner_id = owner_id
        self.needed = needed
        self.remaining = remaining


# History store errors
class HistoryStoreError(ServiceError):
    """History record could not be written."""

    pass
