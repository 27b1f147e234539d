"""
Custom exceptions for the trade intel pipeline with structured error context.

Each exception carries a context dict for debugging and monitoring and can
be serialized with ``to_dict()`` for logs and API error bodies.

Exception Hierarchy:
    TradeIntelError (base)
    ├── ValidationError
    ├── NotFoundError
    ├── DuplicateError
    ├── InvalidStateTransition
    ├── ExternalServiceError
    │   ├── LLMServiceError
    │   │   └── LLMResponseError
    │   ├── NotificationDispatchError
    │   ├── MediaDownloadError
    │   └── ExchangeRateError
    ├── CircuitOpenError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime


class TradeIntelError(Exception):
    """
    Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (ids, urls, counts)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.utcnow()

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Caller Errors
# ============================================================================

class ValidationError(TradeIntelError):
    """
    Bad caller input.

    Context should include:
        - field_name: Name of the offending field
        - field_value: The rejected value (truncated if large)
    """
    pass


class NotFoundError(TradeIntelError):
    """
    Missing listing, review item or reference row.

    Context should include:
        - entity: Table or entity name
        - entity_id: Requested identifier
    """
    pass


class DuplicateError(TradeIntelError):
    """
    Unique-constraint violation.

    Benign no-op at ingestion; a hard failure when creating reference rows.
    """
    pass


class InvalidStateTransition(TradeIntelError):
    """
    Raised when resolve/skip targets a review item that is no longer pending.

    Context should include:
        - review_item_id: The review item
        - current_status: Status found at the time of the attempt
    """
    pass


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(TradeIntelError):
    """
    Mixin for errors that should trigger retry logic.

    Use this for transient errors like:
    - Network timeouts
    - Rate limiting (HTTP 429)
    - Service unavailable (HTTP 5xx)

    Attempt counts and delays belong to the caller (LLMClient,
    HttpNotificationDispatcher), not to the error.
    """
    pass


class NonRetryableError(TradeIntelError):
    """
    Mixin for errors that should NOT trigger retry logic.

    Use this for permanent errors like:
    - Authentication failures (HTTP 401, 403)
    - Malformed model output
    """
    pass


# ============================================================================
# External Service Errors
# ============================================================================

class ExternalServiceError(TradeIntelError):
    """
    Failure of a model, dispatch or other outbound call.

    Never propagated out of the pipeline: downgraded to a zero-confidence
    extraction or a logged dispatch failure.
    """
    pass


class LLMServiceError(ExternalServiceError):
    """Chat completion or embedding call failed."""
    pass


class LLMResponseError(NonRetryableError, LLMServiceError):
    """Model answered but the payload could not be parsed."""
    pass


class NotificationDispatchError(ExternalServiceError):
    """Notification could not be delivered."""
    pass


class MediaDownloadError(ExternalServiceError):
    """Attachment could not be fetched or stored."""
    pass


class ExchangeRateError(ExternalServiceError):
    """Currency rate lookup failed."""
    pass


class CircuitOpenError(NonRetryableError, ExternalServiceError):
    """Calls short-circuited while the breaker is open."""
    pass


# ============================================================================
# Specific Retryable Errors
# ============================================================================

class ServiceUnavailableError(RetryableError, ExternalServiceError):
    """Timeouts, connection errors and 5xx responses."""
    pass


class RateLimitError(RetryableError, ExternalServiceError):
    """Rate limiting errors (HTTP 429) that should be retried with backoff."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[float] = None
    ):
        super().__init__(message, context, original_exception)
        self.retry_after = retry_after
        if retry_after:
            self.context["retry_after"] = retry_after


class AuthenticationError(NonRetryableError, ExternalServiceError):
    """Authentication failures (HTTP 401, 403) that should not be retried."""
    pass
