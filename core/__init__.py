"""
Core utilities and configuration for the trade intel backend.

Modules:
    config: Application configuration and environment variable management
    database: Async engine and session factory
    exceptions: Exception hierarchy shared by the pipeline and the API
    logging: Logging configuration

Usage:
    from core.config import settings
    from core.database import async_session_maker, build_engine, build_session_factory
    from core.exceptions import NotFoundError, InvalidStateTransition
    from core.logging import setup_logging
"""

__all__ = [
    "settings",
    "async_session_maker",
    "build_engine",
    "build_session_factory",
    "setup_logging",
    # Exceptions
    "TradeIntelError",
    "ValidationError",
    "NotFoundError",
    "DuplicateError",
    "InvalidStateTransition",
    "ExternalServiceError",
    "LLMServiceError",
    "LLMResponseError",
    "NotificationDispatchError",
    "MediaDownloadError",
    "ExchangeRateError",
    "CircuitOpenError",
    "RetryableError",
    "NonRetryableError",
    "ServiceUnavailableError",
    "RateLimitError",
    "AuthenticationError",
]
