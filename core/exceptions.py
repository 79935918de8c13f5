"""
Custom exceptions for the sync engine with structured error context.

This module provides the exception hierarchy used throughout the sync
engine. Each exception includes context information for debugging and
monitoring, and knows how to serialize itself for logs and progress rows.

Exception Hierarchy:
    SyncException (base)
    ├── ItemError
    ├── ChunkFatalError
    ├── PersistenceError
    │   └── VersionConflictError
    ├── NothingToResume
    ├── SyncAlreadyRunningError
    ├── UnknownSyncTypeError
    ├── ProviderError
    │   ├── NetworkError (retryable)
    │   ├── RateLimitError (retryable)
    │   ├── AuthenticationError (non-retryable, chunk-fatal)
    │   ├── ConfigurationError (non-retryable, chunk-fatal)
    │   └── ResponseFormatError (non-retryable)
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime


class SyncException(Exception):
    """
    Base exception for all sync-related errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (sync type, offset, etc.)
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

        # Add timestamp to context
        self.context["error_timestamp"] = self.timestamp.isoformat()

        # Chain original exception if provided
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
# Retry Strategy Mixins
# ============================================================================

class RetryableError(SyncException):
    """
    Mixin for errors that should trigger retry logic.

    Use this for transient errors like:
    - Network timeouts
    - Rate limiting (HTTP 429)
    - Service unavailable (HTTP 5xx)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0
    ):
        super().__init__(message, context, original_exception)
        self.max_retries = max_retries
        self.retry_delay = retry_delay


class NonRetryableError(SyncException):
    """
    Mixin for errors that should NOT trigger retry logic.

    Use this for permanent errors like:
    - Authentication failures (HTTP 401, 403)
    - Missing credentials or configuration
    - Unparseable provider responses
    """
    pass


# ============================================================================
# Engine Errors
# ============================================================================

class ItemError(SyncException):
    """
    A single candidate item failed to fetch, transform or write.

    Recorded in error_items and counted toward processed; never aborts
    the chunk.

    Context should include:
        - sync_type: The sync type being processed
        - item_id: Identifier of the failed item
    """

    def __init__(
        self,
        item_id: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        super().__init__(message, context, original_exception)
        self.item_id = item_id
        self.context["item_id"] = item_id


class ChunkFatalError(SyncException):
    """
    The chunk-level operation failed after its internal retry budget.

    The current chunk attempt is aborted, processed is not advanced and
    the progress row is left with needs_continuation=true.

    Context should include:
        - sync_type: The sync type being processed
        - offset: Offset of the failed chunk
        - batch_size: Size of the failed chunk
    """
    pass


class PersistenceError(SyncException):
    """
    The progress store or a content table could not be read or written.

    Context should include:
        - sync_type: The sync type whose row failed
        - operation: Operation that failed (initialize, get, update, clear, count_total)
    """
    pass


class VersionConflictError(PersistenceError):
    """Optimistic version check failed: another writer touched the row."""
    pass


class NothingToResume(SyncException):
    """Resume was requested for a type with no progress row or a complete one."""
    pass


class SyncAlreadyRunningError(SyncException):
    """A driver is already running for this sync type."""
    pass


class UnknownSyncTypeError(SyncException):
    """No content provider is registered for the requested sync type."""
    pass


# ============================================================================
# Provider Errors
# ============================================================================

class ProviderError(SyncException):
    """
    Base exception for content provider failures.

    Context should include:
        - provider: Name of the provider
        - url: The upstream endpoint that failed (if applicable)
        - status_code: HTTP status code (if applicable)
    """
    pass


class NetworkError(RetryableError, ProviderError):
    """Network-related errors that should be retried."""
    pass


class RateLimitError(RetryableError, ProviderError):
    """Rate limiting errors (HTTP 429) that should be retried with backoff."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[int] = None
    ):
        super().__init__(message, context, original_exception)
        self.retry_after = retry_after  # Seconds to wait before retry
        if retry_after:
            self.context["retry_after"] = retry_after


class AuthenticationError(NonRetryableError, ProviderError):
    """Authentication failures (HTTP 401, 403) that should not be retried."""
    pass


class ConfigurationError(NonRetryableError, ProviderError):
    """Missing credentials or invalid provider configuration."""
    pass


class ResponseFormatError(NonRetryableError, ProviderError):
    """Upstream returned a response that could not be parsed."""
    pass
