"""
Exception types and error classification for queue_dump.

Provides:
- ErrorCategory enum used in logs and metrics
- Typed exception hierarchy for drain failures
- Classification utilities for wrapping library errors
"""

from enum import Enum
from typing import Optional


class ErrorCategory(Enum):
    """
    Classification of error types for reporting.

    The drain never retries, so categories only describe what went wrong:

    Categories:
        TRANSIENT: Broker or filesystem hiccups; re-running the tool may succeed
        PERMANENT: Bad message content or configuration; re-running won't help
        SECURITY: Message content tried to escape the output tree
        UNKNOWN: Unclassified errors
    """

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    SECURITY = "security"
    UNKNOWN = "unknown"


class PipelineError(Exception):
    """
    Base exception for all queue_dump errors.

    Attributes:
        message: Human-readable error description
        category: Error classification for reporting
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Optional[Exception] = None,
        context: Optional[dict] = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


# =============================================================================
# Transient Errors
# =============================================================================


class TransientError(PipelineError):
    """Base class for errors that may clear on a later run."""

    category = ErrorCategory.TRANSIENT


class ConnectionError(TransientError):
    """Broker unreachable, or partition assignment never arrived."""

    pass


class WriteError(TransientError):
    """Writing a payload to disk failed."""

    pass


# =============================================================================
# Permanent Errors
# =============================================================================


class PermanentError(PipelineError):
    """Base class for errors that re-running will not fix."""

    category = ErrorCategory.PERMANENT


class ConfigurationError(PermanentError):
    """Invalid configuration or broker URI."""

    pass


class ValidationError(PermanentError):
    """Message content failed validation."""

    pass


class MissingMetadataError(ValidationError):
    """Message lacks the data source or file name property."""

    def __init__(
        self,
        message: str,
        missing: Optional[list] = None,
        cause: Optional[Exception] = None,
        context: Optional[dict] = None,
    ):
        super().__init__(message, cause, context)
        self.missing = missing or []


class UnsupportedEncodingError(PermanentError):
    """Message body is neither text nor raw bytes."""

    def __init__(
        self,
        kind: str,
        cause: Optional[Exception] = None,
        context: Optional[dict] = None,
    ):
        super().__init__(f"Unsupported message encoding: {kind}", cause, context)
        self.kind = kind


class TruncatedPayloadError(PermanentError):
    """Body reader ended before the declared length was read."""

    def __init__(
        self,
        declared_length: int,
        bytes_read: int,
        cause: Optional[Exception] = None,
        context: Optional[dict] = None,
    ):
        message = (
            f"Payload truncated: declared {declared_length} bytes, "
            f"reader ended after {bytes_read}"
        )
        super().__init__(message, cause, context)
        self.declared_length = declared_length
        self.bytes_read = bytes_read


# =============================================================================
# Security Errors
# =============================================================================


class SecurityViolationError(PipelineError):
    """Resolved output path lies outside its sandbox directory."""

    category = ErrorCategory.SECURITY

    def __init__(
        self,
        message: str,
        sandbox: Optional[str] = None,
        candidate: Optional[str] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(
            message, cause, {"sandbox": sandbox, "candidate": candidate}
        )
        self.sandbox = sandbox
        self.candidate = candidate


# =============================================================================
# Error Classification Utilities
# =============================================================================


def classify_exception(exc: Exception) -> ErrorCategory:
    """
    Classify an exception into error category.

    Args:
        exc: Exception to classify

    Returns:
        Appropriate ErrorCategory
    """
    # Already classified
    if isinstance(exc, PipelineError):
        return exc.category

    if isinstance(exc, OSError):
        return ErrorCategory.TRANSIENT

    exc_type = type(exc).__name__.lower()
    exc_str = str(exc).lower()

    connection_markers = (
        "kafkaconnectionerror",
        "nobrokersavailable",
        "connection refused",
        "connection reset",
        "name resolution",
        "broken pipe",
    )
    if any(m in exc_type or m in exc_str for m in connection_markers):
        return ErrorCategory.TRANSIENT

    if "timeout" in exc_type or "timeout" in exc_str:
        return ErrorCategory.TRANSIENT

    if "unicodedecodeerror" in exc_type:
        return ErrorCategory.PERMANENT

    return ErrorCategory.UNKNOWN


def wrap_exception(
    exc: Exception,
    default_class: type = PipelineError,
    context: Optional[dict] = None,
) -> PipelineError:
    """
    Wrap a generic exception in appropriate PipelineError subclass.

    Args:
        exc: Exception to wrap
        default_class: Class to use if can't classify
        context: Additional context to include

    Returns:
        Appropriate PipelineError subclass instance
    """
    if isinstance(exc, PipelineError):
        if context:
            exc.context.update(context)
        return exc

    if isinstance(exc, OSError):
        return WriteError(str(exc), cause=exc, context=context)

    category = classify_exception(exc)

    if category == ErrorCategory.TRANSIENT:
        return ConnectionError(str(exc), cause=exc, context=context)

    if category == ErrorCategory.PERMANENT:
        return ValidationError(str(exc), cause=exc, context=context)

    return default_class(str(exc), cause=exc, context=context)
