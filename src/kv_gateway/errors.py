"""
Error hierarchy for the KV gateway.

Every error carries the HTTP status the gateway answers with, so the
HTTP layer can turn any of them into an error envelope without a lookup
table.
"""

import logging
from typing import Any

logger = logging.getLogger(__name__)


class KVGatewayError(Exception):
    """
    Base exception for KV gateway errors.

    Wraps underlying store client exceptions with additional context
    and ensures store failures are logged where they are raised.
    """

    status_code: int = 500
    kind: str = "internal_error"

    def __init__(
        self,
        message: str,
        original_error: Exception | None = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize gateway error.

        Args:
            message: Human-readable error message (safe to return to clients)
            original_error: Original exception that caused this error
            details: Optional structured details for the error envelope
        """
        super().__init__(message)
        self.message = message
        self.original_error = original_error
        self.details = details

        if original_error:
            logger.error(
                f"{self.__class__.__name__}: {message}",
                exc_info=original_error,
                extra={
                    "error_type": type(original_error).__name__,
                    "error_message": str(original_error),
                },
            )

    def __str__(self) -> str:
        if self.original_error:
            return f"{self.message} (caused by {type(self.original_error).__name__}: {self.original_error})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, original_error={self.original_error!r})"


class InvalidNamespaceError(KVGatewayError):
    """Raised when a namespace is not one of the configured namespaces."""

    status_code = 400
    kind = "invalid_namespace"

    def __init__(self, message: str, namespace: Any = None):
        self.namespace = namespace
        super().__init__(message)


class InvalidKeyError(KVGatewayError):
    """
    Raised when a key is empty, not a string, too long, or contains
    control characters.
    """

    status_code = 400
    kind = "invalid_key"

    def __init__(self, message: str, key: Any = None):
        self.key = key
        super().__init__(message)


class InvalidValueError(KVGatewayError):
    """Raised when a value is null, not serializable as UTF-8 JSON, or too large."""

    status_code = 400
    kind = "invalid_value"

    def __init__(self, message: str, size: int | None = None):
        self.size = size
        super().__init__(message)


class MissingFieldError(KVGatewayError):
    """Raised when a required request field (value, operations) is absent."""

    status_code = 400
    kind = "missing_field"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class InvalidBatchError(KVGatewayError):
    """Raised when a batch request is not a list or exceeds the batch cap."""

    status_code = 400
    kind = "invalid_batch"


class UnknownBatchOperationError(KVGatewayError):
    """Raised for a batch item whose operation kind is not get/set/put/delete."""

    status_code = 400
    kind = "unknown_batch_operation"

    def __init__(self, operation: Any):
        self.operation = operation
        super().__init__(f"Unknown operation: {operation}")


class KeyNotFoundError(KVGatewayError):
    """Raised when a key must exist but does not."""

    status_code = 404
    kind = "not_found"

    def __init__(self, namespace: str, key: str):
        self.namespace = namespace
        self.key = key
        super().__init__(f"Key '{key}' not found in {namespace}")


class StoreUnavailableError(KVGatewayError):
    """
    Raised when the backing store fails.

    Never retried by the gateway; the message is kept opaque for clients
    while the original error is logged with namespace and key context.
    """

    status_code = 500
    kind = "store_unavailable"

    def __init__(
        self,
        message: str = "KV operation failed",
        original_error: Exception | None = None,
        namespace: str | None = None,
        key: str | None = None,
        operation: str | None = None,
    ):
        self.namespace = namespace
        self.key = key
        self.operation = operation
        super().__init__(message, original_error=original_error)


class NamespaceNotBoundError(KVGatewayError):
    """Raised when a valid namespace has no store handle bound to it."""

    status_code = 500
    kind = "namespace_not_bound"

    def __init__(self, namespace: str):
        self.namespace = namespace
        super().__init__(f"KV namespace {namespace} not found")
