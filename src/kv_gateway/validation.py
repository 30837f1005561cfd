"""
Input validation for namespaces, keys and values.

All checks are pure and raise a typed ``KVGatewayError`` subclass; they
run before the store is touched.
"""

import logging
import re
from enum import Enum
from typing import Any

from kv_gateway.errors import InvalidKeyError, InvalidNamespaceError, InvalidValueError
from kv_gateway.serialization import byte_size, serialize

logger = logging.getLogger(__name__)


class Namespace(str, Enum):
    """Namespaces exposed by the gateway, one backing store each."""

    USER_DATA = "USER_DATA"
    PRODUCT_DATA = "PRODUCT_DATA"
    CONFIG_DATA = "CONFIG_DATA"
    CACHE_DATA = "CACHE_DATA"
    LOG_DATA = "LOG_DATA"

    @classmethod
    def names(cls) -> list[str]:
        return [ns.value for ns in cls]


class ValidationLimits:
    """Limits for validating inputs before they reach the store."""

    MAX_KEY_LENGTH = 256
    MAX_VALUE_SIZE_BYTES = 10 * 1024 * 1024
    MAX_BATCH_SIZE = 100
    MAX_LIST_LIMIT = 1000
    DEFAULT_LIST_LIMIT = 100
    MAX_HYDRATED_KEYS = 50

    # Warnings for performance
    WARN_VALUE_SIZE_BYTES = 1024 * 1024


_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def validate_key(key: Any) -> str:
    """
    Validate a key.

    Args:
        key: Candidate key

    Returns:
        The key, unchanged

    Raises:
        InvalidKeyError: If key is empty, not a string, too long, or
            contains ASCII control characters or unpaired surrogates
    """
    if not key or not isinstance(key, str):
        raise InvalidKeyError("Key must be a non-empty string", key=key)

    if len(key) > ValidationLimits.MAX_KEY_LENGTH:
        raise InvalidKeyError(
            f"Key length cannot exceed {ValidationLimits.MAX_KEY_LENGTH} characters",
            key=key,
        )

    if _CONTROL_CHARS.search(key):
        raise InvalidKeyError("Key contains invalid control characters", key=key)

    try:
        key.encode("utf-8")
    except UnicodeEncodeError as e:
        raise InvalidKeyError("Key contains invalid Unicode characters", key=key) from e

    return key


def validate_value(value: Any) -> int:
    """
    Validate a value and its serialized size.

    Args:
        value: Raw string or JSON-serializable structure

    Returns:
        Size in bytes of the serialized form that will be stored

    Raises:
        InvalidValueError: If value is None, not JSON-serializable, not
            encodable as UTF-8, or larger than the size limit once serialized
    """
    if value is None:
        raise InvalidValueError("Value cannot be null or undefined")

    try:
        size = byte_size(serialize(value))
    except UnicodeEncodeError as e:
        raise InvalidValueError("Value contains invalid Unicode characters") from e
    except (TypeError, ValueError) as e:
        raise InvalidValueError(f"Value is not JSON-serializable: {e}") from e

    if size > ValidationLimits.MAX_VALUE_SIZE_BYTES:
        raise InvalidValueError("Value size exceeds 10MB limit", size=size)

    if size > ValidationLimits.WARN_VALUE_SIZE_BYTES:
        logger.warning(f"Large value detected ({size} bytes)")

    return size


def validate_namespace(name: Any) -> Namespace:
    """
    Resolve a namespace name, case-insensitively.

    Raises:
        InvalidNamespaceError: If name is not a known namespace
    """
    if isinstance(name, Namespace):
        return name

    if not name or not isinstance(name, str):
        raise InvalidNamespaceError(_namespace_message(), namespace=name)

    try:
        return Namespace(name.upper())
    except ValueError:
        raise InvalidNamespaceError(_namespace_message(), namespace=name)


def _namespace_message() -> str:
    return f"Invalid namespace. Must be one of: {', '.join(Namespace.names())}"
