"""
KV Gateway - HTTP gateway over multi-namespace key-value stores.

This package provides validated CRUD, listing and bounded batch
operations over a fixed set of namespaces, each backed by its own
eventually-consistent key-value store (in-memory or Cloudflare KV).
The FastAPI application lives in ``kv_gateway.api``.
"""

from kv_gateway.adapter import (
    KeyInfo,
    KVNamespace,
    ListPage,
    NamespaceRegistry,
    StoreAdapter,
    StoredValue,
)

from kv_gateway.backends import (
    CloudflareKVNamespace,
    InMemoryKVNamespace,
    build_registry,
)

from kv_gateway.batch import BatchCoordinator

from kv_gateway.config import (
    CloudflareConfig,
    CORSConfig,
    GatewayConfig,
    LoggingConfig,
    MetricsConfig,
    SecretsManager,
    SecretsProvider,
    load_config_from_env,
)

from kv_gateway.errors import (
    InvalidBatchError,
    InvalidKeyError,
    InvalidNamespaceError,
    InvalidValueError,
    KeyNotFoundError,
    KVGatewayError,
    MissingFieldError,
    NamespaceNotBoundError,
    StoreUnavailableError,
    UnknownBatchOperationError,
)

from kv_gateway.observability import (
    GatewayMetrics,
    Instrumentation,
    Tracer,
)

from kv_gateway.operations import KVOperations

from kv_gateway.validation import (
    Namespace,
    ValidationLimits,
    validate_key,
    validate_namespace,
    validate_value,
)

__version__ = "1.0.0"

__all__ = [
    # Store access
    "KeyInfo",
    "KVNamespace",
    "ListPage",
    "NamespaceRegistry",
    "StoreAdapter",
    "StoredValue",
    "CloudflareKVNamespace",
    "InMemoryKVNamespace",
    "build_registry",
    # Operations
    "KVOperations",
    "BatchCoordinator",
    # Configuration
    "CloudflareConfig",
    "CORSConfig",
    "GatewayConfig",
    "LoggingConfig",
    "MetricsConfig",
    "SecretsManager",
    "SecretsProvider",
    "load_config_from_env",
    # Errors
    "InvalidBatchError",
    "InvalidKeyError",
    "InvalidNamespaceError",
    "InvalidValueError",
    "KeyNotFoundError",
    "KVGatewayError",
    "MissingFieldError",
    "NamespaceNotBoundError",
    "StoreUnavailableError",
    "UnknownBatchOperationError",
    # Observability
    "GatewayMetrics",
    "Instrumentation",
    "Tracer",
    # Validation
    "Namespace",
    "ValidationLimits",
    "validate_key",
    "validate_namespace",
    "validate_value",
]
