"""
Uniform per-namespace access to the backing key-value stores.

A backend only has to provide the five primitives of ``KVNamespace``.
``StoreAdapter`` binds one backend to one ``Namespace`` and turns any
backend failure into ``StoreUnavailableError``; ``NamespaceRegistry``
holds the namespace -> backend mapping built at startup.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, runtime_checkable

from kv_gateway.errors import KVGatewayError, NamespaceNotBoundError, StoreUnavailableError
from kv_gateway.validation import Namespace, validate_namespace

logger = logging.getLogger(__name__)


@dataclass
class StoredValue:
    """A value as read from the store; ``value`` is None when the key is absent."""
    value: str | None
    metadata: dict[str, Any] | None = None


@dataclass
class KeyInfo:
    """One key of a listing page."""
    name: str
    expiration: int | None = None
    metadata: dict[str, Any] | None = None


@dataclass
class ListPage:
    """One page of a prefix listing."""
    keys: list[KeyInfo] = field(default_factory=list)
    cursor: str | None = None
    list_complete: bool = True


@runtime_checkable
class KVNamespace(Protocol):
    """Protocol for a single namespace of an eventually-consistent KV store."""

    async def get(self, key: str) -> str | None:
        """Get a raw value. Returns None if not found."""
        ...

    async def get_with_metadata(self, key: str) -> StoredValue:
        """Get a raw value together with its metadata."""
        ...

    async def put(
        self,
        key: str,
        value: str,
        *,
        metadata: dict[str, Any] | None = None,
        expiration_ttl: int | None = None,
    ) -> None:
        """Write a value, replacing any previous value and metadata."""
        ...

    async def delete(self, key: str) -> None:
        """Delete a key. No-op if key doesn't exist."""
        ...

    async def list(
        self,
        *,
        prefix: str | None = None,
        cursor: str | None = None,
        limit: int = 1000,
    ) -> ListPage:
        """List one page of keys, optionally restricted to a prefix."""
        ...


class StoreAdapter:
    """
    Store operations for one namespace.

    Errors raised by the backend are wrapped in ``StoreUnavailableError``
    with the namespace, key and operation attached. Nothing is retried.
    """

    def __init__(self, namespace: Namespace, handle: KVNamespace):
        self.namespace = namespace
        self.handle = handle

    async def get(self, key: str) -> str | None:
        try:
            return await self.handle.get(key)
        except KVGatewayError:
            raise
        except Exception as e:
            raise self._unavailable("get", key, e)

    async def get_with_metadata(self, key: str) -> StoredValue:
        try:
            return await self.handle.get_with_metadata(key)
        except KVGatewayError:
            raise
        except Exception as e:
            raise self._unavailable("get_with_metadata", key, e)

    async def put(
        self,
        key: str,
        value: str,
        *,
        metadata: dict[str, Any] | None = None,
        expiration_ttl: int | None = None,
    ) -> None:
        try:
            await self.handle.put(key, value, metadata=metadata, expiration_ttl=expiration_ttl)
        except KVGatewayError:
            raise
        except Exception as e:
            raise self._unavailable("put", key, e)

    async def delete(self, key: str) -> None:
        try:
            await self.handle.delete(key)
        except KVGatewayError:
            raise
        except Exception as e:
            raise self._unavailable("delete", key, e)

    async def list(
        self,
        *,
        prefix: str | None = None,
        cursor: str | None = None,
        limit: int,
    ) -> ListPage:
        try:
            return await self.handle.list(prefix=prefix, cursor=cursor, limit=limit)
        except KVGatewayError:
            raise
        except Exception as e:
            raise self._unavailable("list", None, e)

    def _unavailable(self, operation: str, key: str | None, error: Exception) -> StoreUnavailableError:
        target = f"{self.namespace.value}:{key}" if key is not None else self.namespace.value
        return StoreUnavailableError(
            f"Store {operation} failed [{target}]",
            original_error=error,
            namespace=self.namespace.value,
            key=key,
            operation=operation,
        )


class NamespaceRegistry:
    """
    Mapping of every ``Namespace`` to its backing store handle.

    Example:
        registry = NamespaceRegistry({ns: InMemoryKVNamespace() for ns in Namespace})
        adapter = registry.adapter("user_data")
    """

    def __init__(self, handles: Mapping[Namespace | str, KVNamespace]):
        self._adapters: dict[Namespace, StoreAdapter] = {}
        for name, handle in handles.items():
            namespace = validate_namespace(name)
            self._adapters[namespace] = StoreAdapter(namespace, handle)

        unbound = [ns.value for ns in Namespace if ns not in self._adapters]
        if unbound:
            logger.warning(f"Namespaces without a store binding: {', '.join(unbound)}")

    def adapter(self, name: Namespace | str) -> StoreAdapter:
        """
        Resolve a namespace name to its adapter.

        Raises:
            InvalidNamespaceError: If name is not a known namespace
            NamespaceNotBoundError: If the namespace has no store handle
        """
        namespace = validate_namespace(name)
        adapter = self._adapters.get(namespace)
        if adapter is None:
            raise NamespaceNotBoundError(namespace.value)
        return adapter

    def bound_namespaces(self) -> list[Namespace]:
        return list(self._adapters)

    def __contains__(self, name: object) -> bool:
        return name in self._adapters

    async def aclose(self) -> None:
        """Close backend handles that hold connections."""
        for adapter in self._adapters.values():
            close = getattr(adapter.handle, "aclose", None)
            if close is not None:
                await close()
