"""
Single-key KV operations: get, list, create, update and delete.

Each operation validates its inputs, runs against the namespace's
``StoreAdapter`` and returns a result model. Update and delete first read
the key to confirm it exists and then write in a separate call, so a
concurrent writer can slip in between the two; the store offers no
conditional write to close that gap.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable

from kv_gateway.adapter import KeyInfo, NamespaceRegistry, StoreAdapter
from kv_gateway.errors import KeyNotFoundError
from kv_gateway.models import (
    CreateResult,
    DeleteResult,
    GetResult,
    ListedKey,
    ListFilters,
    ListResult,
    Pagination,
    UpdateResult,
)
from kv_gateway.observability import Instrumentation
from kv_gateway.serialization import byte_size, deserialize, serialize
from kv_gateway.validation import ValidationLimits, validate_key, validate_value

logger = logging.getLogger(__name__)


def utc_timestamp() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def merge_values(existing_raw: str, value: Any) -> tuple[Any, bool]:
    """
    Shallow-merge ``value`` onto the stored object.

    Only applies when both the new value and the decoded stored value are
    JSON objects; top-level fields of ``value`` win and nested objects are
    replaced, not merged. In every other case ``value`` is returned as-is.

    Returns:
        (final value, whether a merge took place)
    """
    if not isinstance(value, dict):
        return value, False
    existing = deserialize(existing_raw)
    if not isinstance(existing, dict):
        return value, False
    return {**existing, **value}, True


def effective_ttl(ttl: Any) -> int | None:
    """TTL seconds to send to the store; anything but a positive number means no expiry."""
    if isinstance(ttl, bool) or not isinstance(ttl, (int, float)) or ttl <= 0:
        return None
    return int(ttl)


class KVOperations:
    """
    Namespace-scoped CRUD on top of the store adapters.

    Example:
        ops = KVOperations(registry)
        await ops.create("USER_DATA", "user123", {"name": "Alice"}, ttl=3600)
        result = await ops.get("USER_DATA", "user123")
    """

    def __init__(
        self,
        registry: NamespaceRegistry,
        *,
        actor: str = "api",
        instrumentation: Instrumentation | None = None,
        clock: Callable[[], str] = utc_timestamp,
    ):
        """
        Args:
            registry: Namespace -> store mapping
            actor: Tag written to createdBy/updatedBy metadata
            instrumentation: Tracing/metrics hooks (disabled if omitted)
            clock: Source of ISO-8601 timestamps
        """
        self.registry = registry
        self.actor = actor
        self.instrumentation = instrumentation or Instrumentation()
        self.clock = clock

    async def get(self, namespace: str, key: str) -> GetResult:
        """
        Fetch a value with its metadata.

        Raises:
            InvalidNamespaceError, InvalidKeyError: On bad input
            KeyNotFoundError: If the key does not exist
            StoreUnavailableError: If the store fails
        """
        adapter = self.registry.adapter(namespace)
        ns = adapter.namespace.value
        validate_key(key)

        async with self.instrumentation.observe("get", ns, key):
            stored = await adapter.get_with_metadata(key)
            if stored.value is None:
                raise KeyNotFoundError(ns, key)

            return GetResult(
                namespace=ns,
                key=key,
                value=deserialize(stored.value),
                metadata=stored.metadata or {},
                size=byte_size(stored.value),
                retrieved_at=self.clock(),
            )

    async def list(
        self,
        namespace: str,
        *,
        limit: int = ValidationLimits.DEFAULT_LIST_LIMIT,
        prefix: str | None = None,
        cursor: str | None = None,
        include_values: bool = False,
    ) -> ListResult:
        """
        List one page of keys.

        ``limit`` is clamped to 1..1000. With ``include_values`` and a page
        of at most 50 keys, every key's value is fetched concurrently; a
        failed fetch marks only that entry.
        """
        adapter = self.registry.adapter(namespace)
        ns = adapter.namespace.value
        limit = max(1, min(int(limit), ValidationLimits.MAX_LIST_LIMIT))
        prefix = prefix or None
        cursor = cursor or None

        async with self.instrumentation.observe("list", ns):
            page = await adapter.list(prefix=prefix, cursor=cursor, limit=limit)

            if include_values and len(page.keys) <= ValidationLimits.MAX_HYDRATED_KEYS:
                keys = list(await asyncio.gather(*(self._hydrate(adapter, info) for info in page.keys)))
            else:
                keys = [
                    ListedKey(name=info.name, expiration=info.expiration, metadata=info.metadata or {})
                    for info in page.keys
                ]

            return ListResult(
                namespace=ns,
                keys=keys,
                count=len(keys),
                pagination=Pagination(
                    has_more=not page.list_complete,
                    cursor=page.cursor,
                    limit=limit,
                ),
                filters=ListFilters(prefix=prefix, include_values=include_values),
                retrieved_at=self.clock(),
            )

    async def create(
        self,
        namespace: str,
        key: str,
        value: Any,
        *,
        ttl: Any = None,
        metadata: dict[str, Any] | None = None,
    ) -> CreateResult:
        """
        Write a value, replacing whatever the key held.

        Metadata, when given, is stamped with createdAt/createdBy.
        """
        adapter = self.registry.adapter(namespace)
        ns = adapter.namespace.value
        validate_key(key)
        validate_value(value)

        async with self.instrumentation.observe("create", ns, key):
            serialized = serialize(value)
            now = self.clock()
            stamped = None
            if isinstance(metadata, dict):
                stamped = {**metadata, "createdAt": now, "createdBy": self.actor}
            ttl_seconds = effective_ttl(ttl)

            await adapter.put(key, serialized, metadata=stamped, expiration_ttl=ttl_seconds)

            return CreateResult(
                namespace=ns,
                key=key,
                value=value,
                metadata=stamped or {},
                ttl=ttl_seconds,
                size=byte_size(serialized),
                operation="create",
                created_at=now,
            )

    async def update(
        self,
        namespace: str,
        key: str,
        value: Any,
        *,
        ttl: Any = None,
        metadata: dict[str, Any] | None = None,
        merge: Any = False,
    ) -> UpdateResult:
        """
        Overwrite or merge into an existing key.

        Raises:
            KeyNotFoundError: If the key does not exist; update never creates
            InvalidValueError: If the value, or the merged value, is invalid
        """
        adapter = self.registry.adapter(namespace)
        ns = adapter.namespace.value
        validate_key(key)
        validate_value(value)

        async with self.instrumentation.observe("update", ns, key):
            existing = await adapter.get(key)
            if existing is None:
                raise KeyNotFoundError(ns, key)

            final_value = value
            if merge is True:
                final_value, merged = merge_values(existing, value)
                if merged:
                    validate_value(final_value)

            serialized = serialize(final_value)
            now = self.clock()
            stamped = None
            if isinstance(metadata, dict):
                stamped = {**metadata, "updatedAt": now, "updatedBy": self.actor}
            ttl_seconds = effective_ttl(ttl)

            await adapter.put(key, serialized, metadata=stamped, expiration_ttl=ttl_seconds)

            return UpdateResult(
                namespace=ns,
                key=key,
                value=final_value,
                metadata=stamped or {},
                ttl=ttl_seconds,
                size=byte_size(serialized),
                operation="update",
                merged=merge is True,
                updated_at=now,
            )

    async def delete(self, namespace: str, key: str) -> DeleteResult:
        """
        Delete an existing key.

        Raises:
            KeyNotFoundError: If the key does not exist
        """
        adapter = self.registry.adapter(namespace)
        ns = adapter.namespace.value
        validate_key(key)

        async with self.instrumentation.observe("delete", ns, key):
            if await adapter.get(key) is None:
                raise KeyNotFoundError(ns, key)

            await adapter.delete(key)

            return DeleteResult(
                namespace=ns,
                key=key,
                operation="delete",
                deleted_at=self.clock(),
                message=f"Key '{key}' deleted successfully from {ns}",
            )

    async def _hydrate(self, adapter: StoreAdapter, info: KeyInfo) -> ListedKey:
        try:
            stored = await adapter.get_with_metadata(info.name)
        except Exception as e:
            logger.warning(
                f"Failed to hydrate key '{info.name}' in {adapter.namespace.value}: {e}",
                extra={"namespace": adapter.namespace.value, "key": info.name},
            )
            return ListedKey(
                name=info.name,
                value=None,
                error="Failed to retrieve value",
                expiration=info.expiration,
            )

        # Expired or deleted since the listing was taken
        if stored.value is None:
            return ListedKey(name=info.name, value=None, error="Key not found", expiration=info.expiration)

        return ListedKey(
            name=info.name,
            value=deserialize(stored.value),
            metadata=stored.metadata or {},
            size=byte_size(stored.value),
            expiration=info.expiration,
        )
