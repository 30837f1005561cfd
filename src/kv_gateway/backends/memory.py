"""In-memory KV namespace for development and tests."""

import base64
import time
from dataclasses import dataclass
from typing import Any, Callable

from kv_gateway.adapter import KeyInfo, ListPage, StoredValue


@dataclass
class _Entry:
    value: str
    metadata: dict[str, Any] | None
    expiration: int | None


class InMemoryKVNamespace:
    """
    Dict-backed implementation of ``KVNamespace``.

    Keys are listed in lexicographic order. Cursors are opaque tokens
    naming the last key of the previous page, so keys written between
    pages do not shift the listing. Expired keys are dropped lazily when
    they are read or listed.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._data: dict[str, _Entry] = {}
        self._clock = clock

    async def get(self, key: str) -> str | None:
        entry = self._live(key)
        return entry.value if entry else None

    async def get_with_metadata(self, key: str) -> StoredValue:
        entry = self._live(key)
        if entry is None:
            return StoredValue(value=None, metadata=None)
        return StoredValue(value=entry.value, metadata=entry.metadata)

    async def put(
        self,
        key: str,
        value: str,
        *,
        metadata: dict[str, Any] | None = None,
        expiration_ttl: int | None = None,
    ) -> None:
        expiration = int(self._clock()) + int(expiration_ttl) if expiration_ttl else None
        self._data[key] = _Entry(value=value, metadata=metadata, expiration=expiration)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def list(
        self,
        *,
        prefix: str | None = None,
        cursor: str | None = None,
        limit: int = 1000,
    ) -> ListPage:
        self._purge_expired()

        names = sorted(name for name in self._data if not prefix or name.startswith(prefix))
        if cursor:
            after = _decode_cursor(cursor)
            names = [name for name in names if name > after]

        page, rest = names[:limit], names[limit:]
        keys = [
            KeyInfo(
                name=name,
                expiration=self._data[name].expiration,
                metadata=self._data[name].metadata,
            )
            for name in page
        ]

        if rest and page:
            return ListPage(keys=keys, cursor=_encode_cursor(page[-1]), list_complete=False)
        return ListPage(keys=keys, cursor=None, list_complete=True)

    def __len__(self) -> int:
        self._purge_expired()
        return len(self._data)

    def _live(self, key: str) -> _Entry | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.expiration is not None and entry.expiration <= self._clock():
            del self._data[key]
            return None
        return entry

    def _purge_expired(self) -> None:
        now = self._clock()
        expired = [
            name for name, entry in self._data.items()
            if entry.expiration is not None and entry.expiration <= now
        ]
        for name in expired:
            del self._data[name]


def _encode_cursor(last_key: str) -> str:
    return base64.urlsafe_b64encode(last_key.encode("utf-8")).decode("ascii")


def _decode_cursor(cursor: str) -> str:
    try:
        return base64.urlsafe_b64decode(cursor.encode("ascii")).decode("utf-8")
    except (ValueError, UnicodeError) as e:
        raise ValueError(f"Invalid list cursor: {cursor!r}") from e
