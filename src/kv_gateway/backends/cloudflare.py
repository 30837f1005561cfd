"""
Cloudflare Workers KV backend over the Cloudflare REST API.

Each ``CloudflareKVNamespace`` talks to one KV namespace id:

    GET    /accounts/{account}/storage/kv/namespaces/{id}/values/{key}
    GET    /accounts/{account}/storage/kv/namespaces/{id}/metadata/{key}
    PUT    /accounts/{account}/storage/kv/namespaces/{id}/values/{key}
    DELETE /accounts/{account}/storage/kv/namespaces/{id}/values/{key}
    GET    /accounts/{account}/storage/kv/namespaces/{id}/keys
"""

import asyncio
import json
import logging
from typing import Any
from urllib.parse import quote

import httpx

from kv_gateway.adapter import KeyInfo, ListPage, StoredValue

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.cloudflare.com/client/v4"


class CloudflareKVNamespace:
    """
    ``KVNamespace`` backed by a Cloudflare KV namespace.

    A 404 from the API means the key is absent. Every other non-2xx
    response raises ``httpx.HTTPStatusError``; transport problems raise
    ``httpx.RequestError``. The gateway's ``StoreAdapter`` turns both into
    ``StoreUnavailableError``.
    """

    def __init__(
        self,
        account_id: str,
        namespace_id: str,
        api_token: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        if not account_id or not namespace_id or not api_token:
            raise ValueError(
                "CloudflareKVNamespace requires account_id, namespace_id and api_token. "
                "Use the 'memory' backend for development."
            )

        self.account_id = account_id
        self.namespace_id = namespace_id
        self._prefix = f"/accounts/{account_id}/storage/kv/namespaces/{namespace_id}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": f"Bearer {api_token}"},
            timeout=timeout,
        )

    async def get(self, key: str) -> str | None:
        response = await self._client.get(self._url("values", key))
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.text

    async def get_with_metadata(self, key: str) -> StoredValue:
        value, metadata = await asyncio.gather(self.get(key), self._get_metadata(key))
        if value is None:
            return StoredValue(value=None, metadata=None)
        return StoredValue(value=value, metadata=metadata)

    async def put(
        self,
        key: str,
        value: str,
        *,
        metadata: dict[str, Any] | None = None,
        expiration_ttl: int | None = None,
    ) -> None:
        params = {}
        if expiration_ttl:
            params["expiration_ttl"] = int(expiration_ttl)

        files: dict[str, tuple[None, bytes]] = {"value": (None, value.encode("utf-8"))}
        if metadata is not None:
            files["metadata"] = (None, json.dumps(metadata).encode("utf-8"))

        response = await self._client.put(self._url("values", key), params=params, files=files)
        response.raise_for_status()

    async def delete(self, key: str) -> None:
        response = await self._client.delete(self._url("values", key))
        if response.status_code == 404:
            return
        response.raise_for_status()

    async def list(
        self,
        *,
        prefix: str | None = None,
        cursor: str | None = None,
        limit: int = 1000,
    ) -> ListPage:
        params: dict[str, Any] = {"limit": limit}
        if prefix:
            params["prefix"] = prefix
        if cursor:
            params["cursor"] = cursor

        response = await self._client.get(f"{self._prefix}/keys", params=params)
        response.raise_for_status()
        body = response.json()

        keys = [
            KeyInfo(
                name=item["name"],
                expiration=item.get("expiration"),
                metadata=item.get("metadata"),
            )
            for item in body.get("result", [])
        ]
        next_cursor = (body.get("result_info") or {}).get("cursor") or None
        return ListPage(keys=keys, cursor=next_cursor, list_complete=next_cursor is None)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _get_metadata(self, key: str) -> dict[str, Any] | None:
        response = await self._client.get(self._url("metadata", key))
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json().get("result")

    def _url(self, resource: str, key: str) -> str:
        return f"{self._prefix}/{resource}/{quote(key, safe='')}"
