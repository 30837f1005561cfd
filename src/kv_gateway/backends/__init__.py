"""Store backends and registry construction."""

import logging

from kv_gateway.adapter import KVNamespace, NamespaceRegistry
from kv_gateway.backends.cloudflare import CloudflareKVNamespace
from kv_gateway.backends.memory import InMemoryKVNamespace
from kv_gateway.config import GatewayConfig
from kv_gateway.validation import Namespace

logger = logging.getLogger(__name__)


def build_registry(config: GatewayConfig) -> NamespaceRegistry:
    """
    Create one store handle per namespace for the configured backend.

    The memory backend binds every namespace. The Cloudflare backend binds
    only the namespaces that have a KV namespace id configured; requests
    to the others fail with ``NamespaceNotBoundError``.
    """
    handles: dict[Namespace, KVNamespace] = {}

    if config.backend == "memory":
        for ns in Namespace:
            handles[ns] = InMemoryKVNamespace()
        logger.info("Using in-memory store for all namespaces")
    else:
        cf = config.cloudflare
        for name, namespace_id in cf.namespace_ids.items():
            handles[Namespace(name)] = CloudflareKVNamespace(
                account_id=cf.account_id,
                namespace_id=namespace_id,
                api_token=cf.api_token,
                base_url=cf.base_url,
                timeout=cf.timeout,
            )
        logger.info(f"Using Cloudflare KV for namespaces: {', '.join(cf.namespace_ids)}")

    return NamespaceRegistry(handles)


__all__ = [
    "CloudflareKVNamespace",
    "InMemoryKVNamespace",
    "build_registry",
]
