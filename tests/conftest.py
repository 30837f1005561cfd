"""
Pytest configuration and fixtures for KV gateway tests.

Provides:
- In-memory namespace registries with a controllable clock
- Operation executor and batch coordinator fixtures
- FastAPI test clients
- Failing store handles for error-path tests
"""

from typing import Any

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from kv_gateway.adapter import ListPage, NamespaceRegistry, StoredValue
from kv_gateway.api import create_app
from kv_gateway.backends.memory import InMemoryKVNamespace
from kv_gateway.batch import BatchCoordinator
from kv_gateway.config import GatewayConfig
from kv_gateway.observability import GatewayMetrics, Instrumentation
from kv_gateway.operations import KVOperations
from kv_gateway.validation import Namespace


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (require a Cloudflare account)"
    )


# ============================================================================
# Test Doubles
# ============================================================================

class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FailingKVNamespace(InMemoryKVNamespace):
    """
    In-memory namespace whose reads of selected keys raise.

    Also counts every call so tests can assert the store was (not) touched.
    """

    def __init__(self, failing_keys: set[str] | None = None, fail_all: bool = False):
        super().__init__()
        self.failing_keys = failing_keys or set()
        self.fail_all = fail_all
        self.calls: list[tuple[str, Any]] = []

    def _check(self, operation: str, key: Any = None) -> None:
        self.calls.append((operation, key))
        if self.fail_all or key in self.failing_keys:
            raise ConnectionError(f"store unreachable during {operation}")

    async def get(self, key: str) -> str | None:
        self._check("get", key)
        return await super().get(key)

    async def get_with_metadata(self, key: str) -> StoredValue:
        self._check("get_with_metadata", key)
        return await super().get_with_metadata(key)

    async def put(self, key, value, *, metadata=None, expiration_ttl=None) -> None:
        if self.fail_all:
            self._check("put", key)
        self.calls.append(("put", key))
        await super().put(key, value, metadata=metadata, expiration_ttl=expiration_ttl)

    async def delete(self, key: str) -> None:
        if self.fail_all:
            self._check("delete", key)
        self.calls.append(("delete", key))
        await super().delete(key)

    async def list(self, *, prefix=None, cursor=None, limit=1000) -> ListPage:
        if self.fail_all:
            self._check("list")
        self.calls.append(("list", prefix))
        return await super().list(prefix=prefix, cursor=cursor, limit=limit)


# ============================================================================
# Store Fixtures
# ============================================================================

@pytest.fixture
def clock():
    """Provide a fake clock for TTL tests."""
    return FakeClock()


@pytest.fixture
def memory_store(clock):
    """Provide a single in-memory namespace driven by the fake clock."""
    return InMemoryKVNamespace(clock=clock)


@pytest.fixture
def registry(memory_store):
    """
    Provide a registry with every namespace bound.

    USER_DATA uses the fake-clock store; the others get fresh stores.
    """
    handles = {ns: InMemoryKVNamespace() for ns in Namespace}
    handles[Namespace.USER_DATA] = memory_store
    return NamespaceRegistry(handles)


@pytest.fixture
def metrics():
    """Provide enabled metrics with a private registry."""
    return GatewayMetrics(enabled=True)


@pytest.fixture
def ops(registry, metrics):
    """Provide the single-key operation executor."""
    return KVOperations(
        registry,
        instrumentation=Instrumentation(metrics=metrics),
        clock=lambda: "2024-01-01T00:00:00.000Z",
    )


@pytest.fixture
def coordinator(registry, metrics):
    """Provide the batch coordinator."""
    return BatchCoordinator(registry, instrumentation=Instrumentation(metrics=metrics))


@pytest_asyncio.fixture
async def seeded_ops(ops):
    """Provide operations over a USER_DATA namespace holding five keys."""
    for i in range(5):
        await ops.create("USER_DATA", f"user{i}", {"n": i})
    return ops


# ============================================================================
# HTTP Fixtures
# ============================================================================

@pytest.fixture
def app(registry):
    """Provide the gateway application over the in-memory registry."""
    return create_app(GatewayConfig(environment="test"), registry=registry)


@pytest.fixture
def client(app):
    """
    Provide a test client.

    Server exceptions are rendered by the app's handlers instead of
    being re-raised into the test.
    """
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


@pytest.fixture
def kv_url():
    """Build KV endpoint paths."""
    def build(*parts: str) -> str:
        return "/api/v1/kv/" + "/".join(parts)
    return build
