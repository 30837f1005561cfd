"""
Tests for the HTTP layer.

Tests:
- Success envelopes and status codes per route
- Error envelopes for client errors, missing keys and store failures
- Service endpoints (health, docs, metrics)
- CORS and request id headers
"""

import pytest
from fastapi.testclient import TestClient
from prometheus_client.parser import text_string_to_metric_families

from kv_gateway.adapter import NamespaceRegistry
from kv_gateway.api import create_app
from kv_gateway.config import GatewayConfig, MetricsConfig
from kv_gateway.validation import Namespace

from conftest import FailingKVNamespace


def assert_error_envelope(response, status: int, message: str):
    body = response.json()
    assert response.status_code == status
    assert body["error"] is True
    assert body["status"] == status
    assert body["message"] == message
    assert body["timestamp"].endswith("Z")
    return body


@pytest.mark.unit
class TestCrudRoutes:
    """Test the KV routes end to end over the in-memory store."""

    def test_create_returns_201(self, client, kv_url):
        response = client.post(kv_url("USER_DATA", "user123"), json={
            "value": {"name": "Alice"},
            "ttl": 3600,
            "metadata": {"team": "a"},
        })

        assert response.status_code == 201
        body = response.json()
        assert body["namespace"] == "USER_DATA"
        assert body["key"] == "user123"
        assert body["value"] == {"name": "Alice"}
        assert body["ttl"] == 3600
        assert body["operation"] == "create"
        assert body["size"] == len('{"name":"Alice"}')
        assert body["metadata"]["team"] == "a"
        assert body["metadata"]["createdBy"] == "api"
        assert body["metadata"]["createdAt"] == body["createdAt"]

    def test_get_after_create(self, client, kv_url):
        client.post(kv_url("user_data", "k"), json={"value": [1, 2, 3]})

        response = client.get(kv_url("USER_DATA", "k"))
        assert response.status_code == 200
        body = response.json()
        assert body["value"] == [1, 2, 3]
        assert body["metadata"] == {}
        assert "retrievedAt" in body

    def test_get_missing(self, client, kv_url):
        response = client.get(kv_url("USER_DATA", "ghost"))
        assert_error_envelope(response, 404, "Key 'ghost' not found in USER_DATA")

    def test_invalid_namespace(self, client, kv_url):
        response = client.get(kv_url("ORDERS", "k"))
        assert_error_envelope(
            response, 400,
            "Invalid namespace. Must be one of: USER_DATA, PRODUCT_DATA, CONFIG_DATA, CACHE_DATA, LOG_DATA",
        )

    def test_key_too_long(self, client, kv_url):
        response = client.post(kv_url("USER_DATA", "k" * 257), json={"value": 1})
        assert_error_envelope(response, 400, "Key length cannot exceed 256 characters")

    def test_create_without_value(self, client, kv_url):
        response = client.post(kv_url("USER_DATA", "k"), json={"ttl": 10})
        assert_error_envelope(response, 400, "Value is required")

    def test_create_with_null_value(self, client, kv_url):
        response = client.post(kv_url("USER_DATA", "k"), json={"value": None})
        assert_error_envelope(response, 400, "Value cannot be null or undefined")

    def test_create_with_unencodable_value(self, client, kv_url):
        response = client.post(
            kv_url("USER_DATA", "k"),
            content='{"value": "bad \\ud800"}',
            headers={"Content-Type": "application/json"},
        )
        assert_error_envelope(response, 400, "Value contains invalid Unicode characters")

    def test_string_ttl_ignored(self, client, kv_url):
        response = client.post(kv_url("USER_DATA", "k"), json={"value": 1, "ttl": "60"})
        assert response.status_code == 201
        assert response.json()["ttl"] is None

        listing = client.get(kv_url("USER_DATA")).json()
        assert listing["keys"][0]["expiration"] is None

    def test_float_ttl_truncated(self, client, kv_url):
        response = client.post(kv_url("USER_DATA", "k"), json={"value": 1, "ttl": 1.5})
        assert response.status_code == 201
        assert response.json()["ttl"] == 1

    def test_invalid_json_body(self, client, kv_url):
        response = client.post(
            kv_url("USER_DATA", "k"),
            content="{not json",
            headers={"Content-Type": "application/json"},
        )
        body = assert_error_envelope(response, 400, "Invalid request")
        assert body["details"]["errors"]

    def test_update_merge(self, client, kv_url):
        client.post(kv_url("USER_DATA", "k"), json={"value": {"a": 1, "b": 2}})

        response = client.put(kv_url("USER_DATA", "k"), json={"value": {"b": 3, "c": 4}, "merge": True})
        assert response.status_code == 200
        body = response.json()
        assert body["value"] == {"a": 1, "b": 3, "c": 4}
        assert body["merged"] is True
        assert body["operation"] == "update"
        assert "updatedAt" in body

    def test_update_merge_requires_literal_true(self, client, kv_url):
        client.post(kv_url("USER_DATA", "k"), json={"value": {"a": 1}})

        response = client.put(kv_url("USER_DATA", "k"), json={"value": {"b": 2}, "merge": "true"})
        assert response.status_code == 200
        body = response.json()
        assert body["value"] == {"b": 2}
        assert body["merged"] is False

    def test_update_missing(self, client, kv_url):
        response = client.put(kv_url("USER_DATA", "ghost"), json={"value": 1})
        assert_error_envelope(response, 404, "Key 'ghost' not found in USER_DATA")

    def test_delete(self, client, kv_url):
        client.post(kv_url("USER_DATA", "k"), json={"value": "v"})

        response = client.delete(kv_url("USER_DATA", "k"))
        assert response.status_code == 200
        assert response.json()["message"] == "Key 'k' deleted successfully from USER_DATA"

        assert client.delete(kv_url("USER_DATA", "k")).status_code == 404

    @pytest.mark.parametrize("method", ["POST", "PUT", "DELETE"])
    def test_key_required(self, client, kv_url, method):
        response = client.request(method, kv_url("USER_DATA"))
        assert_error_envelope(response, 400, f"Key is required for {method} operation")


@pytest.mark.unit
class TestListRoute:
    """Test the list route."""

    def test_list_pagination(self, client, kv_url):
        for i in range(5):
            client.post(kv_url("USER_DATA", f"user{i}"), json={"value": i})

        first = client.get(kv_url("USER_DATA"), params={"limit": 2}).json()
        assert first["count"] == 2
        assert first["pagination"]["hasMore"] is True
        assert first["pagination"]["cursor"]

        rest = client.get(
            kv_url("USER_DATA"),
            params={"limit": 10, "cursor": first["pagination"]["cursor"]},
        ).json()
        assert [k["name"] for k in rest["keys"]] == ["user2", "user3", "user4"]
        assert rest["pagination"]["hasMore"] is False

    def test_list_include_values(self, client, kv_url):
        client.post(kv_url("CACHE_DATA", "a"), json={"value": {"x": 1}})

        body = client.get(kv_url("CACHE_DATA"), params={"includeValues": "true"}).json()
        assert body["keys"][0]["value"] == {"x": 1}
        assert body["filters"] == {"prefix": None, "includeValues": True}

    def test_list_include_values_must_be_true(self, client, kv_url):
        client.post(kv_url("CACHE_DATA", "a"), json={"value": 1})

        body = client.get(kv_url("CACHE_DATA"), params={"includeValues": "1"}).json()
        assert "value" not in body["keys"][0]

    def test_list_default_limit(self, client, kv_url):
        body = client.get(kv_url("LOG_DATA")).json()
        assert body["pagination"]["limit"] == 100
        assert body["keys"] == []

    def test_list_non_numeric_limit(self, client, kv_url):
        response = client.get(kv_url("LOG_DATA"), params={"limit": "many"})
        assert_error_envelope(response, 400, "Invalid request")


@pytest.mark.unit
class TestBatchRoute:
    """Test the batch route."""

    def test_batch(self, client, kv_url):
        response = client.post(kv_url("USER_DATA", "batch"), json={"operations": [
            {"operation": "set", "key": "a", "value": {"n": 1}},
            {"operation": "get", "key": "a"},
            {"operation": "fly", "key": "a"},
        ]})

        assert response.status_code == 200
        summary = response.json()["batchResults"]
        assert summary["total"] == 3
        assert summary["successful"] == 2
        assert summary["failed"] == 1
        assert summary["results"][1]["value"] == {"n": 1}
        assert summary["errors"][0] == {
            "index": 2,
            "error": "Unknown operation: fly",
            "operation": {"operation": "fly", "key": "a"},
        }

    def test_batch_missing_operations(self, client, kv_url):
        response = client.post(kv_url("USER_DATA", "batch"), json={})
        assert_error_envelope(response, 400, "Operations are required")

    def test_batch_not_a_list(self, client, kv_url):
        response = client.post(kv_url("USER_DATA", "batch"), json={"operations": {"a": 1}})
        assert_error_envelope(response, 400, "Operations must be an array")

    def test_batch_too_large(self, client, kv_url):
        operations = [{"operation": "delete", "key": f"k{i}"} for i in range(101)]
        response = client.post(kv_url("USER_DATA", "batch"), json={"operations": operations})

        body = assert_error_envelope(response, 400, "Maximum 100 operations per batch")
        assert body["details"] == {"maxOperations": 100, "received": 101}


@pytest.mark.unit
class TestStoreFailureResponses:
    """Test that store failures become opaque 500s."""

    @pytest.fixture
    def failing_client(self):
        registry = NamespaceRegistry({ns: FailingKVNamespace(fail_all=True) for ns in Namespace})
        app = create_app(GatewayConfig(), registry=registry)
        with TestClient(app, raise_server_exceptions=False) as test_client:
            yield test_client

    @pytest.mark.parametrize("method,path_parts,body,message", [
        ("GET", ("USER_DATA", "k"), None, "Failed to retrieve value"),
        ("GET", ("USER_DATA",), None, "Failed to list keys"),
        ("POST", ("USER_DATA", "k"), {"value": 1}, "Failed to set value"),
        ("PUT", ("USER_DATA", "k"), {"value": 1}, "Failed to update value"),
        ("DELETE", ("USER_DATA", "k"), None, "Failed to delete key"),
    ])
    def test_failure_messages(self, failing_client, kv_url, method, path_parts, body, message):
        response = failing_client.request(method, kv_url(*path_parts), json=body)
        assert_error_envelope(response, 500, message)

    def test_batch_items_fail_individually(self, failing_client, kv_url):
        response = failing_client.post(kv_url("USER_DATA", "batch"), json={"operations": [
            {"operation": "get", "key": "a"},
        ]})
        assert response.status_code == 200
        assert response.json()["batchResults"]["failed"] == 1

    def test_unexpected_error(self, app, client, kv_url, monkeypatch):
        async def explode(namespace, key):
            raise RuntimeError("boom")

        monkeypatch.setattr(app.state.operations, "get", explode)
        response = client.get(kv_url("USER_DATA", "k"))
        assert_error_envelope(response, 500, "Failed to retrieve value")


@pytest.mark.unit
class TestServiceRoutes:
    """Test health, docs, metrics and fallback handling."""

    @pytest.mark.parametrize("path", ["/", "/health"])
    def test_health(self, client, path):
        body = client.get(path).json()
        assert body["status"] == "healthy"
        assert body["version"] == "v1"
        assert body["environment"] == "test"
        assert body["availableNamespaces"] == [
            "USER_DATA", "PRODUCT_DATA", "CONFIG_DATA", "CACHE_DATA", "LOG_DATA",
        ]

    @pytest.mark.parametrize("path", ["/docs", "/api-docs"])
    def test_docs(self, client, path):
        body = client.get(path).json()
        assert body["title"] == "KV Gateway CRUD API"
        assert "POST /api/v1/kv/{namespace}/batch" in body["endpoints"]

    def test_metrics(self, client, kv_url):
        client.post(kv_url("USER_DATA", "k"), json={"value": 1})

        response = client.get("/metrics")
        assert response.status_code == 200

        samples = {
            (sample.name, tuple(sorted(sample.labels.items()))): sample.value
            for family in text_string_to_metric_families(response.text)
            for sample in family.samples
        }
        assert samples[("kv_operations_total", (("namespace", "USER_DATA"), ("operation", "create")))] == 1.0
        assert client.app.state.metrics.get_sample(
            "kv_operations_total", {"operation": "create", "namespace": "USER_DATA"}
        ) == 1.0

    def test_metrics_disabled(self):
        app = create_app(GatewayConfig(metrics=MetricsConfig(enabled=False)))
        with TestClient(app) as client:
            assert_error_envelope(client.get("/metrics"), 404, "Endpoint not found")

    def test_unknown_endpoint(self, client):
        assert_error_envelope(client.get("/nope"), 404, "Endpoint not found")

    def test_method_not_allowed(self, client, kv_url):
        assert_error_envelope(client.patch(kv_url("USER_DATA", "k")), 405, "Method not allowed")

    def test_custom_api_version(self):
        app = create_app(GatewayConfig(api_version="v2"))
        with TestClient(app) as client:
            assert client.get("/api/v2/kv/USER_DATA").status_code == 200
            assert client.get("/api/v1/kv/USER_DATA").status_code == 404

    def test_cors_preflight(self, client, kv_url):
        response = client.options(kv_url("USER_DATA", "k"), headers={
            "Origin": "https://app.example",
            "Access-Control-Request-Method": "PUT",
            "Access-Control-Request-Headers": "X-KV-Namespace",
        })
        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"
        assert response.headers["access-control-max-age"] == "86400"
        assert "PUT" in response.headers["access-control-allow-methods"]

    def test_request_id_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-42"})
        assert response.headers["x-request-id"] == "req-42"

    def test_request_id_generated(self, client):
        assert client.get("/health").headers["x-request-id"]
