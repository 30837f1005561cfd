"""
Observability for KV operations.

Provides:
- OpenTelemetry tracing (one span per KV operation)
- Prometheus metrics: operation counts, error counts, latency histograms
  and batch item outcomes
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

from kv_gateway.logging_utils import PerformanceLogger

logger = logging.getLogger(__name__)


# ============================================================================
# OpenTelemetry Tracing
# ============================================================================

class Tracer:
    """
    Span helper around OpenTelemetry.

    When disabled every span is a no-op. When enabled and no tracer
    provider has been installed yet, a provider tagged with the service
    name is installed; exporters are left to the deployment.
    """

    def __init__(self, service_name: str = "kv-gateway", enabled: bool = True):
        self.service_name = service_name
        self.enabled = enabled
        self._tracer = None

        if enabled:
            if isinstance(trace.get_tracer_provider(), trace.ProxyTracerProvider):
                resource = Resource(attributes={SERVICE_NAME: service_name})
                trace.set_tracer_provider(TracerProvider(resource=resource))
                logger.info(f"OpenTelemetry tracing initialized for {service_name}")
            self._tracer = trace.get_tracer(__name__)

    @asynccontextmanager
    async def span(self, name: str, attributes: Optional[dict[str, Any]] = None):
        """
        Create a traced span for an operation.

        Args:
            name: Span name (e.g., "kv.get", "kv.batch")
            attributes: Span attributes; None values are skipped
        """
        if not self.enabled or self._tracer is None:
            yield None
            return

        with self._tracer.start_as_current_span(name) as span:
            for key, value in (attributes or {}).items():
                if value is None:
                    continue
                span.set_attribute(key, value if isinstance(value, (str, int, float, bool)) else str(value))

            try:
                yield span
                span.set_status(trace.Status(trace.StatusCode.OK))
            except Exception as e:
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                span.record_exception(e)
                raise


# ============================================================================
# Prometheus Metrics
# ============================================================================

class GatewayMetrics:
    """
    Prometheus metrics for the gateway.

    Each instance owns its own ``CollectorRegistry`` so several gateways
    (or tests) can live in one process.

    Tracks:
    - kv_operations_total{operation, namespace}
    - kv_errors_total{operation, namespace, error_type}
    - kv_operation_latency_seconds{operation}
    - kv_batch_items_total{namespace, outcome}
    """

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self.registry = CollectorRegistry()

        self.operations = Counter(
            "kv_operations",
            "KV operations executed",
            ["operation", "namespace"],
            registry=self.registry,
        )
        self.errors = Counter(
            "kv_errors",
            "KV operations that raised",
            ["operation", "namespace", "error_type"],
            registry=self.registry,
        )
        self.latency = Histogram(
            "kv_operation_latency_seconds",
            "KV operation latency",
            ["operation"],
            registry=self.registry,
        )
        self.batch_items = Counter(
            "kv_batch_items",
            "Batch items by outcome",
            ["namespace", "outcome"],
            registry=self.registry,
        )

    def record_operation(
        self,
        operation: str,
        namespace: str,
        latency_ms: float,
        success: bool = True,
        error_type: str | None = None,
    ) -> None:
        """Record one executed operation."""
        if not self.enabled:
            return
        self.operations.labels(operation=operation, namespace=namespace).inc()
        self.latency.labels(operation=operation).observe(latency_ms / 1000)
        if not success:
            self.errors.labels(
                operation=operation,
                namespace=namespace,
                error_type=error_type or "unknown",
            ).inc()

    def record_batch(self, namespace: str, successful: int, failed: int) -> None:
        """Record batch item outcomes."""
        if not self.enabled:
            return
        self.batch_items.labels(namespace=namespace, outcome="success").inc(successful)
        self.batch_items.labels(namespace=namespace, outcome="error").inc(failed)

    def get_sample(self, name: str, labels: dict[str, str]) -> float:
        """Current value of a sample, 0.0 if never recorded."""
        value = self.registry.get_sample_value(name, labels)
        return value if value is not None else 0.0

    def export_prometheus(self) -> bytes:
        """Metrics in the Prometheus text exposition format."""
        return generate_latest(self.registry)


# ============================================================================
# Instrumentation
# ============================================================================

class Instrumentation:
    """
    Tracing, metrics and performance logging for one KV operation.

    Example:
        async with instrumentation.observe("get", "USER_DATA", key="u1"):
            ...
    """

    def __init__(
        self,
        tracer: Tracer | None = None,
        metrics: GatewayMetrics | None = None,
    ):
        self.tracer = tracer or Tracer(enabled=False)
        self.metrics = metrics or GatewayMetrics(enabled=False)

    @asynccontextmanager
    async def observe(self, operation: str, namespace: str, key: str | None = None):
        perf = PerformanceLogger(f"kv.{operation}", logger, namespace=namespace, key=key)
        try:
            async with self.tracer.span(f"kv.{operation}", {"kv.namespace": namespace, "kv.key": key}):
                async with perf:
                    yield
        except Exception as e:
            self.metrics.record_operation(
                operation, namespace, perf.duration_ms or 0.0,
                success=False, error_type=type(e).__name__,
            )
            raise
        self.metrics.record_operation(operation, namespace, perf.duration_ms or 0.0)
