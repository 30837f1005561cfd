"""
Bounded batch execution.

A batch is a list of at most 100 heterogeneous items executed one after
another in input order. Each item either lands in ``results`` or in
``errors`` with its original index; no item can abort the batch. Batch
writes skip the audit stamping of single-key creates/updates, and batch
deletes do not check that the key exists.
"""

import json
import logging
from typing import Any

from kv_gateway.adapter import NamespaceRegistry, StoreAdapter
from kv_gateway.errors import (
    InvalidBatchError,
    KVGatewayError,
    MissingFieldError,
    UnknownBatchOperationError,
)
from kv_gateway.models import BatchItemError, BatchItemResult, BatchResult, BatchSummary
from kv_gateway.observability import Instrumentation
from kv_gateway.operations import utc_timestamp
from kv_gateway.serialization import decode_batch_value, serialize
from kv_gateway.validation import ValidationLimits, validate_key, validate_value

logger = logging.getLogger(__name__)

BATCH_WRITE_KINDS = ("set", "put")


class BatchCoordinator:
    """
    Executes batch requests against one namespace.

    Example:
        coordinator = BatchCoordinator(registry)
        result = await coordinator.execute("USER_DATA", [
            {"operation": "set", "key": "a", "value": {"n": 1}},
            {"operation": "get", "key": "a"},
            {"operation": "delete", "key": "b"},
        ])
    """

    def __init__(
        self,
        registry: NamespaceRegistry,
        *,
        instrumentation: Instrumentation | None = None,
        max_batch_size: int = ValidationLimits.MAX_BATCH_SIZE,
    ):
        self.registry = registry
        self.instrumentation = instrumentation or Instrumentation()
        self.max_batch_size = max_batch_size

    async def execute(self, namespace: str, operations: Any) -> BatchResult:
        """
        Run every item of a batch.

        Raises:
            InvalidNamespaceError: If the namespace is unknown
            InvalidBatchError: If operations is not a list or is too long;
                nothing is executed in that case
        """
        adapter = self.registry.adapter(namespace)
        ns = adapter.namespace.value

        if not isinstance(operations, list):
            raise InvalidBatchError("Operations must be an array")

        if len(operations) > self.max_batch_size:
            raise InvalidBatchError(
                f"Maximum {self.max_batch_size} operations per batch",
                details={"maxOperations": self.max_batch_size, "received": len(operations)},
            )

        results: list[BatchItemResult] = []
        errors: list[BatchItemError] = []

        async with self.instrumentation.observe("batch", ns):
            for index, op in enumerate(operations):
                try:
                    results.append(await self._execute_item(adapter, index, op))
                except KVGatewayError as e:
                    errors.append(BatchItemError(index=index, error=e.message, operation=op))
                except json.JSONDecodeError as e:
                    errors.append(BatchItemError(index=index, error=f"Stored value is not valid JSON: {e}", operation=op))
                except Exception as e:
                    logger.warning(
                        f"Batch item {index} failed in {ns}: {e}",
                        exc_info=True,
                        extra={"namespace": ns, "index": index},
                    )
                    errors.append(BatchItemError(index=index, error=str(e), operation=op))

        self.instrumentation.metrics.record_batch(ns, successful=len(results), failed=len(errors))

        if errors:
            logger.info(
                f"Batch in {ns} finished with {len(errors)} failed item(s)",
                extra={"namespace": ns, "total": len(operations), "failed": len(errors)},
            )

        return BatchResult(
            namespace=ns,
            batch_results=BatchSummary(
                total=len(operations),
                successful=len(results),
                failed=len(errors),
                results=results,
                errors=errors,
            ),
            processed_at=utc_timestamp(),
        )

    async def _execute_item(self, adapter: StoreAdapter, index: int, op: Any) -> BatchItemResult:
        if not isinstance(op, dict) or not op.get("operation") or not op.get("key"):
            raise MissingFieldError("Operation and key are required")

        key = validate_key(op["key"])
        operation = op["operation"]
        kind = operation.lower() if isinstance(operation, str) else None

        if kind == "get":
            raw = await adapter.get(key)
            return BatchItemResult(
                index=index,
                key=key,
                operation=operation,
                success=raw is not None,
                value=decode_batch_value(raw),
            )

        if kind in BATCH_WRITE_KINDS:
            if "value" not in op:
                raise MissingFieldError("Value is required for set/put operation", field="value")
            value = op["value"]
            validate_value(value)

            await adapter.put(
                key,
                serialize(value),
                metadata=op.get("metadata") or None,
                expiration_ttl=op.get("ttl") or None,
            )
            return BatchItemResult(index=index, key=key, operation=operation, success=True, value=value)

        if kind == "delete":
            await adapter.delete(key)
            return BatchItemResult(index=index, key=key, operation=operation, success=True)

        raise UnknownBatchOperationError(operation)
