"""FastAPI application exposing the KV gateway over HTTP."""

import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST
from starlette.exceptions import HTTPException as StarletteHTTPException

from kv_gateway import __version__
from kv_gateway.adapter import NamespaceRegistry
from kv_gateway.backends import build_registry
from kv_gateway.batch import BatchCoordinator
from kv_gateway.config import GatewayConfig
from kv_gateway.errors import KVGatewayError, MissingFieldError, StoreUnavailableError
from kv_gateway.logging_utils import request_id_var
from kv_gateway.models import BatchRequest, ResultModel, UpdateRequest, WriteRequest
from kv_gateway.observability import GatewayMetrics, Instrumentation, Tracer
from kv_gateway.operations import KVOperations, utc_timestamp
from kv_gateway.validation import Namespace, ValidationLimits

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================================================
# Envelopes
# ============================================================================

def error_response(message: str, status: int, details: Optional[Any] = None) -> JSONResponse:
    """Error envelope: {error, message, status, timestamp, details?}."""
    content: dict[str, Any] = {
        "error": True,
        "message": message,
        "status": status,
        "timestamp": utc_timestamp(),
    }
    if details:
        content["details"] = details
    return JSONResponse(status_code=status, content=content)


def success_response(result: ResultModel, status: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status, content=result.to_response())


async def run_operation(call: Awaitable[ResultModel], failure_message: str, status: int = 200) -> JSONResponse:
    """
    Await a KV operation and wrap its result.

    Store failures and unexpected errors become an opaque 500 carrying
    ``failure_message``; client errors propagate to the exception handlers.
    """
    try:
        result = await call
    except StoreUnavailableError:
        return error_response(failure_message, 500)
    except KVGatewayError:
        raise
    except Exception:
        logger.exception(failure_message)
        return error_response(failure_message, 500)
    return success_response(result, status)


# ============================================================================
# Dependencies
# ============================================================================

def get_operations(request: Request) -> KVOperations:
    return request.app.state.operations


def get_batch(request: Request) -> BatchCoordinator:
    return request.app.state.batch


# ============================================================================
# KV routes
# ============================================================================

@router.get("/{namespace}")
async def list_keys(
    namespace: str,
    limit: int = Query(ValidationLimits.DEFAULT_LIST_LIMIT, description="Page size, at most 1000"),
    prefix: Optional[str] = Query(None),
    cursor: Optional[str] = Query(None),
    include_values: Optional[str] = Query(None, alias="includeValues"),
    ops: KVOperations = Depends(get_operations),
):
    """List keys in a namespace"""
    return await run_operation(
        ops.list(
            namespace,
            limit=limit,
            prefix=prefix,
            cursor=cursor,
            include_values=include_values == "true",
        ),
        "Failed to list keys",
    )


@router.get("/{namespace}/{key}")
async def get_value(namespace: str, key: str, ops: KVOperations = Depends(get_operations)):
    """Get a value by key"""
    return await run_operation(ops.get(namespace, key), "Failed to retrieve value")


@router.post("/{namespace}/batch")
async def batch_operations(
    namespace: str,
    body: BatchRequest,
    batch: BatchCoordinator = Depends(get_batch),
):
    """Execute up to 100 get/set/put/delete operations"""
    if not body.has_operations:
        raise MissingFieldError("Operations are required", field="operations")
    return await run_operation(
        batch.execute(namespace, body.operations),
        "Failed to process batch operations",
    )


@router.post("/{namespace}/{key}")
async def create_value(
    namespace: str,
    key: str,
    body: WriteRequest,
    ops: KVOperations = Depends(get_operations),
):
    """Create a key-value pair"""
    if not body.has_value:
        raise MissingFieldError("Value is required", field="value")
    return await run_operation(
        ops.create(namespace, key, body.value, ttl=body.ttl, metadata=body.metadata),
        "Failed to set value",
        status=201,
    )


@router.put("/{namespace}/{key}")
async def update_value(
    namespace: str,
    key: str,
    body: UpdateRequest,
    ops: KVOperations = Depends(get_operations),
):
    """Update an existing key-value pair"""
    if not body.has_value:
        raise MissingFieldError("Value is required", field="value")
    return await run_operation(
        ops.update(
            namespace,
            key,
            body.value,
            ttl=body.ttl,
            metadata=body.metadata,
            merge=body.merge,
        ),
        "Failed to update value",
    )


@router.delete("/{namespace}/{key}")
async def delete_value(namespace: str, key: str, ops: KVOperations = Depends(get_operations)):
    """Delete a key"""
    return await run_operation(ops.delete(namespace, key), "Failed to delete key")


@router.api_route("/{namespace}", methods=["POST", "PUT", "DELETE"], include_in_schema=False)
async def missing_key(request: Request, namespace: str):
    return error_response(f"Key is required for {request.method} operation", 400)


# ============================================================================
# Service routes
# ============================================================================

service_router = APIRouter()


def _health_payload(request: Request) -> dict[str, Any]:
    config: GatewayConfig = request.app.state.config
    return {
        "status": "healthy",
        "version": config.api_version,
        "environment": config.environment,
        "timestamp": utc_timestamp(),
        "availableNamespaces": Namespace.names(),
    }


@service_router.get("/")
async def root(request: Request):
    """Root endpoint"""
    return _health_payload(request)


@service_router.get("/health")
async def health(request: Request):
    """Health check endpoint"""
    return _health_payload(request)


@service_router.get("/docs")
@service_router.get("/api-docs")
async def api_docs(request: Request):
    """API description"""
    config: GatewayConfig = request.app.state.config
    prefix = config.api_prefix
    return {
        "title": "KV Gateway CRUD API",
        "version": config.api_version,
        "description": "CRUD and batch operations over multiple KV namespaces",
        "endpoints": {
            f"GET {prefix}/{{namespace}}": "List keys in namespace",
            f"GET {prefix}/{{namespace}}/{{key}}": "Get value by key",
            f"POST {prefix}/{{namespace}}/{{key}}": "Create/overwrite key-value pair",
            f"PUT {prefix}/{{namespace}}/{{key}}": "Update existing key-value pair",
            f"DELETE {prefix}/{{namespace}}/{{key}}": "Delete key",
            f"POST {prefix}/{{namespace}}/batch": "Batch operations",
        },
        "namespaces": Namespace.names(),
        "examples": {
            "create": f"POST {prefix}/USER_DATA/user123 with JSON body",
            "read": f"GET {prefix}/USER_DATA/user123",
            "update": f"PUT {prefix}/USER_DATA/user123 with JSON body",
            "delete": f"DELETE {prefix}/USER_DATA/user123",
            "list": f"GET {prefix}/USER_DATA?limit=10&prefix=user",
        },
    }


@service_router.get("/metrics", include_in_schema=False)
async def metrics(request: Request):
    """Prometheus metrics"""
    gateway_metrics: GatewayMetrics = request.app.state.metrics
    if not gateway_metrics.enabled:
        return error_response("Endpoint not found", 404)
    return Response(content=gateway_metrics.export_prometheus(), media_type=CONTENT_TYPE_LATEST)


# ============================================================================
# Application factory
# ============================================================================

def create_app(
    config: GatewayConfig | None = None,
    registry: NamespaceRegistry | None = None,
) -> FastAPI:
    """
    Build the gateway application.

    Args:
        config: Gateway configuration (defaults: memory backend, v1)
        registry: Namespace -> store mapping; built from config if omitted
    """
    config = config or GatewayConfig()
    registry = registry or build_registry(config)

    gateway_metrics = GatewayMetrics(enabled=config.metrics.enabled)
    instrumentation = Instrumentation(
        tracer=Tracer(service_name="kv-gateway", enabled=config.metrics.tracing_enabled),
        metrics=gateway_metrics,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            f"KV gateway starting ({config.environment}, backend={config.backend}, prefix={config.api_prefix})"
        )
        yield
        await registry.aclose()

    app = FastAPI(
        title="KV Gateway",
        description="HTTP gateway over multi-namespace key-value stores",
        version=__version__,
        docs_url="/openapi-docs",
        redoc_url=None,
        lifespan=lifespan,
    )

    app.state.config = config
    app.state.registry = registry
    app.state.metrics = gateway_metrics
    app.state.operations = KVOperations(registry, actor=config.actor, instrumentation=instrumentation)
    app.state.batch = BatchCoordinator(registry, instrumentation=instrumentation)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors.allow_origins,
        allow_methods=config.cors.allow_methods,
        allow_headers=config.cors.allow_headers,
        max_age=config.cors.max_age,
    )

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        token = request_id_var.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(KVGatewayError)
    async def gateway_error_handler(request: Request, exc: KVGatewayError):
        return error_response(exc.message, exc.status_code, exc.details)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg"), "type": err.get("type")}
            for err in exc.errors()
        ]
        return error_response("Invalid request", 400, {"errors": errors})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return error_response("Endpoint not found", 404)
        if exc.status_code == 405:
            return error_response("Method not allowed", 405)
        return error_response(str(exc.detail), exc.status_code)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error")
        return error_response(str(exc) if config.debug else "Internal server error", 500)

    app.include_router(service_router, tags=["Service"])
    app.include_router(router, prefix=config.api_prefix, tags=["KV"])

    return app
