"""
Structured logging utilities.

Provides:
- Structured JSON logging
- Request ID tracking
- Per-operation duration logging
"""

import json
import logging
import time
from contextvars import ContextVar
from typing import Any

# Context variables for request/operation tracking
request_id_var: ContextVar[str] = ContextVar("request_id", default="")
operation_var: ContextVar[str] = ContextVar("operation", default="")

# Attributes every LogRecord carries; anything else came in through ``extra``
_RESERVED_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs one JSON object per line with:
    - timestamp, level, logger, message
    - request_id and operation (if set)
    - any fields passed through ``extra``
    - exception (if present)
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        operation = operation_var.get()
        if operation:
            log_data["operation"] = operation

        for name, value in vars(record).items():
            if name not in _RESERVED_ATTRS and not name.startswith("_"):
                log_data[name] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class PerformanceLogger:
    """
    Performance logging context manager.

    Logs the start, duration and outcome of a KV operation.

    Example:
        async with PerformanceLogger("kv.get", logger=logger, namespace="USER_DATA", key="u1"):
            result = await adapter.get_with_metadata("u1")
    """

    def __init__(
        self,
        operation: str,
        logger: logging.Logger,
        **context: Any
    ):
        """
        Args:
            operation: Operation name
            logger: Logger instance
            **context: Additional context fields (namespace, key, ...)
        """
        self.operation = operation
        self.logger = logger
        self.context = context
        self.start_time: float | None = None
        self.duration_ms: float | None = None
        self._token = None

    async def __aenter__(self):
        self.start_time = time.perf_counter()
        self._token = operation_var.set(self.operation)

        self.logger.debug(
            f"Starting operation: {self.operation}",
            extra={"event": "operation_start", **self.context}
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = round((time.perf_counter() - self.start_time) * 1000, 2)

        if exc_type:
            # Client errors are expected traffic; store failures are logged where raised
            self.logger.info(
                f"Operation failed: {self.operation}",
                extra={
                    "event": "operation_failed",
                    "duration_ms": self.duration_ms,
                    "error_type": exc_type.__name__,
                    "error": str(exc_val),
                    **self.context
                }
            )
        else:
            self.logger.info(
                f"Operation completed: {self.operation}",
                extra={
                    "event": "operation_completed",
                    "duration_ms": self.duration_ms,
                    **self.context
                }
            )

        operation_var.reset(self._token)


def setup_production_logging(
    level: str = "INFO",
    format: str = "json"
) -> None:
    """
    Configure the root logger with a single console handler.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Format type ("json" or "text")
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()

    if format.lower() == "json":
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
        )

    root_logger.addHandler(handler)
