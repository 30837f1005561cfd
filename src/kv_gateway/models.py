"""Pydantic request and result models for KV operations."""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ResultModel(BaseModel):
    """Fields are snake_case in Python and camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_response(self) -> dict[str, Any]:
        """Wire representation; optional fields that were never set are left out."""
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)


# ============================================================================
# Requests
# ============================================================================

class WriteRequest(BaseModel):
    """Body of a create (POST) request."""
    value: Any = Field(None, description="Raw string or any JSON value")
    ttl: Any = Field(None, description="Seconds until the key expires; only positive numbers apply")
    metadata: Optional[dict[str, Any]] = Field(None, description="Metadata stored with the key")

    @property
    def has_value(self) -> bool:
        return "value" in self.model_fields_set


class UpdateRequest(WriteRequest):
    """Body of an update (PUT) request."""
    merge: Any = Field(False, description="Shallow-merge object values into the stored object; only literal true")


class BatchRequest(BaseModel):
    """Body of a batch request; items are validated one by one during execution."""
    operations: Any = Field(None, description="List of {operation, key, value?, ttl?, metadata?}")

    @property
    def has_operations(self) -> bool:
        return "operations" in self.model_fields_set


# ============================================================================
# Results
# ============================================================================

class GetResult(ResultModel):
    namespace: str
    key: str
    value: Any
    metadata: dict[str, Any]
    size: int
    retrieved_at: str


class ListedKey(ResultModel):
    """
    One entry of a listing.

    Plain listings carry name, expiration and metadata. Hydrated listings
    add value and size, or value=None and error when the fetch failed.
    """
    name: str
    value: Any = None
    metadata: Optional[dict[str, Any]] = None
    size: Optional[int] = None
    expiration: Optional[int] = None
    error: Optional[str] = None


class Pagination(ResultModel):
    has_more: bool
    cursor: Optional[str]
    limit: int


class ListFilters(ResultModel):
    prefix: Optional[str]
    include_values: bool


class ListResult(ResultModel):
    namespace: str
    keys: list[ListedKey]
    count: int
    pagination: Pagination
    filters: ListFilters
    retrieved_at: str


class CreateResult(ResultModel):
    namespace: str
    key: str
    value: Any
    metadata: dict[str, Any]
    ttl: Optional[int]
    size: int
    operation: str
    created_at: str


class UpdateResult(ResultModel):
    namespace: str
    key: str
    value: Any
    metadata: dict[str, Any]
    ttl: Optional[int]
    size: int
    operation: str
    merged: bool
    updated_at: str


class DeleteResult(ResultModel):
    namespace: str
    key: str
    operation: str
    deleted_at: str
    message: str


class BatchItemResult(ResultModel):
    """Outcome of one batch item that executed; ``value`` is absent for deletes."""
    index: int
    key: str
    operation: str
    success: bool
    value: Any = None


class BatchItemError(ResultModel):
    """A batch item that failed, with the payload it was submitted with."""
    index: int
    error: str
    operation: Any


class BatchSummary(ResultModel):
    total: int
    successful: int
    failed: int
    results: list[BatchItemResult]
    errors: list[BatchItemError]


class BatchResult(ResultModel):
    namespace: str
    batch_results: BatchSummary
    processed_at: str
