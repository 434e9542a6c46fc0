"""
Pydantic schema for Shopify bulk operations
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.exceptions import BulkConflictError, UnexpectedResponseError
from models.base import BulkOperationStatus

API_NAME = "Shopify"

BULK_OPERATION_FIELDS = (
    "id",
    "status",
    "errorCode",
    "createdAt",
    "completedAt",
    "objectCount",
    "rootObjectCount",
    "fileSize",
    "url",
    "partialDataUrl",
)

RUNNING_STATUSES = (BulkOperationStatus.CREATED, BulkOperationStatus.RUNNING)
CANCELED_STATUSES = (BulkOperationStatus.CANCELED, BulkOperationStatus.CANCELING)
DEAD_STATUSES = (
    BulkOperationStatus.CANCELED,
    BulkOperationStatus.CANCELING,
    BulkOperationStatus.EXPIRED,
    BulkOperationStatus.FAILED,
)


class BulkOperation(BaseModel):
    """One bulk operation as reported by the Admin API."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    status: str
    error_code: Optional[str] = Field(None, alias="errorCode")
    created_at: Optional[str] = Field(None, alias="createdAt")
    completed_at: Optional[str] = Field(None, alias="completedAt")
    object_count: Optional[int] = Field(None, alias="objectCount")
    root_object_count: Optional[int] = Field(None, alias="rootObjectCount")
    file_size: Optional[int] = Field(None, alias="fileSize")
    url: Optional[str] = None
    partial_data_url: Optional[str] = Field(None, alias="partialDataUrl")
    user_errors: List[Dict[str, Any]] = Field(default_factory=list)

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v):
        return str(v or "").upper()

    @property
    def is_complete(self) -> bool:
        return self.status == BulkOperationStatus.COMPLETED.value

    @property
    def is_running(self) -> bool:
        return self.status in [s.value for s in RUNNING_STATUSES]

    @property
    def is_canceled(self) -> bool:
        return self.status in [s.value for s in CANCELED_STATUSES]

    @property
    def is_dead(self) -> bool:
        return self.status in [s.value for s in DEAD_STATUSES]

    @property
    def is_empty_result(self) -> bool:
        return self.is_complete and not self.url and not self.object_count

    @classmethod
    def from_response(cls, body: Any) -> "BulkOperation":
        """
        Parse a submit or poll response.

        The operation may sit at the root, under ``data.node``,
        ``data.bulkOperationRunQuery.bulkOperation`` or
        ``data.currentBulkOperation``. Errors with no operation raise
        ``BulkConflictError``.
        """
        if not isinstance(body, dict):
            raise UnexpectedResponseError(API_NAME, "Bulk operation response was not an object")

        data = body.get("data") or {}
        run_query = data.get("bulkOperationRunQuery") or {}
        user_errors = list(run_query.get("userErrors") or [])

        if "id" in body and "status" in body:
            node = body
        else:
            node = (
                data.get("node")
                or run_query.get("bulkOperation")
                or data.get("currentBulkOperation")
            )

        if not node:
            errors = list(body.get("errors") or []) or user_errors
            if errors:
                raise BulkConflictError(errors)
            raise UnexpectedResponseError(API_NAME, "No bulk operation found in response")

        try:
            return cls.model_validate({**node, "user_errors": user_errors})
        except ValueError as e:
            raise UnexpectedResponseError(
                API_NAME,
                "Bulk operation response was missing required fields",
                context={"keys": sorted(node) if isinstance(node, dict) else None},
                original_exception=e
            )


def build_run_query_mutation(query: str) -> str:
    fields = "\n".join(BULK_OPERATION_FIELDS)
    return (
        "mutation {\n"
        f'bulkOperationRunQuery(query: """{{\n{query}\n}}""") {{\n'
        f"bulkOperation {{\n{fields}\n}}\n"
        "userErrors {\nfield\nmessage\n}\n"
        "}\n"
        "}"
    )


def build_status_query(operation_id: str) -> str:
    fields = "\n".join(BULK_OPERATION_FIELDS)
    return (
        "query {\n"
        f'node(id: "{operation_id}") {{\n'
        f"... on BulkOperation {{\n{fields}\n}}\n"
        "}\n"
        "}"
    )
