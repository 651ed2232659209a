# =============================================================================
# Change Event Model
# =============================================================================
# Defines the change-feed event consumed by the classifier. Events are built
# from MongoDB change stream documents on the `records` collection.
# =============================================================================

from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field


__all__ = [
    "ChangeOperation",
    "ChangeEvent",
    "ChangeClassificationError",
    "CHANGE_STREAM_OPERATIONS",
]


class ChangeClassificationError(ValueError):
    """Raised when a change event cannot be routed (unrecognized record shape)."""


class ChangeOperation(str, Enum):
    """Operation carried by a change event."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    REMOVE = "REMOVE"


# MongoDB change stream operationType -> ChangeOperation
CHANGE_STREAM_OPERATIONS: dict[str, ChangeOperation] = {
    "insert": ChangeOperation.CREATE,
    "update": ChangeOperation.UPDATE,
    "replace": ChangeOperation.UPDATE,
    "delete": ChangeOperation.REMOVE,
}


class ChangeEvent(BaseModel):
    """
    One mutation of the operational store.

    Attributes:
        operation: CREATE, UPDATE or REMOVE
        document_key: `_id` of the mutated document
        before_image: Document before the change (REMOVE, when available)
        after_image: Document after the change (CREATE/UPDATE)
    """

    operation: ChangeOperation
    document_key: str = Field(..., description="_id of the changed document")
    before_image: Optional[dict[str, Any]] = None
    after_image: Optional[dict[str, Any]] = None

    @classmethod
    def from_change_stream(cls, change: Mapping[str, Any]) -> "ChangeEvent":
        """
        Build an event from a MongoDB change stream document.

        Raises:
            ChangeClassificationError: For operation types other than
                insert/update/replace/delete (drop, invalidate, ...)
        """
        operation_type = change.get("operationType")
        operation = CHANGE_STREAM_OPERATIONS.get(operation_type)
        if operation is None:
            raise ChangeClassificationError(
                f"Unsupported change stream operation: {operation_type!r}"
            )

        document_key = (change.get("documentKey") or {}).get("_id")
        if document_key is None:
            raise ChangeClassificationError("Change event has no documentKey._id")

        return cls(
            operation=operation,
            document_key=str(document_key),
            before_image=change.get("fullDocumentBeforeChange"),
            after_image=change.get("fullDocument"),
        )

    @property
    def image(self) -> Optional[dict[str, Any]]:
        """The record image relevant to the operation."""
        if self.operation is ChangeOperation.REMOVE:
            return self.before_image
        return self.after_image
