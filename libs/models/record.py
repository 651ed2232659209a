# =============================================================================
# Record Models Module
# =============================================================================
# Defines the operational record variants and the normalized Record view:
# - EntityRecord: one logical entity version
# - StoredRecord: tagged union over every variant in the `records` collection
# - Record: kind/id/attributes view consumed by the columnar materializer
# - CreateStatus / CreateResult: tri-state outcome of create-if-absent writes
# =============================================================================

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Generic, Literal, Mapping, Optional, TypeVar, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from .base import EntityId, Name, UtcDatetime, entity_document_id, utc_now
from .relation import RelationGroupRecord, RelationIndexRecord
from .task import TaskRecord

__all__ = [
    "EntityRecord",
    "StoredRecord",
    "parse_stored_record",
    "Record",
    "RESERVED_ENTITY_COLUMNS",
    "CreateStatus",
    "CreateResult",
]


# Columns the materializer adds to every entity row
RESERVED_ENTITY_COLUMNS = frozenset(["id", "createdAt", "updatedAt"])


class EntityRecord(BaseModel):
    """
    Entity document stored in the operational store.

    ``created_at`` is written once (``$setOnInsert``) and chooses the storage
    partition for every later version of the entity.
    """

    record_type: Literal["entity"] = "entity"
    kind: Name = Field(..., description="Entity type name")
    id: EntityId = Field(..., description="Entity id, unique within kind")
    attributes: dict[str, Any] = Field(default_factory=dict)
    is_relation_participant: bool = Field(
        True, description="Whether deletes cascade into relation indexes"
    )
    created_at: UtcDatetime = Field(default_factory=utc_now)
    updated_at: UtcDatetime = Field(default_factory=utc_now)

    @field_validator("attributes")
    @classmethod
    def _reject_reserved_columns(cls, value: dict[str, Any]) -> dict[str, Any]:
        clashes = RESERVED_ENTITY_COLUMNS.intersection(value)
        if clashes:
            raise ValueError(f"Attributes use reserved column(s): {sorted(clashes)}")
        return value

    @property
    def document_id(self) -> str:
        return entity_document_id(self.kind, self.id)


StoredRecord = Annotated[
    Union[EntityRecord, RelationGroupRecord, RelationIndexRecord, TaskRecord],
    Field(discriminator="record_type"),
]

_STORED_RECORD_ADAPTER: TypeAdapter = TypeAdapter(StoredRecord)


def parse_stored_record(document: Mapping[str, Any]) -> StoredRecord:
    """
    Parse a raw ``records`` document into its variant model.

    Raises:
        pydantic.ValidationError: If the discriminator is missing/unknown or
            the document does not match its variant
    """
    payload = dict(document)
    payload.pop("_id", None)
    return _STORED_RECORD_ADAPTER.validate_python(payload)


class Record(BaseModel):
    """
    Normalized view of a materializable record.

    Entities and relation groups both reduce to this shape; the artifact file
    name is the entity id, or the relation id for relation groups.

    Attributes:
        kind: Entity type name or relation table name
        id: Entity id (relation id for relation groups)
        attributes: Column values (payload for relation groups)
        created_at: Partition timestamp; None when unknown (delete without
            a before image)
        updated_at: Last modification timestamp (entities only)
        is_relation_participant: Whether deleting this record cascades
        relation_id: Present only for relation groups
    """

    kind: str
    id: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    is_relation_participant: bool = False
    relation_id: Optional[str] = None

    @classmethod
    def from_entity(cls, entity: EntityRecord) -> "Record":
        return cls(
            kind=entity.kind,
            id=entity.id,
            attributes=entity.attributes,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
            is_relation_participant=entity.is_relation_participant,
        )

    @classmethod
    def from_relation_group(cls, group: RelationGroupRecord) -> "Record":
        return cls(
            kind=group.table_name,
            id=group.relation_id,
            attributes=group.payload,
            created_at=group.created_at,
            relation_id=group.relation_id,
        )

    @property
    def is_relation_group(self) -> bool:
        return self.relation_id is not None

    @property
    def artifact_name(self) -> str:
        return self.relation_id if self.relation_id is not None else self.id

    def to_row(self, artifact_location: str) -> dict[str, Any]:
        """Build the single materialized row for this record."""
        if self.is_relation_group:
            return {
                **self.attributes,
                "relationId": self.relation_id,
                "artifactLocation": artifact_location,
                "createdAt": self.created_at,
            }
        return {
            "id": self.id,
            **self.attributes,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


# =============================================================================
# Create-If-Absent Outcome
# =============================================================================

class CreateStatus(str, Enum):
    """Outcome of a conditional create."""

    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    RACE_LOST = "race_lost"


T = TypeVar("T")


@dataclass(frozen=True)
class CreateResult(Generic[T]):
    """
    Result of ``create_if_absent``.

    ``record`` is the new record for CREATED, the stored one for
    ALREADY_EXISTS, and the concurrent winner for RACE_LOST.
    """

    status: CreateStatus
    record: Optional[T]

    @property
    def created(self) -> bool:
        return self.status is CreateStatus.CREATED
