# =============================================================================
# Relation Models Module
# =============================================================================
# Defines models for many-to-many relations:
# - Participant: one (entity_type, entity_id) member of a relation
# - RelationGroupRecord: ephemeral staging record handed to the materializer
# - RelationIndexRecord: one entry per (relation, participant) pair
# - compute_relation_id: content-addressed relation identifier
# =============================================================================

import hashlib
from typing import Any, Iterable, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .base import (
    EntityId,
    Name,
    UtcDatetime,
    relation_group_document_id,
    relation_index_document_id,
    utc_now,
)

__all__ = [
    "Participant",
    "RelationGroupRecord",
    "RelationIndexRecord",
    "RELATION_ID_LENGTH",
    "RESERVED_RELATION_COLUMNS",
    "normalize_participants",
    "compute_relation_id",
]


RELATION_ID_LENGTH = 32

# Columns the materializer adds to every relation row
RESERVED_RELATION_COLUMNS = frozenset(["relationId", "artifactLocation", "createdAt"])


class Participant(BaseModel):
    """One entity taking part in a relation."""

    model_config = ConfigDict(frozen=True)

    entity_type: Name = Field(..., description="Entity kind of the participant")
    entity_id: EntityId = Field(..., description="Entity id of the participant")

    @property
    def key(self) -> str:
        """Canonical ``type:id`` form used in the relation hash."""
        return f"{self.entity_type}:{self.entity_id}"


def normalize_participants(
    participants: Iterable[Union[Participant, Mapping[str, Any]]],
) -> list[Participant]:
    """
    Canonicalize a participant list.

    Participants are validated, de-duplicated and sorted on
    ``(entity_type, entity_id)`` so that any ordering of the same set yields
    the same list.

    Raises:
        ValueError: If the list is empty
    """
    normalized = {
        p if isinstance(p, Participant) else Participant(**p) for p in participants
    }
    if not normalized:
        raise ValueError("A relation requires at least one participant")
    return sorted(normalized, key=lambda p: (p.entity_type, p.entity_id))


def compute_relation_id(
    table_name: str,
    participants: Iterable[Union[Participant, Mapping[str, Any]]],
) -> str:
    """
    Compute the deterministic relation id.

    ``sha256(table_name + "|" + "|".join("type:id"))`` truncated to 32 hex
    characters. The table name is part of the input so identical participant
    sets in different relation tables never collide.

    Examples:
        >>> a = compute_relation_id("follows", [{"entity_type": "user", "entity_id": "u1"},
        ...                                     {"entity_type": "user", "entity_id": "u2"}])
        >>> b = compute_relation_id("follows", [{"entity_type": "user", "entity_id": "u2"},
        ...                                     {"entity_type": "user", "entity_id": "u1"}])
        >>> a == b
        True
    """
    ordered = normalize_participants(participants)
    hash_input = table_name + "|" + "|".join(p.key for p in ordered)
    return hashlib.sha256(hash_input.encode("utf-8")).hexdigest()[:RELATION_ID_LENGTH]


class RelationGroupRecord(BaseModel):
    """
    Staging record for one relation instance.

    Exists only to hand the relation row to the materializer; the change feed
    consumer deletes it once the artifact is written.
    """

    record_type: Literal["relation_group"] = "relation_group"
    relation_id: str = Field(
        ...,
        pattern=r"^[a-f0-9]{32}$",
        description="Content hash of table name and participants",
    )
    table_name: Name = Field(..., description="Relation table the row belongs to")
    participants: list[Participant] = Field(..., min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict, description="Row field values")
    created_at: UtcDatetime = Field(default_factory=utc_now)

    @field_validator("payload")
    @classmethod
    def _reject_reserved_columns(cls, value: dict[str, Any]) -> dict[str, Any]:
        clashes = RESERVED_RELATION_COLUMNS.intersection(value)
        if clashes:
            raise ValueError(f"Payload uses reserved column(s): {sorted(clashes)}")
        return value

    @classmethod
    def build(
        cls,
        table_name: str,
        participants: Iterable[Union[Participant, Mapping[str, Any]]],
        payload: Mapping[str, Any] | None = None,
    ) -> "RelationGroupRecord":
        """Create a staging record with its relation id computed from the inputs."""
        ordered = normalize_participants(participants)
        return cls(
            relation_id=compute_relation_id(table_name, ordered),
            table_name=table_name,
            participants=ordered,
            payload=dict(payload or {}),
        )

    @property
    def document_id(self) -> str:
        return relation_group_document_id(self.relation_id)


class RelationIndexRecord(BaseModel):
    """
    Index entry linking one participant to one relation.

    Looked up forward by ``(participant_type, participant_id)`` and in reverse
    by ``relation_id``.
    """

    record_type: Literal["relation_index"] = "relation_index"
    relation_id: str = Field(..., description="Relation this entry belongs to")
    participant_type: Name
    participant_id: EntityId
    table_name: Name
    artifact_location: str = Field(..., description="s3:// location of the relation artifact")
    created_at: UtcDatetime = Field(default_factory=utc_now)

    @property
    def document_id(self) -> str:
        return relation_index_document_id(
            self.relation_id, self.participant_type, self.participant_id
        )
