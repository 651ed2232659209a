# =============================================================================
# Base Types Module
# =============================================================================
# Shared validated types and helpers used by every record model:
# - Name: lowercase identifier for entity kinds, relation tables, types
# - EntityId: non-empty identifier safe to embed in object keys
# - UtcDatetime: datetime normalized to UTC
# - Document id builders for the operational `records` collection
# =============================================================================

import re
from datetime import datetime, timezone
from typing import Annotated

from pydantic import AfterValidator, BeforeValidator

__all__ = [
    "Name",
    "EntityId",
    "UtcDatetime",
    "normalize_name",
    "validate_entity_id",
    "ensure_utc",
    "utc_now",
    "ENTITY_PREFIX",
    "RELATION_GROUP_PREFIX",
    "RELATION_INDEX_PREFIX",
    "TASK_PREFIX",
    "entity_document_id",
    "relation_group_document_id",
    "relation_index_document_id",
    "task_document_id",
]


_NAME_PATTERN = re.compile(r"^[a-z_][a-z0-9_]*$")


def normalize_name(value: str) -> str:
    """
    Normalize an entity kind, relation table or participant type name.

    Names end up in object keys, document ids and SQL view names, so they are
    lowercased and restricted to ``[a-z0-9_]`` (not starting with a digit).

    Raises:
        TypeError: If the value is not a string
        ValueError: If the name is empty or contains other characters
    """
    if not isinstance(value, str):
        raise TypeError(f"Name must be a string, got {type(value).__name__}")

    value = value.strip().lower()
    if not value:
        raise ValueError("Name cannot be empty")
    if not _NAME_PATTERN.match(value):
        raise ValueError(
            f"Invalid name '{value}': use letters, digits and underscores only"
        )
    return value


def validate_entity_id(value: str) -> str:
    """Entity ids are used as artifact file names, so '/' is rejected."""
    if not isinstance(value, str):
        raise TypeError(f"Entity id must be a string, got {type(value).__name__}")

    value = value.strip()
    if not value:
        raise ValueError("Entity id cannot be empty")
    if "/" in value:
        raise ValueError(f"Entity id cannot contain '/': '{value}'")
    return value


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


Name = Annotated[str, BeforeValidator(normalize_name)]
EntityId = Annotated[str, BeforeValidator(validate_entity_id)]
UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]


# =============================================================================
# Document Ids
# =============================================================================
# Every record variant shares one collection; the prefix keeps the key spaces
# apart and lets a delete event be classified from its key alone.

ENTITY_PREFIX = "entity"
RELATION_GROUP_PREFIX = "relation"
RELATION_INDEX_PREFIX = "relation_index"
TASK_PREFIX = "task"


def entity_document_id(kind: str, entity_id: str) -> str:
    return f"{ENTITY_PREFIX}#{kind}#{entity_id}"


def relation_group_document_id(relation_id: str) -> str:
    return f"{RELATION_GROUP_PREFIX}#{relation_id}"


def relation_index_document_id(
    relation_id: str, participant_type: str, participant_id: str
) -> str:
    return f"{RELATION_INDEX_PREFIX}#{relation_id}#{participant_type}#{participant_id}"


def task_document_id(task_id: str) -> str:
    return f"{TASK_PREFIX}#{task_id}"
