# =============================================================================
# Data Models Library
# =============================================================================
# Pydantic models and schemas for the data lake sync pipeline.
# =============================================================================

"""
Data models for the data lake sync pipeline.

This library provides:
- Record variants: entities, relation groups, relation index entries, tasks
- Change events from the operational store's change feed
- Catalog entries and work-queue messages
- Configuration models
"""

__version__ = "0.1.0"

# Base types
from .base import (
    EntityId,
    Name,
    UtcDatetime,
    ensure_utc,
    entity_document_id,
    normalize_name,
    relation_group_document_id,
    relation_index_document_id,
    task_document_id,
    utc_now,
)

# Relation models
from .relation import (
    Participant,
    RelationGroupRecord,
    RelationIndexRecord,
    compute_relation_id,
    normalize_participants,
)

# Task models
from .task import (
    TaskRecord,
    TaskStatus,
    TaskType,
)

# Record models
from .record import (
    CreateResult,
    CreateStatus,
    EntityRecord,
    Record,
    StoredRecord,
    parse_stored_record,
)

# Change feed models
from .change import (
    ChangeClassificationError,
    ChangeEvent,
    ChangeOperation,
)

# Catalog models
from .catalog import (
    CatalogColumn,
    CatalogEntry,
    PARTITION_KEYS,
)

# Work queue models
from .queue import (
    DELETION_QUEUE,
    QueueMessage,
)

# Configuration models
from .config import (
    MongoSettings,
)

__all__ = [
    # Base types
    "EntityId",
    "Name",
    "UtcDatetime",
    "ensure_utc",
    "entity_document_id",
    "normalize_name",
    "relation_group_document_id",
    "relation_index_document_id",
    "task_document_id",
    "utc_now",
    # Relation models
    "Participant",
    "RelationGroupRecord",
    "RelationIndexRecord",
    "compute_relation_id",
    "normalize_participants",
    # Task models
    "TaskRecord",
    "TaskStatus",
    "TaskType",
    # Record models
    "CreateResult",
    "CreateStatus",
    "EntityRecord",
    "Record",
    "StoredRecord",
    "parse_stored_record",
    # Change feed models
    "ChangeClassificationError",
    "ChangeEvent",
    "ChangeOperation",
    # Catalog models
    "CatalogColumn",
    "CatalogEntry",
    "PARTITION_KEYS",
    # Work queue models
    "DELETION_QUEUE",
    "QueueMessage",
    # Configuration models
    "MongoSettings",
]
