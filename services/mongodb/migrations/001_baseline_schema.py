"""
Migration 001: Baseline Schema

Establishes the operational store for the data lake sync pipeline:
- records: entities, relation staging records, relation index entries and
  tasks, discriminated by record_type. Change stream pre/post images are
  enabled so delete events carry the removed document.
- catalog: one entry per lake table (first-seen schema)
- work_queue: at-least-once messages with a visibility timeout

Schema constants are FROZEN - do not modify. Create new migration for changes.
"""

from pymongo.database import Database
from pymongo.errors import CollectionInvalid

VERSION = "001"

# =============================================================================
# FROZEN SCHEMA CONSTANTS - DO NOT MODIFY
# =============================================================================

RECORDS_SCHEMA_V001 = {
    "$jsonSchema": {
        "bsonType": "object",
        "required": ["record_type"],
        "properties": {
            "record_type": {
                "enum": ["entity", "relation_group", "relation_index", "task"],
            },
            "kind": {"bsonType": "string"},
            "id": {"bsonType": "string"},
            "attributes": {"bsonType": "object"},
            "is_relation_participant": {"bsonType": "bool"},
            "relation_id": {"bsonType": "string", "pattern": "^[a-f0-9]{32}$"},
            "table_name": {"bsonType": "string"},
            "participants": {
                "bsonType": "array",
                "minItems": 1,
                "items": {
                    "bsonType": "object",
                    "required": ["entity_type", "entity_id"],
                    "properties": {
                        "entity_type": {"bsonType": "string"},
                        "entity_id": {"bsonType": "string"},
                    },
                },
            },
            "payload": {"bsonType": "object"},
            "participant_type": {"bsonType": "string"},
            "participant_id": {"bsonType": "string"},
            "artifact_location": {"bsonType": "string", "pattern": "^s3://"},
            "task_id": {"bsonType": "string"},
            "task_type": {"enum": ["query_task", "deletion_task"]},
            "status": {"enum": ["RUNNING", "SUCCEEDED", "FAILED"]},
            "start_time": {"bsonType": "date"},
            "finish_time": {"bsonType": ["date", "null"]},
            "created_at": {"bsonType": "date"},
            "updated_at": {"bsonType": "date"},
        },
    }
}

CATALOG_SCHEMA_V001 = {
    "$jsonSchema": {
        "bsonType": "object",
        "required": ["table_name", "location", "columns", "created_at"],
        "properties": {
            "table_name": {"bsonType": "string"},
            "location": {"bsonType": "string", "pattern": "^s3://"},
            "columns": {
                "bsonType": "array",
                "items": {
                    "bsonType": "object",
                    "required": ["name", "type"],
                    "properties": {
                        "name": {"bsonType": "string"},
                        "type": {"bsonType": "string"},
                    },
                },
            },
            "partition_keys": {"bsonType": "array"},
            "table_format": {"bsonType": "string"},
            "created_at": {"bsonType": "date"},
        },
    }
}

WORK_QUEUE_SCHEMA_V001 = {
    "$jsonSchema": {
        "bsonType": "object",
        "required": ["queue", "body", "receive_count", "enqueued_at", "visible_at"],
        "properties": {
            "queue": {"bsonType": "string"},
            "body": {"bsonType": "object"},
            "receive_count": {"bsonType": "int", "minimum": 0},
            "enqueued_at": {"bsonType": "date"},
            "visible_at": {"bsonType": "date"},
        },
    }
}


def _create_or_update(db: Database, name: str, validator: dict, **options) -> None:
    try:
        db.create_collection(
            name,
            validator=validator,
            validationLevel="strict",
            validationAction="error",
            **options,
        )
    except CollectionInvalid:
        db.command(
            "collMod",
            name,
            validator=validator,
            validationLevel="strict",
            validationAction="error",
            **options,
        )


def up(db: Database) -> None:
    """Apply baseline schema migration."""

    # Records collection (change feed source)
    _create_or_update(
        db,
        "records",
        RECORDS_SCHEMA_V001,
        changeStreamPreAndPostImages={"enabled": True},
    )

    db.records.create_index([("record_type", 1)], name="record_type_idx")
    db.records.create_index(
        [("record_type", 1), ("kind", 1), ("updated_at", -1)],
        name="entity_kind_idx",
    )
    db.records.create_index([("relation_id", 1)], name="relation_id_idx", sparse=True)
    db.records.create_index(
        [("participant_type", 1), ("participant_id", 1)],
        name="participant_idx",
        sparse=True,
    )
    db.records.create_index([("task_id", 1)], name="task_id_idx", sparse=True)

    # Catalog collection (_id is the table name)
    _create_or_update(db, "catalog", CATALOG_SCHEMA_V001)

    # Work queue collection
    _create_or_update(db, "work_queue", WORK_QUEUE_SCHEMA_V001)

    db.work_queue.create_index([("queue", 1), ("visible_at", 1)], name="queue_visible_idx")


def down(db: Database) -> None:
    """
    Rollback migration (best effort).

    Note: This is destructive - drops all collections.
    Only use in development when resetting to clean state.
    """
    for collection_name in ["records", "catalog", "work_queue"]:
        if collection_name in db.list_collection_names():
            db.drop_collection(collection_name)
