"""MongoDB Resource - Operational record store, task ledger, catalog and work queue."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from functools import cached_property
from typing import Any, Callable, ClassVar, Dict, Iterable, Optional, TypeVar

from dagster import ConfigurableResource
from pydantic import Field
from pymongo import MongoClient, ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError
from bson import ObjectId
from bson.errors import InvalidId

from libs.models import (
    CatalogEntry,
    CreateResult,
    CreateStatus,
    EntityRecord,
    QueueMessage,
    RelationGroupRecord,
    RelationIndexRecord,
    TaskRecord,
    TaskStatus,
    entity_document_id,
    relation_group_document_id,
    task_document_id,
)

__all__ = ["MongoDBResource"]

T = TypeVar("T")


class MongoDBResource(ConfigurableResource):
    """
    Dagster resource for MongoDB operations.

    MongoDB is the operational store: every record variant (entities,
    relation staging records, relation index entries, tasks) lives in the
    ``records`` collection so a single change stream observes all writes.
    The schema catalog and the work queue live in their own collections.
    """

    connection_string: str = Field(..., description="MongoDB connection URI")
    database: str = Field("data_lake", description="MongoDB database name")

    RECORDS: ClassVar[str] = "records"
    CATALOG: ClassVar[str] = "catalog"
    WORK_QUEUE: ClassVar[str] = "work_queue"

    @cached_property
    def _client(self) -> MongoClient:
        return MongoClient(self.connection_string, tz_aware=True)

    def _get_db(self) -> Database:
        return self._client[self.database]

    def _get_collection(self, name: str) -> Collection:
        return self._get_db()[name]

    @staticmethod
    def _strip_object_id(doc: Dict) -> Dict:
        stripped = dict(doc)
        stripped.pop("_id", None)
        return stripped

    def _create_if_absent(
        self,
        collection_name: str,
        document_id: str,
        document: Dict[str, Any],
        parse: Callable[[Dict], T],
    ) -> CreateResult[T]:
        """
        Insert ``document`` under ``document_id`` unless one already exists.

        The existence check is a fast path; the unique ``_id`` makes the
        insert itself the arbiter between concurrent writers. A writer that
        loses the insert race gets the winner's record back.
        """
        collection = self._get_collection(collection_name)
        existing = collection.find_one({"_id": document_id})
        if existing:
            return CreateResult(CreateStatus.ALREADY_EXISTS, parse(existing))

        try:
            collection.insert_one({"_id": document_id, **document})
        except DuplicateKeyError:
            winner = collection.find_one({"_id": document_id})
            return CreateResult(CreateStatus.RACE_LOST, parse(winner) if winner else None)

        return CreateResult(CreateStatus.CREATED, parse(document))

    # ------------------------------------------------------------------
    # Entity operations
    # ------------------------------------------------------------------

    def put_entity(
        self,
        kind: str,
        entity_id: str,
        attributes: Dict[str, Any],
        *,
        is_relation_participant: bool = True,
    ) -> EntityRecord:
        """
        Create or update an entity.

        ``created_at`` is only written on insert so the entity keeps its
        storage partition across updates.

        Note: Uses model_dump() WITHOUT mode="json" so datetimes are stored
        as BSON dates.
        """
        entity = EntityRecord(
            kind=kind,
            id=entity_id,
            attributes=attributes,
            is_relation_participant=is_relation_participant,
        )
        document = entity.model_dump()
        created_at = document.pop("created_at")

        collection = self._get_collection(self.RECORDS)
        stored = collection.find_one_and_update(
            {"_id": entity.document_id},
            {"$set": document, "$setOnInsert": {"created_at": created_at}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return EntityRecord(**self._strip_object_id(stored))

    def get_entity(self, kind: str, entity_id: str) -> EntityRecord | None:
        """
        Load an entity by kind and id.
        """
        collection = self._get_collection(self.RECORDS)
        document = collection.find_one(
            {"_id": entity_document_id(kind.strip().lower(), entity_id)}
        )
        if not document:
            return None
        return EntityRecord(**self._strip_object_id(document))

    def list_entities(self, kind: str, *, limit: int = 100) -> list[EntityRecord]:
        """
        List entities of one kind, most recently updated first.
        """
        collection = self._get_collection(self.RECORDS)
        cursor = (
            collection.find({"record_type": "entity", "kind": kind.strip().lower()})
            .sort("updated_at", -1)
            .limit(limit)
        )
        return [EntityRecord(**self._strip_object_id(doc)) for doc in cursor]

    def delete_entity(self, kind: str, entity_id: str) -> bool:
        """
        Delete an entity. The change feed takes care of its artifact and
        relation memberships.

        Returns:
            True if a document was deleted
        """
        collection = self._get_collection(self.RECORDS)
        result = collection.delete_one(
            {"_id": entity_document_id(kind.strip().lower(), entity_id)}
        )
        return result.deleted_count > 0

    # ------------------------------------------------------------------
    # Relation staging operations
    # ------------------------------------------------------------------

    def create_relation_group_if_absent(
        self, group: RelationGroupRecord
    ) -> CreateResult[RelationGroupRecord]:
        """
        Conditionally create the staging record for a relation.
        """
        return self._create_if_absent(
            self.RECORDS,
            group.document_id,
            group.model_dump(),
            lambda doc: RelationGroupRecord(**self._strip_object_id(doc)),
        )

    def get_relation_group(self, relation_id: str) -> RelationGroupRecord | None:
        collection = self._get_collection(self.RECORDS)
        document = collection.find_one({"_id": relation_group_document_id(relation_id)})
        if not document:
            return None
        return RelationGroupRecord(**self._strip_object_id(document))

    def delete_relation_groups(self, relation_ids: Iterable[str]) -> int:
        """
        Delete staging records that are still present. Missing ones are
        ignored, so the call is idempotent.

        Returns:
            Number of staging records deleted
        """
        document_ids = [relation_group_document_id(rid) for rid in relation_ids]
        if not document_ids:
            return 0
        collection = self._get_collection(self.RECORDS)
        result = collection.delete_many({"_id": {"$in": document_ids}})
        return result.deleted_count

    def relation_exists(self, relation_id: str) -> bool:
        """
        Whether a relation was already created: its staging record is still
        present, or index entries for it exist.
        """
        collection = self._get_collection(self.RECORDS)
        document = collection.find_one(
            {
                "$or": [
                    {"_id": relation_group_document_id(relation_id)},
                    {"record_type": "relation_index", "relation_id": relation_id},
                ]
            },
            projection={"_id": 1},
        )
        return document is not None

    # ------------------------------------------------------------------
    # Relation index operations
    # ------------------------------------------------------------------

    def put_relation_index_entries(self, entries: Iterable[RelationIndexRecord]) -> int:
        """
        Insert index entries that do not exist yet.

        Entries are keyed by (relation, participant) and written with
        ``$setOnInsert``, so repeating the call never adds or changes rows.

        Returns:
            Number of entries actually inserted
        """
        collection = self._get_collection(self.RECORDS)
        inserted = 0
        for entry in entries:
            result = collection.update_one(
                {"_id": entry.document_id},
                {"$setOnInsert": entry.model_dump()},
                upsert=True,
            )
            if result.upserted_id is not None:
                inserted += 1
        return inserted

    def find_relation_index_by_participant(
        self, participant_type: str, participant_id: str
    ) -> list[RelationIndexRecord]:
        """
        Forward lookup: every index entry of one participant entity.
        """
        collection = self._get_collection(self.RECORDS)
        cursor = collection.find(
            {
                "record_type": "relation_index",
                "participant_type": participant_type.strip().lower(),
                "participant_id": participant_id,
            }
        )
        return [RelationIndexRecord(**self._strip_object_id(doc)) for doc in cursor]

    def find_relation_index_by_relation(
        self, relation_ids: Iterable[str]
    ) -> list[RelationIndexRecord]:
        """
        Reverse lookup: every index entry (every participant) of the given relations.
        """
        relation_ids = list(relation_ids)
        if not relation_ids:
            return []
        collection = self._get_collection(self.RECORDS)
        cursor = collection.find(
            {"record_type": "relation_index", "relation_id": {"$in": relation_ids}}
        )
        return [RelationIndexRecord(**self._strip_object_id(doc)) for doc in cursor]

    def delete_relation_index_entries(self, relation_ids: Iterable[str]) -> int:
        """
        Delete every index entry of the given relations.

        Returns:
            Number of entries deleted
        """
        relation_ids = list(relation_ids)
        if not relation_ids:
            return 0
        collection = self._get_collection(self.RECORDS)
        result = collection.delete_many(
            {"record_type": "relation_index", "relation_id": {"$in": relation_ids}}
        )
        return result.deleted_count

    # ------------------------------------------------------------------
    # Task operations
    # ------------------------------------------------------------------

    def insert_task(self, task: TaskRecord) -> str:
        """
        Persist a new task keyed by the query engine's execution id.

        Raises:
            DuplicateKeyError: If a task with the same id already exists
        """
        collection = self._get_collection(self.RECORDS)
        collection.insert_one({"_id": task.document_id, **task.model_dump()})
        return task.task_id

    def get_task(self, task_id: str) -> TaskRecord | None:
        """
        Load a task by id.
        """
        collection = self._get_collection(self.RECORDS)
        document = collection.find_one({"_id": task_document_id(task_id)})
        if not document:
            return None
        return TaskRecord(**self._strip_object_id(document))

    def advance_task(
        self,
        task_id: str,
        status: TaskStatus,
        finish_time: datetime,
    ) -> TaskRecord | None:
        """
        Move a RUNNING task to a terminal state.

        The update is guarded on ``status == RUNNING``, so only the first
        caller transitions the task; ``finish_time`` is written exactly once.

        Returns:
            The updated task if this call performed the transition, else None
        """
        if not status.is_terminal:
            raise ValueError(f"Tasks can only advance to a terminal state, got {status.value}")

        collection = self._get_collection(self.RECORDS)
        document = collection.find_one_and_update(
            {"_id": task_document_id(task_id), "status": TaskStatus.RUNNING.value},
            {"$set": {"status": status.value, "finish_time": finish_time}},
            return_document=ReturnDocument.AFTER,
        )
        if not document:
            return None
        return TaskRecord(**self._strip_object_id(document))

    def mark_deletion_enqueued(self, task_id: str) -> bool:
        """
        Record that a succeeded deletion task's physical deletion is queued.

        Returns:
            True if the marker was set by this call
        """
        collection = self._get_collection(self.RECORDS)
        result = collection.update_one(
            {"_id": task_document_id(task_id), "deletion_enqueued_at": None},
            {"$set": {"deletion_enqueued_at": datetime.now(timezone.utc)}},
        )
        return result.modified_count > 0

    # ------------------------------------------------------------------
    # Catalog operations
    # ------------------------------------------------------------------

    def get_catalog_entry(self, table_name: str) -> CatalogEntry | None:
        """
        Load a catalog entry. A missing entry is a normal outcome.
        """
        collection = self._get_collection(self.CATALOG)
        document = collection.find_one({"_id": table_name})
        if not document:
            return None
        return CatalogEntry(**self._strip_object_id(document))

    def create_catalog_entry_if_absent(
        self, entry: CatalogEntry
    ) -> CreateResult[CatalogEntry]:
        return self._create_if_absent(
            self.CATALOG,
            entry.table_name,
            entry.model_dump(),
            lambda doc: CatalogEntry(**self._strip_object_id(doc)),
        )

    def list_catalog_entries(self) -> list[CatalogEntry]:
        collection = self._get_collection(self.CATALOG)
        return [
            CatalogEntry(**self._strip_object_id(doc))
            for doc in collection.find().sort("_id", 1)
        ]

    # ------------------------------------------------------------------
    # Work queue operations
    # ------------------------------------------------------------------

    def enqueue(self, queue: str, body: Dict[str, Any], *, message_key: Optional[str] = None) -> str:
        """
        Add a message to a work queue.

        With ``message_key`` the message id is ``{queue}#{message_key}`` and
        the insert is idempotent: enqueuing the same key again while the
        message is still queued changes nothing.

        Returns:
            The message id
        """
        collection = self._get_collection(self.WORK_QUEUE)
        now = datetime.now(timezone.utc)
        document = {
            "queue": queue,
            "body": body,
            "receive_count": 0,
            "enqueued_at": now,
            "visible_at": now,
        }
        if message_key is None:
            return str(collection.insert_one(document).inserted_id)

        message_id = f"{queue}#{message_key}"
        collection.update_one({"_id": message_id}, {"$setOnInsert": document}, upsert=True)
        return message_id

    def receive_messages(
        self,
        queue: str,
        *,
        max_messages: int = 10,
        visibility_timeout_seconds: int = 300,
    ) -> list[QueueMessage]:
        """
        Claim up to ``max_messages`` visible messages.

        A claimed message is hidden for the visibility timeout; if it is not
        acknowledged in time it becomes visible again (at-least-once delivery).
        """
        collection = self._get_collection(self.WORK_QUEUE)
        messages = []
        for _ in range(max_messages):
            now = datetime.now(timezone.utc)
            document = collection.find_one_and_update(
                {"queue": queue, "visible_at": {"$lte": now}},
                {
                    "$set": {"visible_at": now + timedelta(seconds=visibility_timeout_seconds)},
                    "$inc": {"receive_count": 1},
                },
                sort=[("visible_at", 1)],
                return_document=ReturnDocument.AFTER,
            )
            if not document:
                break
            messages.append(
                QueueMessage(message_id=str(document.pop("_id")), **document)
            )
        return messages

    def ack_message(self, message_id: str) -> bool:
        """
        Acknowledge (delete) a processed message.

        Returns:
            True if the message was still present
        """
        try:
            key: Any = ObjectId(message_id)
        except (InvalidId, TypeError):
            key = message_id
        collection = self._get_collection(self.WORK_QUEUE)
        return collection.delete_one({"_id": key}).deleted_count > 0

    # ------------------------------------------------------------------
    # Change feed
    # ------------------------------------------------------------------

    def watch_records(self, resume_after: Optional[Dict[str, Any]] = None):
        """
        Open a change stream on the ``records`` collection.

        Pre-images must be enabled on the collection (migration 001) for
        delete events to carry the removed document.
        """
        collection = self._get_collection(self.RECORDS)
        return collection.watch(
            full_document="updateLookup",
            full_document_before_change="whenAvailable",
            resume_after=resume_after,
        )

    def ping(self) -> bool:
        self._client.admin.command("ping")
        return True
