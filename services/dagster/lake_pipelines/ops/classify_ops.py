# =============================================================================
# Classify Ops - Change Feed Routing
# =============================================================================
# Routes change events from the operational store to the materializer and
# the cascade coordinator.
#
# Routes:
#   ENTITY_WRITE          -> materialize the entity
#   RELATION_GROUP_WRITE  -> materialize the relation, restore missing index
#                            entries, consume the staging record
#   ENTITY_DELETE         -> delete the artifact, cascade into relations
#   RELATION_GROUP_DELETE -> staging record consumed, nothing to do
#   SKIP                  -> tasks and relation index entries
# =============================================================================

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from pydantic import ValidationError

from libs.models import (
    ChangeClassificationError,
    ChangeEvent,
    ChangeOperation,
    EntityRecord,
    Record,
    RelationGroupRecord,
    RelationIndexRecord,
    TaskRecord,
    parse_stored_record,
)
from libs.models.base import (
    ENTITY_PREFIX,
    RELATION_GROUP_PREFIX,
    RELATION_INDEX_PREFIX,
    TASK_PREFIX,
)

from .cascade_ops import CascadeReport, cascade_entity_deletion
from .materialize_ops import delete_record_artifact, materialize_record
from .relation_ops import ensure_index_entries


class ChangeRoute(str, Enum):
    ENTITY_WRITE = "ENTITY_WRITE"
    ENTITY_DELETE = "ENTITY_DELETE"
    RELATION_GROUP_WRITE = "RELATION_GROUP_WRITE"
    RELATION_GROUP_DELETE = "RELATION_GROUP_DELETE"
    SKIP = "SKIP"


@dataclass(frozen=True)
class ClassifiedChange:
    """
    A change event with its route and normalized record (None for SKIP).

    Relation group writes also carry the stored staging record.
    """

    route: ChangeRoute
    record: Optional[Record] = None
    document_key: str = ""
    group: Optional[RelationGroupRecord] = None


@dataclass
class BatchReport:
    """Per-route counts and failures for one batch of change events."""

    processed: int = 0
    skipped: int = 0
    failed: int = 0
    routes: dict[str, int] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)


def _record_from_document_key(document_key: str) -> Optional[Record]:
    """Rebuild an entity from its document id when no image is available."""
    prefix, _, rest = document_key.partition("#")
    if prefix != ENTITY_PREFIX:
        return None
    kind, _, entity_id = rest.partition("#")
    if not kind or not entity_id:
        return None
    return Record(kind=kind, id=entity_id, is_relation_participant=True)


def classify_change(event: ChangeEvent) -> ClassifiedChange:
    """
    Decide what a change event means for the lake.

    Raises:
        ChangeClassificationError: If the record shape is not recognized
    """
    image = event.image
    removed = event.operation is ChangeOperation.REMOVE

    if image is None:
        if not removed:
            raise ChangeClassificationError(
                f"{event.operation.value} event for {event.document_key} has no document image"
            )
        # Delete without a before image: classify from the document key alone
        prefix = event.document_key.partition("#")[0]
        if prefix == ENTITY_PREFIX:
            record = _record_from_document_key(event.document_key)
            if record is None:
                raise ChangeClassificationError(
                    f"Cannot rebuild entity from document key {event.document_key!r}"
                )
            return ClassifiedChange(ChangeRoute.ENTITY_DELETE, record, event.document_key)
        if prefix == RELATION_GROUP_PREFIX:
            return ClassifiedChange(ChangeRoute.RELATION_GROUP_DELETE, None, event.document_key)
        if prefix in (RELATION_INDEX_PREFIX, TASK_PREFIX):
            return ClassifiedChange(ChangeRoute.SKIP, None, event.document_key)
        raise ChangeClassificationError(
            f"Unrecognized document key {event.document_key!r}"
        )

    try:
        stored = parse_stored_record(image)
    except ValidationError as e:
        raise ChangeClassificationError(
            f"Unrecognized record shape for {event.document_key}: {e}"
        ) from e

    if isinstance(stored, EntityRecord):
        route = ChangeRoute.ENTITY_DELETE if removed else ChangeRoute.ENTITY_WRITE
        return ClassifiedChange(route, Record.from_entity(stored), event.document_key)

    if isinstance(stored, RelationGroupRecord):
        if removed:
            return ClassifiedChange(
                ChangeRoute.RELATION_GROUP_DELETE,
                Record.from_relation_group(stored),
                event.document_key,
            )
        return ClassifiedChange(
            ChangeRoute.RELATION_GROUP_WRITE,
            Record.from_relation_group(stored),
            event.document_key,
            group=stored,
        )

    if isinstance(stored, (RelationIndexRecord, TaskRecord)):
        return ClassifiedChange(ChangeRoute.SKIP, None, event.document_key)

    raise ChangeClassificationError(
        f"Unhandled record variant {type(stored).__name__} for {event.document_key}"
    )


def process_change(minio, mongodb, event: ChangeEvent, log) -> ChangeRoute:
    """
    Classify and apply one change event.

    Returns:
        The route taken

    Raises:
        ChangeClassificationError: If the event cannot be classified
        Exception: Materializer and storage failures propagate
    """
    classified = classify_change(event)
    record = classified.record

    if classified.route is ChangeRoute.ENTITY_WRITE:
        materialize_record(minio, mongodb, record, log)

    elif classified.route is ChangeRoute.RELATION_GROUP_WRITE:
        materialize_record(minio, mongodb, record, log)
        ensure_index_entries(minio, mongodb, classified.group, log)
        try:
            mongodb.delete_relation_groups([record.relation_id])
        except Exception as e:
            log.warning(f"Failed to delete staging record for relation {record.relation_id}: {e}")

    elif classified.route is ChangeRoute.ENTITY_DELETE:
        delete_record_artifact(minio, record, log)
        if record.is_relation_participant:
            report: CascadeReport = cascade_entity_deletion(
                minio, mongodb, record.kind, record.id, log
            )
            if not report.ok:
                log.warning(
                    f"Cascade for {record.kind}/{record.id} incomplete: {report.errors}"
                )

    elif classified.route is ChangeRoute.RELATION_GROUP_DELETE:
        log.debug(f"Staging record {classified.document_key} consumed")

    return classified.route


def process_changes(minio, mongodb, events: Iterable[ChangeEvent], log) -> BatchReport:
    """
    Apply a batch of change events.

    Each event is handled on its own: a failing event is logged and counted,
    and the rest of the batch still runs.
    """
    report = BatchReport()
    for event in events:
        try:
            route = process_change(minio, mongodb, event, log)
        except ChangeClassificationError as e:
            log.error(f"Dropping unclassifiable change {event.document_key}: {e}")
            report.failed += 1
            report.errors.append(f"{event.document_key}: {e}")
            continue
        except Exception as e:
            log.error(f"Failed to process change {event.document_key}: {e}")
            report.failed += 1
            report.errors.append(f"{event.document_key}: {e}")
            continue

        report.routes[route.value] = report.routes.get(route.value, 0) + 1
        if route is ChangeRoute.SKIP:
            report.skipped += 1
        else:
            report.processed += 1

    return report
