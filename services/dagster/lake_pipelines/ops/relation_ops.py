# =============================================================================
# Relation Ops - Idempotent Relation Creation
# =============================================================================
# Creates many-to-many relation instances keyed by a content hash of the
# table name and participant set, and writes the relation index entries that
# make each relation discoverable from any participant.
# =============================================================================

from typing import Any, Iterable, Mapping, Tuple, Union

from libs.models import (
    CreateStatus,
    Participant,
    RelationGroupRecord,
    RelationIndexRecord,
    compute_relation_id,
    normalize_name,
    normalize_participants,
)
from libs.s3_utils import build_artifact_key


def build_index_entries(minio, group: RelationGroupRecord) -> list[RelationIndexRecord]:
    """
    One index entry per participant, all pointing at the relation's artifact.

    The artifact location is derived from the staging record's creation
    timestamp, the same way the materializer derives it.
    """
    artifact_location = minio.location_for(
        build_artifact_key(group.table_name, group.created_at, group.relation_id)
    )
    return [
        RelationIndexRecord(
            relation_id=group.relation_id,
            participant_type=participant.entity_type,
            participant_id=participant.entity_id,
            table_name=group.table_name,
            artifact_location=artifact_location,
            created_at=group.created_at,
        )
        for participant in group.participants
    ]


def ensure_index_entries(minio, mongodb, group: RelationGroupRecord, log) -> int:
    """
    Write any index entries a relation is missing.

    Inserts are insert-only, so for a fully indexed relation this writes
    nothing. Repairs relations whose index write failed after the staging
    record was created.

    Returns:
        Number of entries inserted
    """
    inserted = mongodb.put_relation_index_entries(build_index_entries(minio, group))
    if inserted:
        log.warning(
            f"Relation {group.table_name}/{group.relation_id} was missing "
            f"{inserted} index entr{'y' if inserted == 1 else 'ies'}, restored"
        )
    return inserted


def create_relation(
    minio,
    mongodb,
    table_name: str,
    participants: Iterable[Union[Participant, Mapping[str, Any]]],
    payload: Mapping[str, Any] | None,
    log,
) -> Tuple[str, bool]:
    """
    Create a relation instance if it does not exist yet.

    Flow:
    1. Normalize participants (sorted, de-duplicated) and hash them with the
       table name into the relation id
    2. If the staging record is still present, restore any missing index
       entries and return; if only index entries remain (staging record
       consumed), return without writing anything
    3. Conditionally create the staging record; a concurrent writer that
       got there first is not an error, and its index entries are restored
       the same way
    4. On creation, write one index entry per participant

    The change feed then materializes the staging record and deletes it.

    Args:
        minio: MinIOResource instance (for artifact locations)
        mongodb: MongoDBResource instance
        table_name: Relation table name
        participants: Participant models or {entity_type, entity_id} dicts
        payload: Row field values
        log: Logger instance

    Returns:
        Tuple of (relation_id, created)

    Raises:
        ValueError: If there are no participants or the inputs are invalid
    """
    table_name = normalize_name(table_name)
    ordered = normalize_participants(participants)
    relation_id = compute_relation_id(table_name, ordered)

    existing = mongodb.get_relation_group(relation_id)
    if existing is not None:
        log.info(f"Relation {table_name}/{relation_id} already exists")
        ensure_index_entries(minio, mongodb, existing, log)
        return relation_id, False

    if mongodb.relation_exists(relation_id):
        log.info(f"Relation {table_name}/{relation_id} already exists")
        return relation_id, False

    group = RelationGroupRecord(
        relation_id=relation_id,
        table_name=table_name,
        participants=ordered,
        payload=dict(payload or {}),
    )
    result = mongodb.create_relation_group_if_absent(group)

    if result.status is not CreateStatus.CREATED:
        if result.status is CreateStatus.RACE_LOST:
            log.info(f"Relation {table_name}/{relation_id} created concurrently by another writer")
        else:
            log.info(f"Relation {table_name}/{relation_id} already exists")
        ensure_index_entries(minio, mongodb, result.record, log)
        return relation_id, False

    inserted = mongodb.put_relation_index_entries(build_index_entries(minio, group))
    log.info(
        f"Created relation {table_name}/{relation_id} with "
        f"{len(ordered)} participant(s), {inserted} index entr{'y' if inserted == 1 else 'ies'}"
    )
    return relation_id, True
