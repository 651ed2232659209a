# =============================================================================
# Cascade Ops - Relation Cleanup on Entity Deletion
# =============================================================================
# Removes every relation a deleted entity took part in: the shared relation
# artifacts, all index entries of those relations and any leftover staging
# records. Cleanup is best effort: each deletion class runs independently.
# =============================================================================

from dataclasses import dataclass, field
from typing import Iterable


@dataclass
class CascadeReport:
    """Outcome of a cascade or bulk relation purge."""

    relation_ids: list[str] = field(default_factory=list)
    artifact_locations: list[str] = field(default_factory=list)
    artifacts_deleted: int = 0
    artifacts_missing: int = 0
    index_entries_deleted: int = 0
    staging_records_deleted: int = 0
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


def purge_relations(
    minio,
    mongodb,
    relation_ids: Iterable[str],
    artifact_locations: Iterable[str],
    log,
    report: CascadeReport | None = None,
) -> CascadeReport:
    """
    Delete relation artifacts, index entries and staging records.

    The three deletion classes are attempted independently: a failure in
    one is logged and recorded in the report, and the others still run.
    Every step is idempotent, so a failed purge can simply be retried.

    Args:
        minio: MinIOResource instance
        mongodb: MongoDBResource instance
        relation_ids: Relations to remove
        artifact_locations: s3:// locations of their artifacts
        log: Logger instance
        report: Report to fill in (a new one is created when omitted)

    Returns:
        CascadeReport with counts and per-class errors
    """
    report = report or CascadeReport()
    report.relation_ids = list(dict.fromkeys(relation_ids))
    report.artifact_locations = list(dict.fromkeys(artifact_locations))

    if report.artifact_locations:
        try:
            result = minio.delete_artifacts(report.artifact_locations)
            report.artifacts_deleted = len(result.deleted)
            report.artifacts_missing = len(result.missing)
            if result.failed:
                report.errors["artifacts"] = f"{len(result.failed)} artifact(s) not deleted: {result.failed}"
                log.warning(f"Failed to delete relation artifacts: {result.failed}")
        except Exception as e:
            report.errors["artifacts"] = str(e)
            log.warning(f"Failed to delete relation artifacts: {e}")

    if report.relation_ids:
        try:
            report.index_entries_deleted = mongodb.delete_relation_index_entries(report.relation_ids)
        except Exception as e:
            report.errors["index_entries"] = str(e)
            log.warning(f"Failed to delete relation index entries: {e}")

        try:
            report.staging_records_deleted = mongodb.delete_relation_groups(report.relation_ids)
        except Exception as e:
            report.errors["staging_records"] = str(e)
            log.warning(f"Failed to delete relation staging records: {e}")

    log.info(
        f"Purged {len(report.relation_ids)} relation(s): "
        f"{report.artifacts_deleted} artifact(s) deleted, "
        f"{report.artifacts_missing} already absent, "
        f"{report.index_entries_deleted} index entr(ies), "
        f"{report.staging_records_deleted} staging record(s)"
    )
    return report


def cascade_entity_deletion(
    minio,
    mongodb,
    entity_type: str,
    entity_id: str,
    log,
) -> CascadeReport:
    """
    Remove every relation a deleted entity participates in.

    Flow:
    1. Forward lookup of the entity's index entries -> relation ids
    2. Reverse lookup of every participant of those relations -> artifact
       locations (deduplicated: participants of one relation share one)
    3. Purge artifacts, index entries and staging records

    Other participant entities are left untouched. An entity without
    relation memberships stops after step 1.

    Args:
        minio: MinIOResource instance
        mongodb: MongoDBResource instance
        entity_type: Kind of the deleted entity
        entity_id: Id of the deleted entity
        log: Logger instance

    Returns:
        CascadeReport
    """
    memberships = mongodb.find_relation_index_by_participant(entity_type, entity_id)
    relation_ids = list(dict.fromkeys(entry.relation_id for entry in memberships))

    if not relation_ids:
        log.debug(f"No relation memberships for {entity_type}/{entity_id}")
        return CascadeReport()

    log.info(
        f"Cascading deletion of {entity_type}/{entity_id} "
        f"into {len(relation_ids)} relation(s)"
    )

    entries = mongodb.find_relation_index_by_relation(relation_ids)
    locations = [entry.artifact_location for entry in memberships + entries]

    return purge_relations(minio, mongodb, relation_ids, locations, log)
