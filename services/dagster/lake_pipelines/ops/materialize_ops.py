# =============================================================================
# Materialize Ops - Record to Parquet Artifact
# =============================================================================
# Converts one operational record into a single-row Parquet artifact in the
# date-partitioned lake layout and keeps the schema catalog populated.
# =============================================================================

import pyarrow as pa

from libs.models import CatalogEntry, Record
from libs.normalization import build_record_table, catalog_columns, table_to_parquet_bytes
from libs.s3_utils import build_artifact_key, build_s3_location, table_prefix


def _ensure_catalog_entry(
    mongodb,
    table_name: str,
    location: str,
    schema: pa.Schema,
    log,
) -> CatalogEntry:
    """
    Create the catalog entry for a table if it does not exist.

    The external catalog is checked on every call (no process-local cache).
    An existing entry is never modified: the first-seen schema wins, and a
    drift warning is logged when the new record's columns or types differ.

    Args:
        mongodb: MongoDBResource instance
        table_name: Entity kind or relation table name
        location: s3:// table prefix
        schema: Arrow schema of the record just written
        log: Logger instance

    Returns:
        The catalog entry in effect for the table
    """
    columns = catalog_columns(schema)

    existing = mongodb.get_catalog_entry(table_name)
    if existing is None:
        result = mongodb.create_catalog_entry_if_absent(
            CatalogEntry(table_name=table_name, location=location, columns=columns)
        )
        if result.created:
            log.info(f"Created catalog entry for '{table_name}' with {len(columns)} column(s)")
            return result.record
        existing = result.record

    drift = {
        column.name: (existing.column_types().get(column.name), column.type)
        for column in columns
        if existing.column_types().get(column.name) != column.type
    }
    if drift:
        log.warning(
            f"Schema drift for '{table_name}': catalog keeps first-seen types; "
            f"differences (catalog, record): {drift}"
        )
    return existing


def materialize_record(minio, mongodb, record: Record, log) -> str:
    """
    Write one record as a single-row Parquet artifact.

    The partition comes from ``record.created_at`` so updates overwrite the
    same object; the file name is the entity id (relation id for relation
    groups). Each call performs exactly one object write.

    Args:
        minio: MinIOResource instance
        mongodb: MongoDBResource instance
        record: Normalized record
        log: Logger instance

    Returns:
        s3:// location of the artifact

    Raises:
        ValueError: If the record has no creation timestamp
        Exception: Write failures propagate to the caller
    """
    if record.created_at is None:
        raise ValueError(f"Cannot materialize {record.kind}/{record.id}: created_at is unknown")

    key = build_artifact_key(record.kind, record.created_at, record.artifact_name)
    location = minio.location_for(key)

    table = build_record_table(record.to_row(location))
    minio.put_artifact(key, table_to_parquet_bytes(table))
    log.info(f"Materialized {record.kind}/{record.artifact_name} to {location}")

    _ensure_catalog_entry(
        mongodb,
        record.kind,
        build_s3_location(minio.lake_bucket, table_prefix(record.kind)),
        table.schema,
        log,
    )
    return location


def delete_record_artifact(minio, record: Record, log) -> list[str]:
    """
    Delete the materialized artifact of a removed record.

    When the creation timestamp is unknown the table is searched for the
    artifact name. A missing artifact is logged and treated as deleted.

    Returns:
        Locations that were removed
    """
    if record.created_at is not None:
        locations = [
            minio.location_for(
                build_artifact_key(record.kind, record.created_at, record.artifact_name)
            )
        ]
    else:
        locations = minio.find_artifacts(record.kind, record.artifact_name)
        if not locations:
            log.warning(f"No artifact found for {record.kind}/{record.artifact_name}")

    removed = []
    for location in locations:
        if minio.delete_artifact(location):
            log.info(f"Deleted artifact {location}")
            removed.append(location)
        else:
            log.warning(f"Artifact already absent: {location}")
    return removed
