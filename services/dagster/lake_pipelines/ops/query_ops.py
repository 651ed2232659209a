# =============================================================================
# Query Ops - Analytical Statement Execution
# =============================================================================
# Runs one SQL statement against the lake with DuckDB. Every catalog table is
# exposed as a view over its partitioned Parquet artifacts; the result is
# written to query-results/{run_id}.parquet where the task lifecycle reads it.
# =============================================================================

from typing import Any, Dict

import duckdb
from dagster import In, OpExecutionContext, Out, op

from libs.normalization import table_to_parquet_bytes
from libs.s3_utils import build_s3_location, table_prefix

from .duckdb_settings import build_duckdb_query_settings


def _register_catalog_views(conn, mongodb, lake_bucket: str, log) -> list[str]:
    """
    Create one view per catalog table.

    A table whose artifacts cannot be read (e.g. all records deleted) is
    skipped with a warning; statements that do not touch it still run.

    Returns:
        Names of the registered views
    """
    registered = []
    for entry in mongodb.list_catalog_entries():
        pattern = build_s3_location(lake_bucket, f"{table_prefix(entry.table_name)}**/*.parquet")
        try:
            conn.execute(
                f'CREATE OR REPLACE VIEW "{entry.table_name}" AS '
                f"SELECT * FROM read_parquet('{pattern}', "
                f"hive_partitioning = true, union_by_name = true)"
            )
        except duckdb.Error as e:
            log.warning(f"Could not register view for table '{entry.table_name}': {e}")
            continue
        registered.append(entry.table_name)
    return registered


def _execute_analytical_query(
    minio,
    mongodb,
    statement: str,
    run_id: str,
    log,
) -> Dict[str, Any]:
    """
    Execute a statement and store its result.

    Args:
        minio: MinIOResource instance
        mongodb: MongoDBResource instance (catalog)
        statement: SQL statement, already bound and rewritten
        run_id: Execution id; names the result object
        log: Logger instance

    Returns:
        Dict with task_id, result_location and row_count

    Raises:
        duckdb.Error: If the statement fails (the run fails with it)
    """
    settings = build_duckdb_query_settings(minio=minio)

    conn = duckdb.connect(":memory:")
    try:
        conn.execute("INSTALL httpfs")
        conn.execute("LOAD httpfs")
        for setting in settings.statements():
            conn.execute(setting)

        views = _register_catalog_views(conn, mongodb, minio.lake_bucket, log)
        log.info(f"Registered {len(views)} table view(s): {views}")

        log.info(f"Executing statement for run {run_id}: {statement}")
        result = conn.execute(statement).fetch_arrow_table()
    finally:
        conn.close()

    location = minio.put_query_result(run_id, table_to_parquet_bytes(result))
    log.info(f"Stored {result.num_rows} row(s) at {location}")

    return {
        "task_id": run_id,
        "result_location": location,
        "row_count": result.num_rows,
    }


@op(
    ins={"statement": In(dagster_type=str)},
    out={"query_result": Out(dagster_type=dict)},
    required_resource_keys={"minio", "mongodb"},
)
def execute_analytical_query(context: OpExecutionContext, statement: str) -> dict:
    """
    Execute an analytical statement submitted through the query engine.

    The statement arrives as an op input in the run config; the run id is
    the task id tracked by the task lifecycle.
    """
    return _execute_analytical_query(
        context.resources.minio,
        context.resources.mongodb,
        statement,
        context.run_id,
        context.log,
    )
