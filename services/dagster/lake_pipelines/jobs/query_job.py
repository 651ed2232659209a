"""Analytical query job: the query engine behind asynchronous tasks."""

from dagster import job

from ..ops.query_ops import execute_analytical_query


@job(
    name="analytical_query_job",
    description=(
        "Executes one analytical statement against the lake and stores the "
        "result under query-results/{run_id}.parquet. Launched through GraphQL "
        "by the task lifecycle; the run id is the task id."
    ),
    tags={"lake/kind": "analytical_query"},
)
def analytical_query_job():
    """Single-op job; the statement is supplied as an op input in run config."""
    execute_analytical_query()
