# =============================================================================
# Task Status Sensors - Push path of the task lifecycle
# =============================================================================
# Watches analytical_query_job runs and moves the matching task to its
# terminal status. The poll path (get_task_result) goes through the same
# advance_task transition, so whichever arrives second is a no-op.
# =============================================================================

"""Run status sensors that complete asynchronous tasks."""

from datetime import datetime, timezone

from dagster import (
    DagsterRunStatus,
    DefaultSensorStatus,
    RunFailureSensorContext,
    RunStatusSensorContext,
    run_failure_sensor,
    run_status_sensor,
)

from libs.models import TaskStatus

from ..ops.task_ops import advance_task
from ..resources import MongoDBResource


__all__ = ["task_success_sensor", "task_failure_sensor", "task_canceled_sensor"]


# Jobs whose runs are tasks
TRACKED_JOBS = frozenset(["analytical_query_job"])


def _get_mongodb() -> MongoDBResource:
    """Create a MongoDB resource using settings from environment."""
    from libs.models.config import MongoSettings

    settings = MongoSettings()
    return MongoDBResource(
        connection_string=settings.connection_string,
        database=settings.database,
    )


def _get_end_time(context, run_id: str) -> datetime:
    """Accurate end time from Dagster run storage, falling back to now."""
    run_stats = context.instance.get_run_stats(run_id)
    if run_stats and run_stats.end_time:
        return datetime.fromtimestamp(run_stats.end_time, tz=timezone.utc)
    return datetime.now(timezone.utc)


def _handle_run_outcome(context, mongodb, status: TaskStatus) -> bool:
    """
    Advance the task whose id is the finished run's id.

    Returns:
        True if this call performed the transition
    """
    dagster_run = context.dagster_run
    job_name = dagster_run.job_name

    if job_name not in TRACKED_JOBS:
        context.log.debug(f"Skipping untracked job: {job_name}")
        return False

    run_id = dagster_run.run_id
    end_time = _get_end_time(context, run_id)

    context.log.info(f"Run {run_id} finished, advancing task to {status.value}")
    return advance_task(mongodb, run_id, status, end_time, context.log)


@run_status_sensor(
    run_status=DagsterRunStatus.SUCCESS,
    name="task_success_sensor",
    description="Marks tasks SUCCEEDED when their analytical query run succeeds",
    default_status=DefaultSensorStatus.RUNNING,
)
def task_success_sensor(context: RunStatusSensorContext):
    _handle_run_outcome(context, _get_mongodb(), TaskStatus.SUCCEEDED)


@run_failure_sensor(
    name="task_failure_sensor",
    description="Marks tasks FAILED when their analytical query run fails",
    default_status=DefaultSensorStatus.RUNNING,
)
def task_failure_sensor(context: RunFailureSensorContext):
    _handle_run_outcome(context, _get_mongodb(), TaskStatus.FAILED)


@run_status_sensor(
    run_status=DagsterRunStatus.CANCELED,
    name="task_canceled_sensor",
    description="Marks tasks FAILED when their analytical query run is canceled",
    default_status=DefaultSensorStatus.RUNNING,
)
def task_canceled_sensor(context: RunStatusSensorContext):
    _handle_run_outcome(context, _get_mongodb(), TaskStatus.FAILED)
