"""Change feed sensor: keeps the lake in sync with the operational store.

Tails the MongoDB change stream of the `records` collection and plans one
batch per tick. A batch is the resume token it starts at plus the number of
events behind it; change_feed_sync_job replays and applies it. The stream's
resume token after the batch is stored in the sensor cursor, so every tick
continues exactly where the previous batch stopped.

Only one batch is in flight at a time so that events are applied in stream
order.
"""

import os

from dagster import (
    DagsterRunStatus,
    DefaultSensorStatus,
    RunRequest,
    RunsFilter,
    SensorEvaluationContext,
    SkipReason,
    sensor,
)

from ..jobs import change_feed_sync_job
from ..ops.sync_ops import build_cursor, parse_cursor
from ..resources import MongoDBResource


DEFAULT_MAX_EVENTS = 500

ACTIVE_RUN_STATUSES = [
    DagsterRunStatus.QUEUED,
    DagsterRunStatus.NOT_STARTED,
    DagsterRunStatus.STARTING,
    DagsterRunStatus.STARTED,
]


def max_events_per_tick() -> int:
    """
    Batch size per tick from CHANGE_FEED_MAX_EVENTS.

    Defaults to 500 when unset or invalid.
    """
    env_value = os.getenv("CHANGE_FEED_MAX_EVENTS", "").strip()
    try:
        value = int(env_value)
    except ValueError:
        return DEFAULT_MAX_EVENTS
    return value if value > 0 else DEFAULT_MAX_EVENTS


def plan_change_batch(mongodb, cursor: str | None, max_events: int):
    """
    Count the events waiting after ``cursor`` without applying them.

    With no usable cursor the stream is opened at "now" and only its current
    resume token is returned, so the feed starts without a backfill.

    Returns:
        Tuple of (event count, cursor after the counted events)
    """
    start = parse_cursor(cursor)
    count = 0
    with mongodb.watch_records(resume_after=start) as stream:
        if start is not None:
            while count < max_events and stream.try_next() is not None:
                count += 1
        end = stream.resume_token
    return count, build_cursor(end)


def build_batch_run_request(start_cursor: str, end_cursor: str, event_count: int) -> RunRequest:
    """RunRequest replaying ``event_count`` events after ``start_cursor``."""
    return RunRequest(
        run_key=f"change_batch:{end_cursor}",
        run_config={
            "ops": {
                "apply_change_batch": {
                    "inputs": {
                        "resume_after": {"value": start_cursor},
                        "event_count": {"value": event_count},
                    }
                }
            }
        },
        tags={"lake/change_feed": "batch", "event_count": str(event_count)},
    )


def _batch_in_flight(context: SensorEvaluationContext) -> bool:
    runs = context.instance.get_runs(
        filters=RunsFilter(job_name=change_feed_sync_job.name, statuses=ACTIVE_RUN_STATUSES),
        limit=1,
    )
    return len(runs) > 0


@sensor(
    job=change_feed_sync_job,
    minimum_interval_seconds=30,
    default_status=DefaultSensorStatus.RUNNING,
    name="change_feed_sensor",
    description="Plans batches of the records change stream for materialization and cascade deletion",
)
def change_feed_sensor(context: SensorEvaluationContext, mongodb: MongoDBResource):
    """
    Plan the next change batch.

    Flow:
    1. Skip while a previous batch run is queued or running
    2. Resume the change stream from the token in the cursor
    3. Count up to CHANGE_FEED_MAX_EVENTS events
    4. Yield a RunRequest for the batch and store the new resume token

    Args:
        context: Dagster sensor evaluation context
        mongodb: MongoDBResource instance (injected by Dagster)

    Yields:
        RunRequest: For a non-empty batch
        SkipReason: When idle, busy or the stream cannot be read
    """
    if _batch_in_flight(context):
        yield SkipReason("Previous change batch still running")
        return

    try:
        count, cursor = plan_change_batch(mongodb, context.cursor, max_events_per_tick())
    except Exception as e:
        context.log.error(f"Failed to read change stream: {e}")
        yield SkipReason(f"Error reading change stream: {e}")
        return

    if count == 0:
        if cursor and cursor != context.cursor:
            context.update_cursor(cursor)
        yield SkipReason("No new changes")
        return

    context.log.info(f"Planned change batch of {count} event(s)")
    yield build_batch_run_request(context.cursor, cursor, count)
    context.update_cursor(cursor)
