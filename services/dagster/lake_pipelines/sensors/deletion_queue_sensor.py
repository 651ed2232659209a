"""Deletion queue sensor: physical deletion for succeeded deletion tasks.

Claims messages from the `deletion` work queue and purges the relations the
task selected. A message is acknowledged only when every deletion class
succeeded; otherwise it becomes visible again after the visibility timeout
and is retried.
"""

import os

from dagster import (
    DefaultSensorStatus,
    SensorEvaluationContext,
    SkipReason,
    sensor,
)

from libs.models import DELETION_QUEUE

from ..ops.task_ops import run_deletion_task
from ..resources import MinIOResource, MongoDBResource


DEFAULT_BATCH_SIZE = 10
DEFAULT_VISIBILITY_TIMEOUT_SECONDS = 300


def _int_from_env(name: str, default: int) -> int:
    try:
        value = int(os.getenv(name, "").strip())
    except ValueError:
        return default
    return value if value > 0 else default


def drain_deletion_queue(minio, mongodb, log, *, batch_size: int, visibility_timeout_seconds: int) -> dict:
    """
    Claim and process one batch of deletion messages.

    Returns:
        Counts of acknowledged, retried and dropped messages
    """
    counts = {"acked": 0, "retry": 0, "dropped": 0}
    messages = mongodb.receive_messages(
        DELETION_QUEUE,
        max_messages=batch_size,
        visibility_timeout_seconds=visibility_timeout_seconds,
    )

    for message in messages:
        try:
            report = run_deletion_task(minio, mongodb, message, log)
        except Exception as e:
            log.error(
                f"Deletion message {message.message_id} failed "
                f"(attempt {message.receive_count}): {e}"
            )
            counts["retry"] += 1
            continue

        if report is not None and not report.ok:
            log.warning(
                f"Deletion message {message.message_id} incomplete, will retry: {report.errors}"
            )
            counts["retry"] += 1
            continue

        mongodb.ack_message(message.message_id)
        counts["dropped" if report is None else "acked"] += 1

    return counts


@sensor(
    minimum_interval_seconds=30,
    default_status=DefaultSensorStatus.RUNNING,
    name="deletion_queue_sensor",
    description="Purges relation artifacts and indexes selected by succeeded deletion tasks",
)
def deletion_queue_sensor(
    context: SensorEvaluationContext,
    minio: MinIOResource,
    mongodb: MongoDBResource,
):
    """
    Drain the deletion work queue.

    Args:
        context: Dagster sensor evaluation context
        minio: MinIOResource instance (injected by Dagster)
        mongodb: MongoDBResource instance (injected by Dagster)

    Yields:
        SkipReason: Summary of the tick; this sensor never launches runs
    """
    try:
        counts = drain_deletion_queue(
            minio,
            mongodb,
            context.log,
            batch_size=_int_from_env("DELETION_QUEUE_BATCH_SIZE", DEFAULT_BATCH_SIZE),
            visibility_timeout_seconds=_int_from_env(
                "DELETION_QUEUE_VISIBILITY_TIMEOUT", DEFAULT_VISIBILITY_TIMEOUT_SECONDS
            ),
        )
    except Exception as e:
        context.log.error(f"Failed to read deletion queue: {e}")
        yield SkipReason(f"Error reading deletion queue: {e}")
        return

    if not any(counts.values()):
        yield SkipReason("No deletion messages")
        return

    yield SkipReason(
        f"Deletion messages: {counts['acked']} purged, "
        f"{counts['retry']} pending retry, {counts['dropped']} dropped"
    )
