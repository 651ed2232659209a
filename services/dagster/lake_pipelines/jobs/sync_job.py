"""Change feed sync job: applies one planned batch of change events."""

from dagster import job

from ..ops.sync_ops import apply_change_batch


@job(
    name="change_feed_sync_job",
    description=(
        "Replays one batch of the records change stream, planned by "
        "change_feed_sensor, and materializes or cascades each event."
    ),
    tags={"lake/kind": "change_feed"},
)
def change_feed_sync_job():
    """Single-op job; the batch's start token and size arrive as op inputs."""
    apply_change_batch()
