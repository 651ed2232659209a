# =============================================================================
# Sync Ops - Change Feed Batches
# =============================================================================
# Applies one batch of change events from the `records` change stream.
#
# The change feed sensor only plans batches: it stores the resume token where
# a batch starts and counts its events. The run reopens the stream at that
# token and replays exactly that many events, so all materialization and
# cascade I/O happens inside a run rather than a sensor tick.
# =============================================================================

from dataclasses import asdict

from bson import json_util
from dagster import In, OpExecutionContext, Out, op

from libs.models import ChangeClassificationError, ChangeEvent

from .classify_ops import process_changes


def parse_cursor(cursor: str | None) -> dict | None:
    """Decode a stored resume token; an empty or corrupt cursor starts from now."""
    if not cursor:
        return None
    try:
        token = json_util.loads(cursor)
    except (ValueError, TypeError):
        return None
    return token if isinstance(token, dict) else None


def build_cursor(resume_token: dict | None) -> str | None:
    if resume_token is None:
        return None
    return json_util.dumps(resume_token)


def read_change_batch(mongodb, resume_token: dict | None, max_events: int, log):
    """
    Read up to ``max_events`` raw change events without blocking on an idle stream.

    Unsupported operation types count towards ``max_events`` but are
    dropped, so a replay from the same token reads the same window.

    Returns:
        Tuple of (events, resume_token after the last event read)
    """
    events = []
    with mongodb.watch_records(resume_after=resume_token) as stream:
        for _ in range(max_events):
            change = stream.try_next()
            if change is None:
                break
            try:
                events.append(ChangeEvent.from_change_stream(change))
            except ChangeClassificationError as e:
                log.error(f"Dropping change stream event: {e}")
        resume_token = stream.resume_token
    return events, resume_token


def apply_change_batch_from_cursor(minio, mongodb, resume_after: str, event_count: int, log) -> dict:
    """
    Replay ``event_count`` change events after ``resume_after`` and apply them.

    Returns:
        The batch report as a dict

    Raises:
        ValueError: If the cursor does not hold a resume token
    """
    token = parse_cursor(resume_after)
    if token is None:
        raise ValueError(f"Change batch cursor is not a resume token: {resume_after!r}")

    events, _ = read_change_batch(mongodb, token, event_count, log)
    report = process_changes(minio, mongodb, events, log)

    if report.failed:
        log.warning(f"{report.failed} change(s) failed: {report.errors}")
    log.info(
        f"Processed {report.processed}, skipped {report.skipped}, "
        f"failed {report.failed} change(s): {report.routes}"
    )
    return asdict(report)


@op(
    ins={
        "resume_after": In(dagster_type=str),
        "event_count": In(dagster_type=int),
    },
    out={"batch_report": Out(dagster_type=dict)},
    required_resource_keys={"minio", "mongodb"},
)
def apply_change_batch(context: OpExecutionContext, resume_after: str, event_count: int) -> dict:
    """Apply the change batch planned by the change feed sensor."""
    return apply_change_batch_from_cursor(
        context.resources.minio,
        context.resources.mongodb,
        resume_after,
        event_count,
        context.log,
    )
