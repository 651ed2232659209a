# =============================================================================
# Task Ops - Asynchronous Task Lifecycle
# =============================================================================
# Triggers analytical statements on the query engine, tracks them as tasks in
# the operational store and converts succeeded deletion tasks into physical
# deletions through the deletion work queue.
#
# Two paths report completion: the run status sensors (push) and
# get_task_result (poll). Both go through advance_task, whose conditional
# update lets exactly one of them perform the terminal transition.
# =============================================================================

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional

import httpx
import pyarrow as pa
import pyarrow.parquet as pq

from libs.models import DELETION_QUEUE, QueueMessage, TaskRecord, TaskStatus, TaskType, utc_now
from libs.query_rewrite import bind_parameters, is_delete_intent, rewrite_delete_statement

from .cascade_ops import CascadeReport, purge_relations


@dataclass(frozen=True)
class TaskResult:
    """A task and, for succeeded query tasks, its result rows."""

    task: TaskRecord
    rows: Optional[list[dict[str, Any]]] = None


def trigger_task(
    query_engine,
    mongodb,
    statement: str,
    *,
    owner_operation_name: str,
    arguments: Optional[Mapping[str, Any]] = None,
    source: Optional[Mapping[str, Any]] = None,
    log,
) -> str:
    """
    Submit a statement to the query engine and record it as a RUNNING task.

    Delete statements are rewritten into a selection of the artifacts to
    remove and tracked as deletion tasks. Binding and rewrite errors are
    raised before anything is submitted.

    Args:
        query_engine: QueryEngineResource instance
        mongodb: MongoDBResource instance
        statement: SQL statement with optional $args/$source placeholders
        owner_operation_name: Operation that triggered the task
        arguments: Values for $args.<key> placeholders
        source: Values for $source.<key> placeholders
        log: Logger instance

    Returns:
        The task id (the engine's execution id)

    Raises:
        QueryRewriteError: If a delete statement is malformed
        ValueError: If a parameter value cannot be rendered as a literal
        httpx.HTTPError, RuntimeError: If the engine rejects the submission
    """
    bound = bind_parameters(statement, arguments, source)

    task_type = TaskType.QUERY
    if is_delete_intent(bound):
        bound = rewrite_delete_statement(bound)
        task_type = TaskType.DELETION

    start_time = utc_now()
    task_id = query_engine.submit_statement(
        bound,
        tags={"task_type": task_type.value, "owner_operation": owner_operation_name},
    )

    mongodb.insert_task(
        TaskRecord(
            task_id=task_id,
            task_type=task_type,
            start_time=start_time,
            owner_operation_name=owner_operation_name,
            statement=bound,
        )
    )
    log.info(f"Triggered {task_type.value} {task_id} for {owner_operation_name}")
    return task_id


def _enqueue_deletion(mongodb, task_id: str, log) -> None:
    """Queue the physical deletion of a succeeded deletion task, then mark the task."""
    message_id = mongodb.enqueue(DELETION_QUEUE, {"task_id": task_id}, message_key=task_id)
    mongodb.mark_deletion_enqueued(task_id)
    log.info(f"Enqueued deletion for task {task_id} (message {message_id})")


def advance_task(
    mongodb,
    task_id: str,
    status: TaskStatus,
    finish_time: datetime,
    log,
) -> bool:
    """
    Move a RUNNING task to a terminal status.

    Only the caller whose update performed the transition gets True; for a
    deletion task that transitions to SUCCEEDED it also enqueues the
    physical deletion. Later callers (push after poll, redelivered events)
    change nothing, unless the enqueue of an earlier transition failed, in
    which case they queue the deletion again. The queue message is keyed by
    task id, so repeated attempts never produce a second message.

    Returns:
        True if this call performed the transition
    """
    updated = mongodb.advance_task(task_id, status, finish_time)
    if updated is None:
        task = mongodb.get_task(task_id)
        if task is not None and task.deletion_pending:
            log.warning(f"Task {task_id} succeeded without a queued deletion, enqueuing it now")
            _enqueue_deletion(mongodb, task_id, log)
        else:
            log.debug(f"Task {task_id} already terminal or unknown, {status.value} ignored")
        return False

    log.info(f"Task {task_id} -> {status.value}")

    if updated.deletion_pending:
        _enqueue_deletion(mongodb, task_id, log)

    return True


def fetch_query_results(minio, task_id: str) -> list[dict[str, Any]]:
    """
    Read the rows of a succeeded query.

    Raises:
        RuntimeError: If the result object does not exist
    """
    data = minio.get_query_result(task_id)
    return pq.read_table(pa.BufferReader(data)).to_pylist()


def get_task_result(query_engine, minio, mongodb, task_id: str, log) -> Optional[TaskResult]:
    """
    Return a task's state, polling the engine while it is RUNNING.

    Engine errors during the poll are logged and leave the task RUNNING; the
    caller simply asks again later.

    Returns:
        TaskResult (with rows for a succeeded query task), or None if the
        task does not exist
    """
    task = mongodb.get_task(task_id)
    if task is None:
        return None

    if task.status is TaskStatus.RUNNING:
        try:
            execution = query_engine.get_execution_status(task_id)
        except (httpx.HTTPError, RuntimeError) as e:
            log.warning(f"Could not poll query engine for task {task_id}: {e}")
            execution = None
        else:
            if execution is None:
                log.warning(f"Query engine does not know execution {task_id}")

        if execution is not None and execution.status.is_terminal:
            advance_task(mongodb, task_id, execution.status, execution.finish_time or utc_now(), log)
            task = mongodb.get_task(task_id) or task
    elif task.deletion_pending:
        log.warning(f"Task {task_id} succeeded without a queued deletion, enqueuing it now")
        _enqueue_deletion(mongodb, task_id, log)
        task = mongodb.get_task(task_id) or task

    rows = None
    if task.status is TaskStatus.SUCCEEDED and task.task_type is TaskType.QUERY:
        rows = fetch_query_results(minio, task_id)

    return TaskResult(task=task, rows=rows)


def run_deletion_task(minio, mongodb, message: QueueMessage, log) -> Optional[CascadeReport]:
    """
    Physically delete the relations selected by a succeeded deletion task.

    The task's result rows carry ``artifactLocation`` and ``relationId``;
    artifacts, index entries and staging records of those relations are
    purged.

    Returns:
        CascadeReport, or None when the message cannot be acted on (no task
        id, unknown task, not a deletion task). Such messages should be
        acknowledged and dropped.

    Raises:
        RuntimeError: If the task's result rows cannot be read
    """
    task_id = message.body.get("task_id")
    if not task_id:
        log.error(f"Deletion message {message.message_id} has no task_id")
        return None

    task = mongodb.get_task(task_id)
    if task is None or task.task_type is not TaskType.DELETION:
        log.error(f"Deletion message {message.message_id} references unknown deletion task {task_id}")
        return None

    rows = fetch_query_results(minio, task_id)
    relation_ids = [row["relationId"] for row in rows if row.get("relationId")]
    locations = [row["artifactLocation"] for row in rows if row.get("artifactLocation")]

    log.info(
        f"Deletion task {task_id}: {len(rows)} row(s), "
        f"{len(set(relation_ids))} relation(s) to purge"
    )
    return purge_relations(minio, mongodb, relation_ids, locations, log)
