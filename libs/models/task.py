# =============================================================================
# Task Model
# =============================================================================
# Defines the TaskRecord model tracking asynchronous query-engine work.
# =============================================================================

from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator

from .base import UtcDatetime, task_document_id, utc_now


__all__ = ["TaskRecord", "TaskStatus", "TaskType"]


class TaskStatus(str, Enum):
    """Lifecycle state of a task. SUCCEEDED and FAILED are terminal."""

    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is not TaskStatus.RUNNING


class TaskType(str, Enum):
    """What the task's result is used for."""

    QUERY = "query_task"
    DELETION = "deletion_task"


class TaskRecord(BaseModel):
    """
    Task document stored in the operational store.

    The task id is the query engine's own execution id (the Dagster run id),
    so a task and its execution correspond one to one.

    Attributes:
        task_id: Query engine execution id
        task_type: query_task or deletion_task
        status: RUNNING until the first terminal transition
        start_time: Timestamp when the task was triggered
        finish_time: Set once, at the first terminal transition
        owner_operation_name: Operation that triggered the task
        statement: Statement submitted to the engine (after binding/rewrite)
        deletion_enqueued_at: Set once the physical deletion of a succeeded
            deletion task has been queued
    """

    record_type: Literal["task"] = "task"
    task_id: str = Field(..., min_length=1, description="Query engine execution id")
    task_type: TaskType = Field(TaskType.QUERY, description="Task type")
    status: TaskStatus = Field(TaskStatus.RUNNING, description="Current task status")
    start_time: UtcDatetime = Field(default_factory=utc_now, description="Trigger timestamp")
    finish_time: Optional[UtcDatetime] = Field(None, description="Terminal transition timestamp")
    owner_operation_name: str = Field(..., description="Operation that triggered the task")
    statement: Optional[str] = Field(None, description="Submitted statement")
    deletion_enqueued_at: Optional[UtcDatetime] = Field(None, description="Timestamp the deletion was queued")

    @model_validator(mode="after")
    def _finish_time_matches_status(self) -> "TaskRecord":
        if self.status.is_terminal and self.finish_time is None:
            raise ValueError("Terminal tasks require finish_time")
        if not self.status.is_terminal and self.finish_time is not None:
            raise ValueError("Running tasks cannot have finish_time")
        return self

    @property
    def deletion_pending(self) -> bool:
        """True for a succeeded deletion task whose deletion is not yet queued."""
        return (
            self.task_type is TaskType.DELETION
            and self.status is TaskStatus.SUCCEEDED
            and self.deletion_enqueued_at is None
        )

    @property
    def document_id(self) -> str:
        return task_document_id(self.task_id)
