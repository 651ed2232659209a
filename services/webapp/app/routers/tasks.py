# =============================================================================
# Tasks Router
# =============================================================================
# Trigger analytical statements and poll their results.
# =============================================================================

from typing import Any, Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from app.services.lake_service import LakeService, get_lake_service

router = APIRouter(prefix="/tasks", tags=["tasks"])


class TaskTriggerRequest(BaseModel):
    """Body of a task trigger."""

    statement: str = Field(..., min_length=1)
    owner_operation_name: str = Field("api", min_length=1)
    arguments: Optional[dict[str, Any]] = None
    source: Optional[dict[str, Any]] = None


class TaskTriggerResponse(BaseModel):
    task_id: str


class TaskResultResponse(BaseModel):
    task: dict
    rows: Optional[list[dict]] = None


@router.post("", response_model=TaskTriggerResponse, status_code=202)
async def trigger_task(
    body: TaskTriggerRequest,
    lake: LakeService = Depends(get_lake_service),
) -> TaskTriggerResponse:
    """
    Submit a statement to the query engine.

    Delete statements (``DELETE A FROM T A WHERE ...``) become deletion
    tasks; malformed ones are rejected before submission.
    """
    try:
        task_id = lake.trigger_task(
            body.statement,
            owner_operation_name=body.owner_operation_name,
            arguments=body.arguments,
            source=body.source,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except (httpx.HTTPError, RuntimeError) as exc:
        raise HTTPException(
            status_code=503,
            detail=f"Failed to submit to query engine: {exc}",
        ) from exc

    return TaskTriggerResponse(task_id=task_id)


@router.get("/{task_id}", response_model=TaskResultResponse)
async def get_task(
    task_id: str,
    lake: LakeService = Depends(get_lake_service),
) -> TaskResultResponse:
    """
    Current task state; rows are included once a query task succeeded.

    A succeeded query whose result object is missing from the lake is a
    409: the task exists but its rows cannot be served.
    """
    try:
        result = lake.get_task_result(task_id)
    except RuntimeError as exc:
        raise HTTPException(
            status_code=409,
            detail=f"Result of task {task_id} is not available: {exc}",
        ) from exc

    if result is None:
        raise HTTPException(status_code=404, detail=f"Task not found: {task_id}")

    return TaskResultResponse(
        task=result.task.model_dump(mode="json"),
        rows=jsonable_encoder(result.rows) if result.rows is not None else None,
    )
