# =============================================================================
# Relations Router
# =============================================================================
# Idempotent relation creation and participant lookups.
# =============================================================================

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from libs.models import Participant
from app.services.lake_service import LakeService, get_lake_service

router = APIRouter(prefix="/relations", tags=["relations"])


class RelationCreateRequest(BaseModel):
    """Body of a relation create."""

    participants: list[Participant] = Field(..., min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)


class RelationCreateResponse(BaseModel):
    relation_id: str
    created: bool


class RelationListResponse(BaseModel):
    relations: list[dict]
    count: int


@router.post("/{table_name}", response_model=RelationCreateResponse)
async def create_relation(
    table_name: str,
    body: RelationCreateRequest,
    lake: LakeService = Depends(get_lake_service),
) -> RelationCreateResponse:
    """
    Create a relation instance.

    The relation id is derived from the table name and the participant set,
    so repeating the request (in any participant order) returns the same id
    with ``created`` false.
    """
    try:
        relation_id, created = lake.create_relation(
            table_name, body.participants, body.payload
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return RelationCreateResponse(relation_id=relation_id, created=created)


@router.get(
    "/by-participant/{participant_type}/{participant_id}",
    response_model=RelationListResponse,
)
async def list_relations_for_participant(
    participant_type: str,
    participant_id: str,
    lake: LakeService = Depends(get_lake_service),
) -> RelationListResponse:
    entries = lake.relations_for(participant_type, participant_id)
    return RelationListResponse(
        relations=[e.model_dump(mode="json") for e in entries],
        count=len(entries),
    )
