# =============================================================================
# Entities Router
# =============================================================================
# CRUD endpoints for entities in the operational store. Writes and deletes
# reach the lake through the change feed.
# =============================================================================

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel, Field

from app.services.lake_service import LakeService, get_lake_service

router = APIRouter(prefix="/entities", tags=["entities"])


class EntityWriteRequest(BaseModel):
    """Body of an entity create/update."""

    attributes: dict[str, Any] = Field(default_factory=dict)
    is_relation_participant: bool = True


class EntityListResponse(BaseModel):
    """Response for entity listing."""

    entities: list[dict]
    count: int


@router.put("/{kind}/{entity_id}")
async def put_entity(
    kind: str,
    entity_id: str,
    body: EntityWriteRequest,
    lake: LakeService = Depends(get_lake_service),
) -> dict:
    """
    Create or update an entity.

    The entity keeps the creation timestamp of its first version.
    """
    try:
        entity = lake.put_entity(
            kind,
            entity_id,
            body.attributes,
            is_relation_participant=body.is_relation_participant,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return entity.model_dump(mode="json")


@router.get("/{kind}/{entity_id}")
async def get_entity(
    kind: str,
    entity_id: str,
    lake: LakeService = Depends(get_lake_service),
) -> dict:
    entity = lake.get_entity(kind, entity_id)
    if entity is None:
        raise HTTPException(status_code=404, detail=f"Entity not found: {kind}/{entity_id}")
    return entity.model_dump(mode="json")


@router.get("/{kind}", response_model=EntityListResponse)
async def list_entities(
    kind: str,
    limit: int = Query(100, ge=1, le=1000, description="Maximum results"),
    lake: LakeService = Depends(get_lake_service),
) -> EntityListResponse:
    entities = lake.list_entities(kind, limit=limit)
    return EntityListResponse(
        entities=[e.model_dump(mode="json") for e in entities],
        count=len(entities),
    )


@router.delete("/{kind}/{entity_id}", status_code=204)
async def delete_entity(
    kind: str,
    entity_id: str,
    lake: LakeService = Depends(get_lake_service),
) -> Response:
    """
    Delete an entity.

    Its artifact and every relation it participates in are removed
    asynchronously by the change feed.
    """
    if not lake.delete_entity(kind, entity_id):
        raise HTTPException(status_code=404, detail=f"Entity not found: {kind}/{entity_id}")
    return Response(status_code=204)
