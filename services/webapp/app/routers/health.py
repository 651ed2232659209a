# =============================================================================
# Health Check Router
# =============================================================================
# Endpoints for container health checks and readiness checks.
# =============================================================================

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.services.lake_service import LakeService, get_lake_service

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str


class ReadyResponse(BaseModel):
    """Readiness check response model."""

    status: str
    services: dict[str, str]


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Basic health check endpoint.

    Returns 200 if the service is running.
    """
    from app import __version__

    return HealthResponse(status="healthy", version=__version__)


@router.get("/ready", response_model=ReadyResponse)
async def readiness_check(
    lake: LakeService = Depends(get_lake_service),
) -> ReadyResponse:
    """
    Readiness check endpoint.

    Verifies connectivity to MongoDB and the lake bucket.
    """
    services = lake.check_services()
    status = "ready" if all(v == "ok" for v in services.values()) else "degraded"
    return ReadyResponse(status=status, services=services)
