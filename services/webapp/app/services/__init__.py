# =============================================================================
# Services Module
# =============================================================================
# Service wrappers around the pipeline's resources and core operations.
# =============================================================================

from app.services.lake_service import LakeService, get_lake_service

__all__ = [
    "LakeService",
    "get_lake_service",
]
