# =============================================================================
# FastAPI Main Application
# =============================================================================
# Entry point for the operator API.
# =============================================================================

from fastapi import FastAPI

from app.routers import entities, health, relations, tasks

# Application instance
app = FastAPI(
    title="Data Lake Sync Operator API",
    description="Manage entities, relations and analytical tasks of the data lake sync pipeline.",
    version="0.1.0",
)

# Include routers
app.include_router(health.router)
app.include_router(entities.router)
app.include_router(relations.router)
app.include_router(tasks.router)
