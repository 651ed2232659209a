# =============================================================================
# Lake Service - Operational store, relations and tasks
# =============================================================================
# Service wrapper exposing the pipeline's core operations to the webapp.
# Runs the same functions the Dagster sensors use, with a module logger.
# =============================================================================

import logging
from functools import lru_cache
from typing import Any, Optional

from libs.models import EntityRecord, Participant, RelationIndexRecord
from services.dagster.lake_pipelines.ops.relation_ops import create_relation
from services.dagster.lake_pipelines.ops.task_ops import (
    TaskResult,
    get_task_result,
    trigger_task,
)
from services.dagster.lake_pipelines.resources import (
    MinIOResource,
    MongoDBResource,
    QueryEngineResource,
)

from app.config import Settings, get_settings

logger = logging.getLogger(__name__)


class LakeService:
    """Service for entity, relation and task operations."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        settings = settings or get_settings()
        self.minio = MinIOResource(
            endpoint=settings.minio_endpoint,
            access_key=settings.minio_root_user,
            secret_key=settings.minio_root_password,
            use_ssl=settings.minio_use_ssl,
            lake_bucket=settings.minio_lake_bucket,
        )
        self.mongodb = MongoDBResource(
            connection_string=settings.mongo_connection_string,
            database=settings.mongo_database,
        )
        self.query_engine = QueryEngineResource(
            graphql_url=settings.dagster_graphql_url,
            repository_location_name=settings.dagster_repository_location,
            job_name=settings.query_job_name,
        )

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    def put_entity(
        self,
        kind: str,
        entity_id: str,
        attributes: dict[str, Any],
        *,
        is_relation_participant: bool = True,
    ) -> EntityRecord:
        return self.mongodb.put_entity(
            kind,
            entity_id,
            attributes,
            is_relation_participant=is_relation_participant,
        )

    def get_entity(self, kind: str, entity_id: str) -> Optional[EntityRecord]:
        return self.mongodb.get_entity(kind, entity_id)

    def list_entities(self, kind: str, limit: int = 100) -> list[EntityRecord]:
        return self.mongodb.list_entities(kind, limit=limit)

    def delete_entity(self, kind: str, entity_id: str) -> bool:
        return self.mongodb.delete_entity(kind, entity_id)

    # ------------------------------------------------------------------
    # Relations
    # ------------------------------------------------------------------

    def create_relation(
        self,
        table_name: str,
        participants: list[Participant],
        payload: Optional[dict[str, Any]] = None,
    ) -> tuple[str, bool]:
        return create_relation(
            self.minio, self.mongodb, table_name, participants, payload, logger
        )

    def relations_for(self, participant_type: str, participant_id: str) -> list[RelationIndexRecord]:
        return self.mongodb.find_relation_index_by_participant(participant_type, participant_id)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def trigger_task(
        self,
        statement: str,
        *,
        owner_operation_name: str,
        arguments: Optional[dict[str, Any]] = None,
        source: Optional[dict[str, Any]] = None,
    ) -> str:
        return trigger_task(
            self.query_engine,
            self.mongodb,
            statement,
            owner_operation_name=owner_operation_name,
            arguments=arguments,
            source=source,
            log=logger,
        )

    def get_task_result(self, task_id: str) -> Optional[TaskResult]:
        return get_task_result(self.query_engine, self.minio, self.mongodb, task_id, logger)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def check_services(self) -> dict[str, str]:
        """Connectivity of MongoDB and the lake bucket."""
        services = {}
        try:
            self.mongodb.ping()
            services["mongodb"] = "ok"
        except Exception as exc:
            logger.warning(f"MongoDB not reachable: {exc}")
            services["mongodb"] = "unavailable"
        try:
            exists = self.minio.get_client().bucket_exists(self.minio.lake_bucket)
            services["minio"] = "ok" if exists else "missing bucket"
        except Exception as exc:
            logger.warning(f"MinIO not reachable: {exc}")
            services["minio"] = "unavailable"
        return services


@lru_cache
def get_lake_service() -> LakeService:
    """Get or create the lake service singleton."""
    return LakeService()
