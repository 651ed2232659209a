"""Dagster Resources - External Service Connections."""

from .minio_resource import MinIOResource
from .mongodb_resource import MongoDBResource
from .query_engine_resource import QueryEngineResource

__all__ = [
    "MinIOResource",
    "MongoDBResource",
    "QueryEngineResource",
]
