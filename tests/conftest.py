"""
Shared pytest fixtures.

Provides an in-memory MongoDB (mongomock), an in-memory lake bucket and a
few reusable records so resource, op and sensor tests stay short.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import mongomock
import pytest

from libs.models import EntityRecord, Participant, RelationGroupRecord, compute_relation_id
from libs.s3_utils import build_s3_location, parse_s3_path, query_result_key, table_prefix

from services.dagster.lake_pipelines.resources import MongoDBResource
from services.dagster.lake_pipelines.resources.minio_resource import BulkDeleteResult


# =============================================================================
# MongoDB
# =============================================================================

@pytest.fixture
def mongomock_client():
    """In-memory MongoDB client for tests."""
    return mongomock.MongoClient(tz_aware=True)


@pytest.fixture
def mongo_resource(monkeypatch, mongomock_client):
    """MongoDBResource configured to use the mongomock client."""
    monkeypatch.setattr(
        "services.dagster.lake_pipelines.resources.mongodb_resource.MongoClient",
        lambda *args, **kwargs: mongomock_client,
    )
    return MongoDBResource(connection_string="mongodb://localhost:27017")


@pytest.fixture
def records(mongomock_client):
    """The raw `records` collection behind mongo_resource."""
    return mongomock_client["data_lake"]["records"]


# =============================================================================
# Lake bucket
# =============================================================================

class InMemoryLake:
    """
    Dict-backed stand-in for MinIOResource with the same method surface.

    Objects are keyed by lake-bucket key; ``writes`` counts put calls.
    """

    def __init__(self, lake_bucket: str = "data-lake"):
        self.lake_bucket = lake_bucket
        self.endpoint = "minio:9000"
        self.access_key = "minio"
        self.secret_key = "minio_password"
        self.use_ssl = False
        self.objects: dict[str, bytes] = {}
        self.writes = 0

    def _key(self, location: str) -> str:
        if location.startswith("s3://"):
            return parse_s3_path(location)[1]
        return location

    def location_for(self, key: str) -> str:
        return build_s3_location(self.lake_bucket, key)

    def put_artifact(self, key: str, data: bytes) -> str:
        self.objects[key] = data
        self.writes += 1
        return self.location_for(key)

    def get_artifact(self, location: str) -> bytes:
        key = self._key(location)
        if key not in self.objects:
            raise RuntimeError(f"Object '{key}' not found in bucket '{self.lake_bucket}'")
        return self.objects[key]

    def delete_artifact(self, location: str) -> bool:
        return self.objects.pop(self._key(location), None) is not None

    def delete_artifacts(self, locations) -> BulkDeleteResult:
        result = BulkDeleteResult()
        for location in dict.fromkeys(locations):
            if self.objects.pop(self._key(location), None) is None:
                result.missing.append(location)
            else:
                result.deleted.append(location)
        return result

    def find_artifacts(self, kind: str, name: str) -> list[str]:
        return [
            self.location_for(key)
            for key in self.objects
            if key.startswith(table_prefix(kind)) and key.endswith(f"/{name}.parquet")
        ]

    def put_query_result(self, task_id: str, data: bytes) -> str:
        return self.put_artifact(query_result_key(task_id), data)

    def get_query_result(self, task_id: str) -> bytes:
        return self.get_artifact(query_result_key(task_id))

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(key for key in self.objects if key.startswith(prefix))


@pytest.fixture
def lake():
    return InMemoryLake()


@pytest.fixture
def log():
    return MagicMock()


# =============================================================================
# Records
# =============================================================================

@pytest.fixture
def created_at():
    return datetime(2024, 3, 5, 12, 30, tzinfo=timezone.utc)


@pytest.fixture
def user_entity(created_at):
    return EntityRecord(
        kind="user",
        id="u1",
        attributes={"name": "Ada", "age": 36, "active": True},
        created_at=created_at,
        updated_at=created_at,
    )


@pytest.fixture
def follows_group(created_at):
    participants = [
        Participant(entity_type="user", entity_id="u1"),
        Participant(entity_type="user", entity_id="u2"),
    ]
    return RelationGroupRecord(
        relation_id=compute_relation_id("follows", participants),
        table_name="follows",
        participants=participants,
        payload={"since": "2024-03-05T12:30:00Z"},
        created_at=created_at,
    )
