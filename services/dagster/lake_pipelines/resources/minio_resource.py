# =============================================================================
# MinIO Resource - S3-Compatible Object Storage Operations
# =============================================================================
# Provides MinIO operations for the data lake bucket: single-record Parquet
# artifacts under tables/, query results under query-results/.
# Used by the materializer, the cascade coordinator and the query ops.
# =============================================================================

from dataclasses import dataclass, field
from collections import defaultdict
import io
import logging
from typing import Iterable

from dagster import ConfigurableResource
from minio import Minio
from minio.deleteobjects import DeleteObject
from minio.error import S3Error
from pydantic import Field

from libs.s3_utils import build_s3_location, parse_s3_path, query_result_key, table_prefix

logger = logging.getLogger(__name__)

# Maximum number of keys per bulk delete request
DELETE_BATCH_SIZE = 1000

_MISSING_CODES = frozenset(["NoSuchKey", "NotFound"])


@dataclass
class BulkDeleteResult:
    """Outcome of a bulk artifact delete."""

    deleted: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class MinIOResource(ConfigurableResource):
    """
    Dagster resource for MinIO (S3-compatible object storage) operations.

    Provides methods for:
    - Writing and reading single-record Parquet artifacts
    - Deleting artifacts one at a time or in batches of 1000
    - Locating an artifact when its partition is unknown
    - Storing analytical query results

    Configuration matches the MINIO_* settings of the webapp.

    Attributes:
        endpoint: MinIO server endpoint (host:port)
        access_key: Access key for authentication
        secret_key: Secret key for authentication
        use_ssl: Whether to use SSL/TLS (default: False)
        lake_bucket: Data lake bucket name (default: "data-lake")
    """

    endpoint: str = Field(..., description="MinIO server endpoint (host:port)")
    access_key: str = Field(..., description="Access key for authentication")
    secret_key: str = Field(..., description="Secret key for authentication")
    use_ssl: bool = Field(False, description="Whether to use SSL/TLS")
    lake_bucket: str = Field("data-lake", description="Data lake bucket name")

    def get_client(self) -> Minio:
        """
        Create a MinIO client instance.

        Returns:
            Configured Minio client
        """
        return Minio(
            self.endpoint,
            access_key=self.access_key,
            secret_key=self.secret_key,
            secure=self.use_ssl,
        )

    def location_for(self, key: str) -> str:
        """s3:// location of a key in the lake bucket."""
        return build_s3_location(self.lake_bucket, key)

    def _bucket_and_key(self, location: str) -> tuple[str, str]:
        if location.startswith("s3://"):
            return parse_s3_path(location)
        return self.lake_bucket, location

    def put_artifact(self, key: str, data: bytes) -> str:
        """
        Write an object to the lake bucket, overwriting any previous version.

        Args:
            key: Object key (e.g., "tables/user/year=2024/month=01/day=02/u1.parquet")
            data: Object content

        Returns:
            s3:// location of the written object

        Raises:
            RuntimeError: If the lake bucket does not exist
            S3Error: For other upload errors
        """
        client = self.get_client()

        try:
            client.put_object(
                self.lake_bucket,
                key,
                io.BytesIO(data),
                length=len(data),
                content_type="application/vnd.apache.parquet",
            )
        except S3Error as exc:
            if exc.code == "NoSuchBucket":
                raise RuntimeError(
                    f"Lake bucket '{self.lake_bucket}' does not exist"
                ) from exc
            raise

        return self.location_for(key)

    def get_artifact(self, location: str) -> bytes:
        """
        Download an object by s3:// location or lake-bucket key.

        Raises:
            RuntimeError: If the object does not exist
            S3Error: For other download errors
        """
        bucket, key = self._bucket_and_key(location)
        client = self.get_client()

        try:
            response = client.get_object(bucket, key)
            data = response.read()
            response.close()
            response.release_conn()
            return data
        except S3Error as exc:
            if exc.code in _MISSING_CODES:
                raise RuntimeError(
                    f"Object '{key}' not found in bucket '{bucket}'"
                ) from exc
            raise

    def delete_artifact(self, location: str) -> bool:
        """
        Delete one artifact.

        S3 deletes of absent keys succeed silently, so the object is checked
        first; a missing artifact is logged and treated as deleted.

        Returns:
            True if the object existed and was removed, False if it was missing
        """
        bucket, key = self._bucket_and_key(location)
        client = self.get_client()

        try:
            client.stat_object(bucket, key)
        except S3Error as exc:
            if exc.code in _MISSING_CODES:
                logger.warning(f"Artifact already absent: s3://{bucket}/{key}")
                return False
            raise

        client.remove_object(bucket, key)
        return True

    def delete_artifacts(self, locations: Iterable[str]) -> BulkDeleteResult:
        """
        Bulk-delete artifacts, batched to the object store's limit of 1000
        keys per request.

        Missing keys count as deleted (reported under ``missing``). Keys the
        store refuses to delete are reported under ``failed``; they never
        stop the remaining batches.
        """
        by_bucket: dict[str, list[str]] = defaultdict(list)
        for location in dict.fromkeys(locations):
            bucket, key = self._bucket_and_key(location)
            by_bucket[bucket].append(key)

        result = BulkDeleteResult()
        if not by_bucket:
            return result

        client = self.get_client()
        for bucket, keys in by_bucket.items():
            for start in range(0, len(keys), DELETE_BATCH_SIZE):
                batch = keys[start:start + DELETE_BATCH_SIZE]
                errors = {}
                # remove_objects is lazy: the errors iterator drives the request
                for error in client.remove_objects(
                    bucket, [DeleteObject(key) for key in batch]
                ):
                    errors[error.name] = error
                for key in batch:
                    location = build_s3_location(bucket, key)
                    error = errors.get(key)
                    if error is None:
                        result.deleted.append(location)
                    elif error.code in _MISSING_CODES:
                        logger.warning(f"Artifact already absent: {location}")
                        result.missing.append(location)
                    else:
                        result.failed[location] = f"{error.code}: {error.message}"

        return result

    def find_artifacts(self, kind: str, name: str) -> list[str]:
        """
        Locate every artifact called ``{name}.parquet`` in a table, whatever
        its partition.

        Used when a record's creation date is unknown.

        Returns:
            s3:// locations of matching objects
        """
        client = self.get_client()
        suffix = f"/{name}.parquet"

        try:
            objects = client.list_objects(
                self.lake_bucket,
                prefix=table_prefix(kind),
                recursive=True,
            )
            return [
                self.location_for(obj.object_name)
                for obj in objects
                if obj.object_name.endswith(suffix)
            ]
        except S3Error as exc:
            if exc.code == "NoSuchBucket":
                raise RuntimeError(
                    f"Lake bucket '{self.lake_bucket}' does not exist"
                ) from exc
            raise

    def put_query_result(self, task_id: str, data: bytes) -> str:
        """Store the Parquet result of an analytical query."""
        return self.put_artifact(query_result_key(task_id), data)

    def get_query_result(self, task_id: str) -> bytes:
        """Load the Parquet result of an analytical query."""
        return self.get_artifact(query_result_key(task_id))
