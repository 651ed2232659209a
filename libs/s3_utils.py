# =============================================================================
# S3 Path Utilities
# =============================================================================
# Shared utilities for parsing S3 paths and building artifact keys in the
# date-partitioned table layout of the data lake.
# =============================================================================

"""
S3 path utilities for the data lake.

This module provides functions for:
- Parsing S3 paths into bucket and key components
- Extracting keys from S3 paths
- Building date-partitioned artifact keys and table prefixes
"""

from datetime import datetime
from typing import Tuple

from libs.models.base import ensure_utc

__all__ = [
    "parse_s3_path",
    "extract_s3_key",
    "build_s3_location",
    "table_prefix",
    "build_artifact_key",
    "query_result_key",
    "TABLES_PREFIX",
    "QUERY_RESULTS_PREFIX",
]


TABLES_PREFIX = "tables"
QUERY_RESULTS_PREFIX = "query-results"


def parse_s3_path(s3_path: str) -> Tuple[str, str]:
    """
    Parse S3 path into bucket and key components.

    Args:
        s3_path: Full S3 path (e.g., "s3://data-lake/tables/user/year=2024/month=01/day=02/u1.parquet")

    Returns:
        Tuple of (bucket, key)

    Raises:
        ValueError: If path is not valid s3:// format or missing key

    Examples:
        >>> parse_s3_path("s3://data-lake/tables/user/year=2024/month=01/day=02/u1.parquet")
        ('data-lake', 'tables/user/year=2024/month=01/day=02/u1.parquet')
    """
    if not s3_path.startswith("s3://"):
        raise ValueError(
            f"Invalid S3 path format: '{s3_path}'. Must start with 's3://'"
        )

    path_without_prefix = s3_path[5:]  # Remove "s3://"
    parts = path_without_prefix.split("/", 1)

    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise ValueError(
            f"Invalid S3 path format: '{s3_path}'. Expected 's3://bucket/key'"
        )

    return parts[0], parts[1]


def extract_s3_key(s3_path: str) -> str:
    """
    Extract the key portion from an S3 path.

    For paths that are already keys (not s3:// format), returns them unchanged.

    Examples:
        >>> extract_s3_key("s3://data-lake/tables/user/u1.parquet")
        'tables/user/u1.parquet'
        >>> extract_s3_key("tables/user/u1.parquet")
        'tables/user/u1.parquet'
    """
    if s3_path.startswith("s3://"):
        _, key = parse_s3_path(s3_path)
        return key
    return s3_path


def build_s3_location(bucket: str, key: str) -> str:
    """Join bucket and key into an s3:// location."""
    return f"s3://{bucket}/{key.lstrip('/')}"


def table_prefix(kind: str) -> str:
    """
    Object-key prefix holding every partition of a table.

    Examples:
        >>> table_prefix("user")
        'tables/user/'
    """
    return f"{TABLES_PREFIX}/{kind}/"


def build_artifact_key(kind: str, created_at: datetime, name: str) -> str:
    """
    Build the date-partitioned object key of a single-record artifact.

    The partition always comes from the record's creation timestamp (in UTC)
    so every version of a record overwrites the same object.

    Examples:
        >>> from datetime import datetime, timezone
        >>> build_artifact_key("user", datetime(2024, 1, 2, tzinfo=timezone.utc), "u1")
        'tables/user/year=2024/month=01/day=02/u1.parquet'
    """
    created_at = ensure_utc(created_at)
    return (
        f"{table_prefix(kind)}"
        f"year={created_at:%Y}/month={created_at:%m}/day={created_at:%d}/"
        f"{name}.parquet"
    )


def query_result_key(task_id: str) -> str:
    """Object key of the Parquet result written by an analytical query run."""
    return f"{QUERY_RESULTS_PREFIX}/{task_id}.parquet"
