"""
DuckDB configuration defaults for analytical queries.

Centralizes version pin guidance and runtime settings for S3 access to the
lake bucket and out-of-core execution.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from ..resources.minio_resource import MinIOResource

DUCKDB_VERSION_PIN = "1.4.0"
DEFAULT_DUCKDB_MEMORY_LIMIT = "1GB"
DEFAULT_DUCKDB_TEMP_SUBDIR = "duckdb"


@dataclass(frozen=True)
class DuckDBQuerySettings:
    s3_endpoint: str
    s3_access_key_id: str
    s3_secret_access_key: str
    s3_url_style: str
    s3_use_ssl: bool
    memory_limit: str
    temp_directory: Optional[str] = None

    def statements(self) -> list[str]:
        """SET statements applying these settings to a connection."""
        statements = [
            f"SET s3_endpoint = '{self.s3_endpoint}'",
            f"SET s3_access_key_id = '{self.s3_access_key_id}'",
            f"SET s3_secret_access_key = '{self.s3_secret_access_key}'",
            f"SET s3_url_style = '{self.s3_url_style}'",
            f"SET s3_use_ssl = {'true' if self.s3_use_ssl else 'false'}",
            f"SET memory_limit = '{self.memory_limit}'",
        ]
        if self.temp_directory:
            statements.append(f"SET temp_directory = '{self.temp_directory}'")
        return statements


def build_duckdb_query_settings(
    *,
    minio: MinIOResource,
    temp_dir: Optional[Path] = None,
    memory_limit: str = DEFAULT_DUCKDB_MEMORY_LIMIT,
) -> DuckDBQuerySettings:
    endpoint = minio.endpoint
    if "://" in endpoint:
        parsed = urlparse(endpoint)
        endpoint = parsed.netloc or parsed.path

    return DuckDBQuerySettings(
        s3_endpoint=endpoint,
        s3_access_key_id=minio.access_key,
        s3_secret_access_key=minio.secret_key,
        s3_url_style="path",
        s3_use_ssl=minio.use_ssl,
        memory_limit=memory_limit,
        temp_directory=str(temp_dir) if temp_dir is not None else None,
    )
