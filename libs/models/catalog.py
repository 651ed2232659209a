# =============================================================================
# Catalog Models Module
# =============================================================================
# Defines the schema catalog entry for a materialized table. Entries are
# created lazily by the materializer and never updated afterwards.
# =============================================================================

from typing import Optional

from pydantic import BaseModel, Field

from .base import Name, UtcDatetime, utc_now

__all__ = [
    "CatalogColumn",
    "CatalogEntry",
    "PARTITION_KEYS",
]


PARTITION_KEYS = ("year", "month", "day")


class CatalogColumn(BaseModel):
    """Column name and Hive type name (tinyint, int, float, timestamp, ...)."""

    name: str
    type: str


def _default_partition_keys() -> list[CatalogColumn]:
    return [CatalogColumn(name=key, type="string") for key in PARTITION_KEYS]


class CatalogEntry(BaseModel):
    """
    Catalog entry for one table of the columnar store.

    Attributes:
        table_name: Entity kind or relation table name
        location: s3:// prefix holding the table's partitions
        columns: Column set inferred from the first materialized record
        partition_keys: Date partition scheme (year/month/day)
        table_format: Storage format of the artifacts
        created_at: Timestamp when the entry was created
    """

    table_name: Name
    location: str = Field(..., description="s3://bucket/tables/{table}/")
    columns: list[CatalogColumn] = Field(default_factory=list)
    partition_keys: list[CatalogColumn] = Field(default_factory=_default_partition_keys)
    table_format: str = Field("parquet", description="Artifact storage format")
    created_at: UtcDatetime = Field(default_factory=utc_now)

    def column_types(self) -> dict[str, str]:
        return {column.name: column.type for column in self.columns}

    def column(self, name: str) -> Optional[CatalogColumn]:
        for column in self.columns:
            if column.name == name:
                return column
        return None
