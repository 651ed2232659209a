"""Arrow type inference and normalization for single-record columnar artifacts."""

import io
import json
import logging
import re
from datetime import datetime
from typing import Any, Mapping

import pyarrow as pa
import pyarrow.parquet as pq
import pyarrow.types as pat

from libs.models.base import ensure_utc
from libs.models.catalog import CatalogColumn

__all__ = [
    "is_iso_timestamp",
    "parse_iso_timestamp",
    "infer_arrow_type",
    "coerce_value",
    "build_record_table",
    "table_to_parquet_bytes",
    "hive_type_name",
    "catalog_columns",
    "TIMESTAMP_TYPE",
]

logger = logging.getLogger(__name__)


TIMESTAMP_TYPE = pa.timestamp("us", tz="UTC")

# Date and time are both required; seconds, 1-6 fraction digits and the
# offset are optional.
_ISO_TIMESTAMP_PATTERN = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}(:\d{2}(\.\d{1,6})?)?(Z|[+-]\d{2}:\d{2})?$"
)

_FRACTION_PATTERN = re.compile(r"\.(\d{1,6})")

# Integer widths, narrowest first
_INTEGER_TYPES = (
    (-(2**7), 2**7 - 1, pa.int8()),
    (-(2**15), 2**15 - 1, pa.int16()),
    (-(2**31), 2**31 - 1, pa.int32()),
    (-(2**63), 2**63 - 1, pa.int64()),
)


def _fromisoformat_input(value: str) -> str:
    # Python 3.10 fromisoformat only takes 3 or 6 fraction digits and no "Z"
    value = _FRACTION_PATTERN.sub(lambda m: "." + m.group(1).ljust(6, "0"), value, count=1)
    return value.replace("Z", "+00:00")


def is_iso_timestamp(value: Any) -> bool:
    """
    Check whether a value is a strict ISO-8601 timestamp string.

    Example:
        >>> is_iso_timestamp("2025-06-15T13:27:31.659Z")
        True
        >>> is_iso_timestamp("2025-06-15")
        False
    """
    if not isinstance(value, str) or not _ISO_TIMESTAMP_PATTERN.match(value):
        return False
    try:
        datetime.fromisoformat(_fromisoformat_input(value))
    except ValueError:
        return False
    return True


def parse_iso_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 string into a UTC datetime (naive values are UTC)."""
    return ensure_utc(datetime.fromisoformat(_fromisoformat_input(value)))


def infer_arrow_type(value: Any) -> pa.DataType:
    """
    Decide the minimal physical type for one observed value.

    - ISO-8601 strings and datetimes -> timestamp[us, UTC]
    - bool -> bool_
    - int -> smallest of int8/int16/int32/int64 holding the value
      (beyond int64 -> string)
    - float -> float32
    - anything else (None, lists, dicts, other scalars) -> string
    """
    if isinstance(value, datetime):
        return TIMESTAMP_TYPE
    if isinstance(value, bool):
        return pa.bool_()
    if isinstance(value, int):
        for lower, upper, dtype in _INTEGER_TYPES:
            if lower <= value <= upper:
                return dtype
        return pa.string()
    if isinstance(value, float):
        return pa.float32()
    if is_iso_timestamp(value):
        return TIMESTAMP_TYPE
    return pa.string()


def coerce_value(value: Any, dtype: pa.DataType) -> Any:
    """Convert a value into the Python representation expected by ``dtype``."""
    if value is None:
        return None
    if pat.is_timestamp(dtype):
        if isinstance(value, datetime):
            return ensure_utc(value)
        return parse_iso_timestamp(value)
    if pat.is_string(dtype):
        if isinstance(value, str):
            return value
        if isinstance(value, (list, dict)):
            return json.dumps(value, default=str, sort_keys=True)
        return str(value)
    return value


def build_record_table(row: Mapping[str, Any]) -> pa.Table:
    """
    Build a one-row Arrow table with an inferred minimal schema.

    Args:
        row: Column name to value mapping for a single record

    Returns:
        pa.Table with one row and one column per key, in key order
    """
    fields = []
    arrays = []
    for name, value in row.items():
        dtype = infer_arrow_type(value)
        fields.append(pa.field(name, dtype))
        arrays.append(pa.array([coerce_value(value, dtype)], type=dtype))
        logger.debug(f"Inferred column '{name}' as {dtype}")

    return pa.Table.from_arrays(arrays, schema=pa.schema(fields))


def table_to_parquet_bytes(table: pa.Table) -> bytes:
    """Serialize a table to compact snappy-compressed Parquet."""
    buffer = io.BytesIO()
    pq.write_table(
        table,
        buffer,
        compression="snappy",
        use_dictionary=False,
        write_statistics=False,
    )
    return buffer.getvalue()


def hive_type_name(dtype: pa.DataType) -> str:
    """
    Map an Arrow type to the catalog's Hive type name.

    Example:
        >>> hive_type_name(pa.int16())
        'smallint'
    """
    if pat.is_int8(dtype):
        return "tinyint"
    if pat.is_int16(dtype):
        return "smallint"
    if pat.is_int32(dtype):
        return "int"
    if pat.is_int64(dtype):
        return "bigint"
    if pat.is_float32(dtype):
        return "float"
    if pat.is_float64(dtype):
        return "double"
    if pat.is_boolean(dtype):
        return "boolean"
    if pat.is_timestamp(dtype):
        return "timestamp"
    if pat.is_binary(dtype) or pat.is_large_binary(dtype):
        return "binary"
    if not (pat.is_string(dtype) or pat.is_large_string(dtype) or pat.is_null(dtype)):
        logger.warning(f"No catalog type for Arrow type {dtype}, using string")
    return "string"


def catalog_columns(schema: pa.Schema) -> list[CatalogColumn]:
    """Catalog column list for an Arrow schema, in schema order."""
    return [CatalogColumn(name=field.name, type=hive_type_name(field.type)) for field in schema]
