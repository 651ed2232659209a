"""Dagster Ops - Reusable Computation Units."""

from .query_ops import execute_analytical_query
from .sync_ops import apply_change_batch

__all__ = [
    "apply_change_batch",
    "execute_analytical_query",
]
