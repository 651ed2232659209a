"""Dagster Jobs - Executable Workflows."""

from .query_job import analytical_query_job
from .sync_job import change_feed_sync_job

__all__ = ["analytical_query_job", "change_feed_sync_job"]
