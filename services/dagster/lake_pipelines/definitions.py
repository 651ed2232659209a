"""Dagster Definitions - Repository Configuration.

Defines jobs, resources, and sensors for the data lake sync pipeline.
"""

from dagster import Definitions, EnvVar

from .jobs import analytical_query_job, change_feed_sync_job
from .resources import MinIOResource, MongoDBResource
from .sensors import (
    change_feed_sensor,
    deletion_queue_sensor,
    task_canceled_sensor,
    task_failure_sensor,
    task_success_sensor,
)


# =============================================================================
# Definitions
# =============================================================================

defs = Definitions(
    jobs=[
        analytical_query_job,  # Query engine for asynchronous tasks
        change_feed_sync_job,  # Applies planned change feed batches
    ],
    resources={
        "minio": MinIOResource(
            endpoint=EnvVar("MINIO_ENDPOINT"),
            access_key=EnvVar("MINIO_ROOT_USER"),
            secret_key=EnvVar("MINIO_ROOT_PASSWORD"),
            use_ssl=False,
            lake_bucket="data-lake",
        ),
        "mongodb": MongoDBResource(
            connection_string=EnvVar("MONGO_CONNECTION_STRING"),
            database="data_lake",
        ),
    },
    schedules=[],
    sensors=[
        change_feed_sensor,  # Plans change batches: materialize writes, cascade deletes
        deletion_queue_sensor,  # Physical deletion for deletion tasks
        task_success_sensor,  # Lifecycle: task SUCCEEDED on run success
        task_failure_sensor,  # Lifecycle: task FAILED on run failure
        task_canceled_sensor,  # Lifecycle: task FAILED on run cancel
    ],
)
