"""Dagster Sensors - Change feed, task lifecycle and deletion queue."""

from .change_feed_sensor import change_feed_sensor
from .deletion_queue_sensor import deletion_queue_sensor
from .task_status_sensor import (
    task_canceled_sensor,
    task_failure_sensor,
    task_success_sensor,
)

__all__ = [
    "change_feed_sensor",
    "deletion_queue_sensor",
    "task_success_sensor",
    "task_failure_sensor",
    "task_canceled_sensor",
]
