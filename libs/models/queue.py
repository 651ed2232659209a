# =============================================================================
# Work Queue Model
# =============================================================================
# Defines QueueMessage, a small JSON message delivered at-least-once from the
# `work_queue` collection. Unacknowledged messages become visible again after
# their visibility timeout.
# =============================================================================

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

__all__ = ["QueueMessage", "DELETION_QUEUE"]


# Queue carrying succeeded deletion tasks to the physical-deletion consumer
DELETION_QUEUE = "deletion"


class QueueMessage(BaseModel):
    """
    A claimed work-queue message.

    Attributes:
        message_id: Id used to acknowledge the message
        queue: Queue name
        body: JSON payload
        receive_count: Number of times the message has been claimed
        enqueued_at: Timestamp when the message was enqueued
        visible_at: Timestamp after which an unacknowledged claim expires
    """

    message_id: str
    queue: str
    body: dict[str, Any] = Field(default_factory=dict)
    receive_count: int = 0
    enqueued_at: Optional[datetime] = None
    visible_at: Optional[datetime] = None
