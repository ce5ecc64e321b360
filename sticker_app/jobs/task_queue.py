"""
Task Queue

Thin client over Supabase Queues (pgmq) exposed through the `pgmq_public`
RPC schema. Reading a message leases it for the visibility timeout; a
message that is not deleted before the lease expires is delivered again.
"""

import logging
from typing import Any, Dict, List, Optional

from sticker_app.jobs.errors import DependencyError
from sticker_app.jobs.job_types import QueueMessage, TaskMessage

logger = logging.getLogger(__name__)

QUEUE_SCHEMA = "pgmq_public"
DEFAULT_QUEUE_NAME = "sticker_tasks"


class TaskQueue:
    """Leased-delivery queue for sticker generation tasks."""

    def __init__(self, supabase, queue_name: str = DEFAULT_QUEUE_NAME):
        self.supabase = supabase
        self.queue_name = queue_name

    def _rpc(self, fn: str, params: Dict[str, Any]):
        try:
            return self.supabase.schema(QUEUE_SCHEMA).rpc(fn, params).execute()
        except Exception as e:
            logger.error(f"Queue {fn} on {self.queue_name} failed: {e}")
            raise DependencyError(f"Queue {fn} failed: {e}", {"queue": self.queue_name}) from e

    def send(self, task: TaskMessage, delay_seconds: int = 0) -> Optional[int]:
        """Enqueue a task. Returns the new message id when the queue reports one."""
        result = self._rpc("send", {
            "queue_name": self.queue_name,
            "message": task.to_payload(),
            "sleep_seconds": delay_seconds,
        })
        data = result.data
        if isinstance(data, list):
            return int(data[0]) if data else None
        return int(data) if data is not None else None

    def read(self, batch_size: int, visibility_timeout_seconds: int) -> List[QueueMessage]:
        """Lease up to `batch_size` visible messages."""
        result = self._rpc("read", {
            "queue_name": self.queue_name,
            "sleep_seconds": visibility_timeout_seconds,
            "n": batch_size,
        })
        return [QueueMessage.model_validate(row) for row in (result.data or [])]

    def delete(self, msg_id: int) -> bool:
        """Acknowledge a message so it is never delivered again."""
        result = self._rpc("delete", {
            "queue_name": self.queue_name,
            "message_id": msg_id,
        })
        return bool(result.data)
