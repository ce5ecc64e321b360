"""
Queue Runner

Drains leased sticker tasks from the queue:
- Poison messages are deleted and never retried
- Duplicate and obsolete deliveries are dropped by the idempotency gate
- Work items are claimed with a conditional update before any work starts
- Cancelled jobs are detected before the generation call
- Failed attempts put the work item back to queued and leave the message
  to be redelivered when its lease expires

A drain is stateless; any number of drains may run at once.
"""

import logging
import traceback
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from sticker_app.generation import ImageGenerationClient
from sticker_app.jobs.errors import DependencyError, PoisonMessageError
from sticker_app.jobs.job_store import JobStore
from sticker_app.jobs.job_types import (
    DrainRequest, DrainResult, JobStatus, MessageOutcome, QueueMessage,
    TaskMessage, WorkItem, WorkItemStatus,
)
from sticker_app.jobs.progress import ProgressAggregator
from sticker_app.jobs.task_queue import TaskQueue
from sticker_app.jobs.utils import error_message, parse_json_payload
from sticker_app.storage import ArtifactStore, PNG_CONTENT_TYPE, artifact_path

logger = logging.getLogger(__name__)


def parse_task(message: QueueMessage) -> TaskMessage:
    """Validate a message payload, raising PoisonMessageError if unusable."""
    payload = parse_json_payload(message.message)
    if not isinstance(payload, dict):
        raise PoisonMessageError("Message payload is not an object", {"msg_id": message.msg_id})
    try:
        return TaskMessage.model_validate(payload)
    except PydanticValidationError as e:
        raise PoisonMessageError(
            f"Message payload failed validation: {e.error_count()} error(s)",
            {"msg_id": message.msg_id},
        ) from e


class QueueRunner:
    """Processes one batch of queue messages per `drain` call."""

    def __init__(
        self,
        store: JobStore,
        queue: TaskQueue,
        artifacts: ArtifactStore,
        generator: ImageGenerationClient,
        progress: Optional[ProgressAggregator] = None
    ):
        self.store = store
        self.queue = queue
        self.artifacts = artifacts
        self.generator = generator
        self.progress = progress or ProgressAggregator(store)

    def drain(
        self,
        batch_size: int = 5,
        visibility_timeout_seconds: int = 60,
        max_attempts: int = 5
    ) -> DrainResult:
        """
        Lease up to `batch_size` messages and process each of them.

        Out-of-range parameters are clamped. A queue read failure raises
        DependencyError; failures of individual messages never abort the
        rest of the batch.
        """
        params = DrainRequest(
            batch_size=batch_size,
            visibility_timeout_seconds=visibility_timeout_seconds,
            max_attempts=max_attempts,
        )

        messages = self.queue.read(params.batch_size, params.visibility_timeout_seconds)
        result = DrainResult(leased=len(messages))
        if not messages:
            logger.debug("No messages to process")
            return result

        for message in messages:
            outcome = self.process_message(message, params.max_attempts)
            result.record(outcome)

        logger.info(
            f"Drained {result.leased} message(s): "
            f"{result.succeeded} succeeded, {result.failed} failed"
        )
        return result

    def process_message(self, message: QueueMessage, max_attempts: int) -> MessageOutcome:
        try:
            return self._process(message, max_attempts)
        except Exception as e:
            # Message stays leased and is redelivered after its timeout
            logger.error(
                f"Error processing message {message.msg_id}: {e}\n{traceback.format_exc()}"
            )
            return MessageOutcome.RETRY

    def _process(self, message: QueueMessage, max_attempts: int) -> MessageOutcome:
        try:
            task = parse_task(message)
        except PoisonMessageError as e:
            logger.warning(f"Dropping poison message {message.msg_id}: {e}")
            self._ack(message)
            return MessageOutcome.DROPPED

        item = self.store.get_work_item(task.work_item_id)
        if item is None:
            logger.warning(f"Dropping message {message.msg_id}: sticker {task.work_item_id} not found")
            self._ack(message)
            return MessageOutcome.DROPPED

        # Idempotency gate
        if item.is_complete:
            logger.info(f"Sticker {item.id} already done; dropping duplicate message {message.msg_id}")
            self._ack(message)
            return MessageOutcome.SUCCEEDED

        if item.status != WorkItemStatus.QUEUED:
            logger.info(
                f"Sticker {item.id} is {item.status.value}; dropping message {message.msg_id}"
            )
            self._ack(message)
            return MessageOutcome.DROPPED

        if item.attempts >= max_attempts:
            self.store.transition_work_item(
                item.id, WorkItemStatus.QUEUED, WorkItemStatus.ERROR,
                {"error": f"Max attempts exceeded ({max_attempts})"},
            )
            self.progress.recompute(item.job_id)
            logger.warning(f"Sticker {item.id} exhausted {max_attempts} attempt(s)")
            self._ack(message)
            return MessageOutcome.EXHAUSTED

        claimed = self.store.transition_work_item(
            item.id, WorkItemStatus.QUEUED, WorkItemStatus.RUNNING,
            {"attempts": item.attempts + 1},
            expected_attempts=item.attempts,
        )
        if claimed is None:
            logger.info(f"Sticker {item.id} was claimed by another worker; dropping message {message.msg_id}")
            self._ack(message)
            return MessageOutcome.DROPPED

        try:
            outcome = self._run_claimed(claimed)
        except Exception as e:
            self._release(claimed, e)
            return MessageOutcome.RETRY

        self._ack(message)
        return outcome

    def _run_claimed(self, item: WorkItem) -> MessageOutcome:
        self.store.set_job_status(item.job_id, JobStatus.RUNNING)

        job = self.store.get_job(item.job_id)
        if job is None or job.status == JobStatus.CANCELLED:
            logger.info(f"Job {item.job_id} is cancelled; skipping sticker {item.id}")
            self.store.transition_work_item(item.id, WorkItemStatus.RUNNING, WorkItemStatus.CANCELLED)
            return MessageOutcome.DROPPED

        style = self.store.get_style(job.style_id)
        if style is None:
            self.store.transition_work_item(
                item.id, WorkItemStatus.RUNNING, WorkItemStatus.ERROR,
                {"error": f"Style {job.style_id} not found"},
            )
            self.progress.recompute(job.id)
            logger.error(f"Style {job.style_id} for job {job.id} not found; sticker {item.id} failed")
            return MessageOutcome.DROPPED

        request = self.generator.build_request(style.compiled_template, item.subject)
        image = self.generator.generate(request)

        path = artifact_path(job.id, item.id)
        url = self.artifacts.upload(path, image, PNG_CONTENT_TYPE)

        done = self.store.transition_work_item(
            item.id, WorkItemStatus.RUNNING, WorkItemStatus.DONE,
            {"artifact_path": path, "artifact_url": url, "error": None},
        )
        if done is None:
            # Job was cancelled while generating
            if self.store.get_work_item(item.id) is None:
                self.artifacts.delete([path])
            logger.info(f"Sticker {item.id} changed during generation; result discarded")
            return MessageOutcome.DROPPED

        self.progress.recompute(job.id)
        logger.info(f"Sticker {item.id} for job {job.id} done")
        return MessageOutcome.SUCCEEDED

    def _release(self, item: WorkItem, exc: Exception) -> None:
        """Put a claimed work item back to queued after a failed attempt."""
        message = error_message(exc)
        logger.warning(
            f"Attempt {item.attempts} for sticker {item.id} failed: {message}"
        )
        try:
            self.store.transition_work_item(
                item.id, WorkItemStatus.RUNNING, WorkItemStatus.QUEUED,
                {"error": message},
            )
            self.progress.recompute(item.job_id)
        except DependencyError as e:
            logger.error(f"Could not release sticker {item.id}: {e}")

    def _ack(self, message: QueueMessage) -> None:
        self.queue.delete(message.msg_id)
