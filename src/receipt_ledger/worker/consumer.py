from __future__ import annotations

import enum
import logging
import threading
import time
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor

from receipt_ledger.core.config import settings
from receipt_ledger.core.errors import DecodeError
from receipt_ledger.core.logging import (
    get_logger,
    log_event,
    log_exception,
    monotonic_ms,
    reset_message_context,
    set_job_context,
    set_message_context,
)
from receipt_ledger.core.queue import MessageQueue, QueueMessage, get_queue
from receipt_ledger.modules.extraction.service import DocumentFieldExtractor
from receipt_ledger.modules.jobs import webhook
from receipt_ledger.modules.jobs.schemas import JobStatus, WebhookPayload, decode_job
from receipt_ledger.modules.jobs.service import execute_job

logger = get_logger(__name__)


class MessageOutcome(str, enum.Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    DROPPED = "dropped"


class QueueWorker:
    """
    Polls the job queue and drives each message through
    decode -> extract -> reconcile -> notify -> delete.

    Every message is deleted once handled, whatever the outcome: undecodable
    bodies are dropped silently, failed jobs are reported to their webhook and
    dropped. Deletes are idempotent so a redelivered message that was already
    removed does not count as an error.
    """

    def __init__(
        self,
        *,
        queue: MessageQueue | None = None,
        extractor: DocumentFieldExtractor | None = None,
        batch_size: int | None = None,
        concurrency: int | None = None,
        poll_interval: float | None = None,
        error_backoff: float | None = None,
    ) -> None:
        self._queue = queue or get_queue()
        self._extractor = extractor or DocumentFieldExtractor()
        self._batch_size = batch_size or settings.worker_batch_size
        self._concurrency = max(1, concurrency or settings.worker_concurrency)
        self._poll_interval = (
            settings.worker_poll_interval_seconds if poll_interval is None else poll_interval
        )
        self._error_backoff = (
            settings.worker_error_backoff_seconds if error_backoff is None else error_backoff
        )
        self._executor: ThreadPoolExecutor | None = None

    def run(self, stop_event: threading.Event) -> None:
        self._queue.ensure_queue()
        log_event(
            logger,
            "worker.start",
            batch_size=self._batch_size,
            concurrency=self._concurrency,
        )
        if self._concurrency > 1:
            self._executor = ThreadPoolExecutor(
                max_workers=self._concurrency, thread_name_prefix="job"
            )
        try:
            while not stop_event.is_set():
                try:
                    messages = self._receive()
                except Exception:  # noqa: BLE001
                    log_exception(logger, "worker.poll.failure")
                    stop_event.wait(self._error_backoff)
                    continue
                if not messages:
                    log_event(logger, "worker.poll.empty", level=logging.DEBUG)
                    stop_event.wait(self._poll_interval)
                    continue
                self.process_batch(messages)
        finally:
            if self._executor is not None:
                # In-flight messages finish; nothing new is picked up.
                self._executor.shutdown(wait=True)
                self._executor = None
            log_event(logger, "worker.stop")

    def poll_once(self) -> list[MessageOutcome | None]:
        messages = self._receive()
        if not messages:
            return []
        return self.process_batch(messages)

    def process_batch(self, messages: Sequence[QueueMessage]) -> list[MessageOutcome | None]:
        start = time.monotonic()
        if self._executor is not None and len(messages) > 1:
            outcomes = list(self._executor.map(self._handle_isolated, messages))
        else:
            outcomes = [self._handle_isolated(message) for message in messages]
        log_event(
            logger,
            "worker.batch.finish",
            message_count=len(messages),
            completed=sum(1 for o in outcomes if o == MessageOutcome.COMPLETED),
            failed=sum(1 for o in outcomes if o == MessageOutcome.FAILED),
            dropped=sum(1 for o in outcomes if o == MessageOutcome.DROPPED),
            duration_ms=monotonic_ms(start),
        )
        return outcomes

    def handle_message(self, message: QueueMessage) -> MessageOutcome:
        tokens = set_message_context(message_id=message.message_id)
        start = time.monotonic()
        try:
            try:
                job = decode_job(message.body)
            except DecodeError:
                log_exception(
                    logger,
                    "job.decode.failure",
                    receive_count=message.receive_count,
                    body_length=len(message.body or ""),
                )
                self._acknowledge(message)
                return MessageOutcome.DROPPED

            set_job_context(job.job_id)
            log_event(
                logger,
                "job.start",
                user_id=job.user_id,
                group_id=job.group_id,
                receive_count=message.receive_count,
            )
            expense_id: int | None = None
            try:
                expense_id, invoice = execute_job(job, extractor=self._extractor)
                payload = WebhookPayload.completed(job, invoice)
            except Exception as e:  # noqa: BLE001
                log_exception(
                    logger,
                    "job.error",
                    error_type=type(e).__name__,
                    user_id=job.user_id,
                    group_id=job.group_id,
                )
                payload = WebhookPayload.failed(job, error=str(e) or type(e).__name__)

            try:
                if job.webhook_url:
                    webhook.notify(job.webhook_url, payload.to_json())
            finally:
                self._acknowledge(message)

            log_event(
                logger,
                "job.finish",
                status=payload.status.value,
                expense_id=expense_id,
                duration_ms=monotonic_ms(start),
            )
            if payload.status == JobStatus.COMPLETED:
                return MessageOutcome.COMPLETED
            return MessageOutcome.FAILED
        finally:
            reset_message_context(tokens)

    def _handle_isolated(self, message: QueueMessage) -> MessageOutcome | None:
        try:
            return self.handle_message(message)
        except Exception:  # noqa: BLE001
            log_exception(logger, "worker.message.unhandled", message_id=message.message_id)
            return None

    def _receive(self) -> list[QueueMessage]:
        return self._queue.receive(
            max_messages=self._batch_size,
            wait_seconds=settings.worker_wait_seconds,
            visibility_timeout=settings.worker_visibility_timeout_seconds,
        )

    def _acknowledge(self, message: QueueMessage) -> None:
        if not self._queue.delete(message):
            log_event(
                logger,
                "job.ack.failure",
                message_id=message.message_id,
                receive_count=message.receive_count,
            )
