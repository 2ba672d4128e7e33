from __future__ import annotations

import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from receipt_ledger.core.aws import aws_client
from receipt_ledger.core.config import settings
from receipt_ledger.core.errors import QueueError
from receipt_ledger.core.logging import get_logger, log_event, log_exception, monotonic_ms

logger = get_logger(__name__)

# Error codes SQS returns when the message behind a receipt handle is already gone.
_ALREADY_DELETED_CODES = {
    "ReceiptHandleIsInvalid",
    "AWS.SimpleQueueService.NonExistentMessage",
    "AWS.SimpleQueueService.ReceiptHandleIsInvalid",
}


@dataclass(frozen=True)
class QueueMessage:
    message_id: str
    receipt_handle: str
    body: str
    receive_count: int = 1


class MessageQueue:
    def ensure_queue(self) -> None:  # pragma: no cover
        raise NotImplementedError

    def send(self, *, body: str) -> str:  # pragma: no cover
        raise NotImplementedError

    def receive(
        self, *, max_messages: int, wait_seconds: int, visibility_timeout: int
    ) -> list[QueueMessage]:  # pragma: no cover
        raise NotImplementedError

    def delete(self, message: QueueMessage) -> bool:  # pragma: no cover
        raise NotImplementedError


@dataclass
class _LocalEntry:
    message_id: str
    body: str
    receive_count: int = 0
    receipt_handle: str | None = None
    visible_at: float = 0.0


class LocalMessageQueue(MessageQueue):
    """In-process queue with SQS-like visibility timeouts, for dev and tests."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: OrderedDict[str, _LocalEntry] = OrderedDict()
        self._by_handle: dict[str, str] = {}

    def ensure_queue(self) -> None:
        return None

    def send(self, *, body: str) -> str:
        message_id = str(uuid.uuid4())
        with self._lock:
            self._entries[message_id] = _LocalEntry(message_id=message_id, body=body)
        log_event(logger, "queue.send.success", backend="local", message_id=message_id)
        return message_id

    def receive(
        self, *, max_messages: int, wait_seconds: int = 0, visibility_timeout: int = 30
    ) -> list[QueueMessage]:
        now = time.monotonic()
        out: list[QueueMessage] = []
        with self._lock:
            for entry in self._entries.values():
                if len(out) >= max_messages:
                    break
                if entry.visible_at > now:
                    continue
                if entry.receipt_handle:
                    self._by_handle.pop(entry.receipt_handle, None)
                entry.receive_count += 1
                entry.receipt_handle = uuid.uuid4().hex
                entry.visible_at = now + visibility_timeout
                self._by_handle[entry.receipt_handle] = entry.message_id
                out.append(
                    QueueMessage(
                        message_id=entry.message_id,
                        receipt_handle=entry.receipt_handle,
                        body=entry.body,
                        receive_count=entry.receive_count,
                    )
                )
        return out

    def delete(self, message: QueueMessage) -> bool:
        with self._lock:
            message_id = self._by_handle.pop(message.receipt_handle, None)
            if message_id is not None:
                self._entries.pop(message_id, None)
        if message_id is None:
            log_event(
                logger,
                "queue.delete.already_deleted",
                backend="local",
                message_id=message.message_id,
            )
        return True

    def depth(self) -> int:
        with self._lock:
            return len(self._entries)


class SqsMessageQueue(MessageQueue):
    def __init__(self, client: Any | None = None, *, queue_name: str | None = None) -> None:
        self._client = client or aws_client("sqs", endpoint_url=settings.sqs_endpoint_url)
        self._queue_name = queue_name or settings.queue_name
        self._queue_url: str | None = None

    @property
    def queue_url(self) -> str:
        if self._queue_url is None:
            self.ensure_queue()
        if self._queue_url is None:
            raise QueueError(f"Queue {self._queue_name} has no URL")
        return self._queue_url

    def ensure_queue(self) -> None:
        # CreateQueue returns the existing queue's URL when attributes match.
        try:
            resp = self._client.create_queue(QueueName=self._queue_name)
        except (ClientError, BotoCoreError) as e:
            log_exception(logger, "queue.ensure.failure", backend="sqs", queue=self._queue_name)
            raise QueueError(f"Could not create or open queue {self._queue_name}") from e
        self._queue_url = resp["QueueUrl"]
        log_event(logger, "queue.ensure.success", backend="sqs", queue=self._queue_name)

    def send(self, *, body: str) -> str:
        try:
            resp = self._client.send_message(QueueUrl=self.queue_url, MessageBody=body)
        except (ClientError, BotoCoreError) as e:
            log_exception(logger, "queue.send.failure", backend="sqs", queue=self._queue_name)
            raise QueueError("Could not send message") from e
        message_id = resp.get("MessageId", "")
        log_event(logger, "queue.send.success", backend="sqs", message_id=message_id)
        return message_id

    def receive(
        self, *, max_messages: int, wait_seconds: int, visibility_timeout: int
    ) -> list[QueueMessage]:
        start = time.monotonic()
        try:
            resp = self._client.receive_message(
                QueueUrl=self.queue_url,
                MaxNumberOfMessages=max(1, min(10, max_messages)),
                WaitTimeSeconds=max(0, min(20, wait_seconds)),
                VisibilityTimeout=visibility_timeout,
                AttributeNames=["ApproximateReceiveCount"],
            )
        except (ClientError, BotoCoreError) as e:
            log_exception(
                logger,
                "queue.receive.failure",
                backend="sqs",
                queue=self._queue_name,
                duration_ms=monotonic_ms(start),
            )
            raise QueueError("Could not receive messages") from e

        out: list[QueueMessage] = []
        for raw in resp.get("Messages") or []:
            attrs = raw.get("Attributes") or {}
            try:
                receive_count = int(attrs.get("ApproximateReceiveCount", 1))
            except (TypeError, ValueError):
                receive_count = 1
            out.append(
                QueueMessage(
                    message_id=raw.get("MessageId", ""),
                    receipt_handle=raw.get("ReceiptHandle", ""),
                    body=raw.get("Body") or "",
                    receive_count=receive_count,
                )
            )
        return out

    def delete(self, message: QueueMessage) -> bool:
        try:
            self._client.delete_message(
                QueueUrl=self.queue_url, ReceiptHandle=message.receipt_handle
            )
        except ClientError as e:
            code = (e.response.get("Error") or {}).get("Code")
            if code in _ALREADY_DELETED_CODES:
                log_event(
                    logger,
                    "queue.delete.already_deleted",
                    backend="sqs",
                    message_id=message.message_id,
                    error_code=code,
                )
                return True
            log_exception(
                logger,
                "queue.delete.failure",
                backend="sqs",
                message_id=message.message_id,
                error_code=code,
            )
            return False
        except BotoCoreError:
            log_exception(
                logger, "queue.delete.failure", backend="sqs", message_id=message.message_id
            )
            return False
        log_event(logger, "queue.delete.success", backend="sqs", message_id=message.message_id)
        return True


_queue: MessageQueue | None = None


def get_queue() -> MessageQueue:
    global _queue  # noqa: PLW0603
    if _queue is not None:
        return _queue

    if settings.queue_backend == "sqs":
        _queue = SqsMessageQueue()
    else:
        _queue = LocalMessageQueue()
    return _queue
