from __future__ import annotations

import boto3
import pytest
from botocore.stub import Stubber

from receipt_ledger.core.errors import QueueError
from receipt_ledger.core.queue import (
    LocalMessageQueue,
    QueueMessage,
    SqsMessageQueue,
    get_queue,
)

QUEUE_URL = "https://sqs.us-east-1.amazonaws.com/123456789012/expense-processing-queue"


def _sqs_client():
    return boto3.client(
        "sqs",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


def test_get_queue_uses_local_backend_in_tests():
    queue = get_queue()
    assert isinstance(queue, LocalMessageQueue)
    assert get_queue() is queue


def test_local_queue_delete_is_idempotent():
    queue = LocalMessageQueue()
    queue.send(body="{}")
    [message] = queue.receive(max_messages=10, visibility_timeout=30)

    assert queue.delete(message) is True
    assert queue.depth() == 0
    assert queue.delete(message) is True
    assert queue.delete(QueueMessage(message_id="x", receipt_handle="unknown", body="")) is True


def test_local_queue_hides_received_messages_until_timeout():
    queue = LocalMessageQueue()
    queue.send(body="a")
    queue.send(body="b")

    first = queue.receive(max_messages=1, visibility_timeout=30)
    assert [m.body for m in first] == ["a"]
    second = queue.receive(max_messages=10, visibility_timeout=30)
    assert [m.body for m in second] == ["b"]
    assert queue.receive(max_messages=10, visibility_timeout=30) == []


def test_local_queue_redelivers_after_visibility_timeout():
    queue = LocalMessageQueue()
    queue.send(body="a")

    [first] = queue.receive(max_messages=10, visibility_timeout=0)
    [again] = queue.receive(max_messages=10, visibility_timeout=0)

    assert again.message_id == first.message_id
    assert again.receive_count == 2
    assert again.receipt_handle != first.receipt_handle
    # The stale handle no longer owns the message.
    assert queue.delete(first) is True
    assert queue.depth() == 1
    assert queue.delete(again) is True
    assert queue.depth() == 0


def test_sqs_receive_and_delete():
    client = _sqs_client()
    stubber = Stubber(client)
    stubber.add_response(
        "create_queue",
        {"QueueUrl": QUEUE_URL},
        {"QueueName": "expense-processing-queue"},
    )
    stubber.add_response(
        "receive_message",
        {
            "Messages": [
                {
                    "MessageId": "m-1",
                    "ReceiptHandle": "rh-1",
                    "Body": '{"JobId": "j"}',
                    "Attributes": {"ApproximateReceiveCount": "3"},
                }
            ]
        },
        {
            "QueueUrl": QUEUE_URL,
            "MaxNumberOfMessages": 10,
            "WaitTimeSeconds": 20,
            "VisibilityTimeout": 300,
            "AttributeNames": ["ApproximateReceiveCount"],
        },
    )
    stubber.add_response("delete_message", {}, {"QueueUrl": QUEUE_URL, "ReceiptHandle": "rh-1"})

    queue = SqsMessageQueue(client)
    with stubber:
        queue.ensure_queue()
        [message] = queue.receive(max_messages=50, wait_seconds=60, visibility_timeout=300)
        assert message == QueueMessage(
            message_id="m-1", receipt_handle="rh-1", body='{"JobId": "j"}', receive_count=3
        )
        assert queue.delete(message) is True
    stubber.assert_no_pending_responses()


def test_sqs_delete_of_already_deleted_message_is_success():
    client = _sqs_client()
    stubber = Stubber(client)
    stubber.add_response("create_queue", {"QueueUrl": QUEUE_URL})
    stubber.add_client_error(
        "delete_message",
        service_error_code="ReceiptHandleIsInvalid",
        http_status_code=400,
    )

    queue = SqsMessageQueue(client)
    with stubber:
        assert queue.delete(QueueMessage("m-1", "stale-handle", "{}")) is True
    stubber.assert_no_pending_responses()


def test_sqs_delete_other_failure_returns_false():
    client = _sqs_client()
    stubber = Stubber(client)
    stubber.add_response("create_queue", {"QueueUrl": QUEUE_URL})
    stubber.add_client_error("delete_message", service_error_code="AccessDenied")

    queue = SqsMessageQueue(client)
    with stubber:
        assert queue.delete(QueueMessage("m-1", "rh-1", "{}")) is False


def test_sqs_ensure_queue_failure_raises_queue_error():
    client = _sqs_client()
    stubber = Stubber(client)
    stubber.add_client_error("create_queue", service_error_code="AccessDenied")

    with stubber, pytest.raises(QueueError):
        SqsMessageQueue(client).ensure_queue()


def test_sqs_queue_url_unresolved_raises_queue_error():
    class _UnopenedQueue(SqsMessageQueue):
        def ensure_queue(self) -> None:
            return None

    with pytest.raises(QueueError):
        _UnopenedQueue(_sqs_client()).queue_url
