"""
Tests for download commands and the queues that carry them.
"""

import json
import pytest
from datetime import datetime, timedelta

from botocore.exceptions import ClientError

from archivesync.commands import (
    DownloadGamesCommand,
    QueuePublishError,
    SqlCommandQueue,
    SqsCommandQueue,
)


class StubSqsClient:
    def __init__(self, error=None):
        self.messages = []
        self.error = error

    def send_message(self, **kwargs):
        if self.error is not None:
            raise self.error
        self.messages.append(kwargs)
        return {"MessageId": str(len(self.messages))}


class TestDownloadGamesCommand:
    """Test the outbound message shape."""

    def test_json_keys(self):
        command = DownloadGamesCommand(
            username="hikaru",
            platform="CHESS_DOT_COM",
            archiveId="2024/01",
            userId="15448422",
            downloadId="d-1",
        )
        assert json.loads(command.to_json()) == {
            "username": "hikaru",
            "platform": "CHESS_DOT_COM",
            "archiveId": "2024/01",
            "userId": "15448422",
            "downloadId": "d-1",
        }
        assert DownloadGamesCommand.from_json(command.to_json()) == command


class TestSqlCommandQueue:
    """Test deduplication and ordering of the local queue."""

    def test_duplicate_within_window_is_dropped(self, sql_queue):
        assert sql_queue.send("a", deduplication_id="2024/01", group_id="u1") is True
        assert sql_queue.send("b", deduplication_id="2024/01", group_id="u1") is False

        messages = sql_queue.receive()
        assert [m.body for m in messages] == ["a"]

    def test_duplicate_after_window_is_accepted(self, session_factory):
        now = [datetime(2024, 1, 1, 12, 0, 0)]
        queue = SqlCommandQueue(session_factory, dedup_window_s=300, clock=lambda: now[0])

        assert queue.send("a", deduplication_id="2024/01", group_id="u1")
        now[0] += timedelta(seconds=301)
        assert queue.send("b", deduplication_id="2024/01", group_id="u1")

        assert [m.body for m in queue.receive()] == ["a", "b"]

    def test_group_order_is_send_order(self, sql_queue):
        sql_queue.send("u1-first", deduplication_id="x1", group_id="u1")
        sql_queue.send("u2-first", deduplication_id="y1", group_id="u2")
        sql_queue.send("u1-second", deduplication_id="x2", group_id="u1")

        assert [m.body for m in sql_queue.receive(group_id="u1")] == ["u1-first", "u1-second"]
        assert [m.body for m in sql_queue.receive(group_id="u2")] == ["u2-first"]
        assert [m.body for m in sql_queue.receive(limit=2)] == ["u1-first", "u2-first"]

    def test_store_failure_is_publish_error(self, tmp_path):
        from archivesync.database import get_session_factory

        queue = SqlCommandQueue(get_session_factory(tmp_path / "no-tables.db"))
        with pytest.raises(QueuePublishError):
            queue.send("a", deduplication_id="2024/01", group_id="u1")


class TestSqsCommandQueue:
    """Test the SQS FIFO publisher."""

    def test_send_uses_fifo_ids(self):
        client = StubSqsClient()
        queue = SqsCommandQueue("https://sqs.example/queue.fifo", client=client)

        assert queue.send("body", deduplication_id="2024/01", group_id="u1") is True

        assert client.messages == [{
            "QueueUrl": "https://sqs.example/queue.fifo",
            "MessageBody": "body",
            "MessageDeduplicationId": "2024/01",
            "MessageGroupId": "u1",
        }]

    def test_client_error_is_publish_error(self):
        error = ClientError({"Error": {"Code": "ServiceUnavailable", "Message": "down"}}, "SendMessage")
        queue = SqsCommandQueue("https://sqs.example/queue.fifo", client=StubSqsClient(error))

        with pytest.raises(QueuePublishError):
            queue.send("body", deduplication_id="2024/01", group_id="u1")
