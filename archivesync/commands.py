"""
Outbound download commands and the queues that carry them.

Both queues take a deduplication id and a group id with every message:
a second message with the same deduplication id inside the dedup window is
accepted and dropped, and messages sharing a group id are delivered in the
order they were sent.
"""

import json
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from sqlalchemy.exc import SQLAlchemyError

from .database import QueuedCommand, utcnow

DEFAULT_DEDUP_WINDOW_S = 300  # SQS FIFO deduplication interval


class QueuePublishError(Exception):
    """A message could not be handed to the queue."""
    pass


@dataclass(frozen=True)
class DownloadGamesCommand:
    username: str
    platform: str
    archiveId: str
    userId: str
    downloadId: str

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, body: str) -> "DownloadGamesCommand":
        return cls(**json.loads(body))


class SqlCommandQueue:
    """Queue kept as an outbox table next to the ledger."""

    def __init__(
        self,
        session_factory: Callable,
        dedup_window_s: float = DEFAULT_DEDUP_WINDOW_S,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self.dedup_window = timedelta(seconds=dedup_window_s)
        self._clock = clock

    def send(self, body: str, deduplication_id: str, group_id: str) -> bool:
        """
        Enqueue a message.

        Returns:
            False when the message was dropped as a duplicate, True otherwise
        """
        now = self._clock()
        session = self._session_factory()
        try:
            duplicate = (
                session.query(QueuedCommand.sequence)
                .filter(
                    QueuedCommand.deduplication_id == deduplication_id,
                    QueuedCommand.sent_at > now - self.dedup_window,
                )
                .first()
            )
            if duplicate is not None:
                return False
            session.add(
                QueuedCommand(
                    group_id=group_id,
                    deduplication_id=deduplication_id,
                    body=body,
                    sent_at=now,
                )
            )
            session.commit()
            return True
        except SQLAlchemyError as e:
            session.rollback()
            raise QueuePublishError(f"Could not enqueue {deduplication_id}: {e}") from e
        finally:
            session.close()

    def receive(self, group_id: Optional[str] = None, limit: Optional[int] = None) -> List[QueuedCommand]:
        """Messages in send order, optionally limited to one group."""
        session = self._session_factory()
        try:
            query = session.query(QueuedCommand)
            if group_id is not None:
                query = query.filter(QueuedCommand.group_id == group_id)
            query = query.order_by(QueuedCommand.sequence)
            if limit is not None:
                query = query.limit(limit)
            return query.all()
        finally:
            session.close()


class SqsCommandQueue:
    """SQS FIFO queue."""

    def __init__(self, queue_url: str, region: Optional[str] = None, client=None):
        self.queue_url = queue_url
        self._client = client or boto3.client("sqs", region_name=region)

    def send(self, body: str, deduplication_id: str, group_id: str) -> bool:
        try:
            self._client.send_message(
                QueueUrl=self.queue_url,
                MessageBody=body,
                MessageDeduplicationId=deduplication_id,
                MessageGroupId=group_id,
            )
        except (ClientError, BotoCoreError) as e:
            raise QueuePublishError(f"Could not send {deduplication_id} to SQS: {e}") from e
        return True
