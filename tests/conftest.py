"""
Pytest configuration and shared fixtures.
"""

import pytest
from datetime import datetime
from typing import List, Optional

from archivesync.catalog import Profile
from archivesync.commands import QueuePublishError, SqlCommandQueue
from archivesync.database import ArchiveRecord, get_session_factory, init_database
from archivesync.errors import ProfileNotFound
from archivesync.ledger import ArchiveLedger
from archivesync.logger import RequestContext, StructuredLogger
from archivesync.persist import BatchPersistor
from archivesync.retry import FixedBackoff


def make_archive(
    archive_id: str,
    user_id: str = "user-1",
    downloaded_at: Optional[datetime] = None,
    downloaded: int = 0,
) -> ArchiveRecord:
    """Ledger record whose year/month come from the archive id suffix."""
    year, month = (int(part) for part in archive_id.rstrip("/").split("/")[-2:])
    return ArchiveRecord(
        user_id=user_id,
        archive_id=archive_id,
        resource=archive_id,
        year=year,
        month=month,
        downloaded=downloaded,
        downloaded_at=downloaded_at,
    )


class FakeCatalog:
    """Remote catalog answering from memory."""

    def __init__(self, archives: List[str], remote_user_id: str = "user-1", known: bool = True):
        self.archives = archives
        self.remote_user_id = remote_user_id
        self.known = known
        self.calls: List[str] = []

    def fetch_profile(self, username: str, ctx: RequestContext) -> Profile:
        self.calls.append(f"profile:{username}")
        if not self.known:
            raise ProfileNotFound(username, "CHESS_DOT_COM")
        return Profile(username=username, remote_user_id=self.remote_user_id)

    def fetch_archives(self, username: str, ctx: RequestContext) -> List[str]:
        self.calls.append(f"archives:{username}")
        return list(self.archives)


class RecordingQueue:
    """Queue that keeps every send; optionally fails on the n-th one (0-based)."""

    def __init__(self, fail_on: Optional[int] = None):
        self.sent: List[dict] = []
        self.fail_on = fail_on
        self.attempts = 0

    def send(self, body: str, deduplication_id: str, group_id: str) -> bool:
        index = self.attempts
        self.attempts += 1
        if self.fail_on is not None and index == self.fail_on:
            raise QueuePublishError("broker unavailable")
        self.sent.append({"body": body, "deduplication_id": deduplication_id, "group_id": group_id})
        return True


@pytest.fixture
def logger() -> StructuredLogger:
    """Logger writing nowhere."""
    return StructuredLogger(name="archivesync-test", enable_console=False, enable_file=False)


@pytest.fixture
def ctx() -> RequestContext:
    return RequestContext(request_id="req-1")


@pytest.fixture
def db_path(tmp_path):
    """Initialized temporary SQLite database."""
    path = tmp_path / "ledger.db"
    init_database(path)
    return path


@pytest.fixture
def session_factory(db_path):
    return get_session_factory(db_path)


@pytest.fixture
def ledger(session_factory) -> ArchiveLedger:
    return ArchiveLedger(session_factory)


@pytest.fixture
def sql_queue(session_factory) -> SqlCommandQueue:
    return SqlCommandQueue(session_factory)


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def persistor(ledger, logger, sleeps) -> BatchPersistor:
    """Persistor over the SQLite ledger that records pauses instead of sleeping."""
    return BatchPersistor(ledger, logger, backoff=FixedBackoff(0.1), sleep=sleeps.append)


@pytest.fixture
def valid_download_request() -> dict:
    """Valid download request payload."""
    return {"username": "hikaru", "platform": "CHESS_DOT_COM"}
