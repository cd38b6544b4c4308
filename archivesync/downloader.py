"""
Download request orchestration.

One request runs sequentially: look up the profile, persist the user, fetch
the remote archive list, read the ledger, reconcile, persist missing
archives, record the download session with its expected command count,
then fan out one command per eligible archive.

Nothing is rolled back: a failure after the ledger or the session has been
written leaves those writes in place, and a repeated request picks up
where the previous one stopped.
"""

import json
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

from .catalog import RemoteCatalogClient
from .commands import SqlCommandQueue, SqsCommandQueue
from .database import DownloadRecord, UserRecord, get_session_factory, init_database, utcnow
from .env import Config
from .errors import ArchiveSyncError
from .fanout import CommandFanout
from .ledger import ArchiveLedger
from .logger import RequestContext, StructuredLogger
from .persist import BatchPersistor, build_missing_records
from .reconcile import reconcile
from .retry import backoff_from_name
from .schema import DownloadRequest, parse_download_request


@dataclass(frozen=True)
class DownloadResponse:
    download_id: str
    expected_count: int

    def to_dict(self) -> dict:
        return {"downloadId": self.download_id}


def _envelope(status: int, payload: dict) -> dict:
    return {
        "statusCode": status,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(payload),
    }


def _new_id() -> str:
    return str(uuid.uuid4())


class ArchiveDownloader:
    def __init__(
        self,
        catalog: RemoteCatalogClient,
        ledger: ArchiveLedger,
        persistor: BatchPersistor,
        fanout: CommandFanout,
        logger: StructuredLogger,
        id_factory: Callable[[], str] = _new_id,
    ):
        self.catalog = catalog
        self.ledger = ledger
        self.persistor = persistor
        self.fanout = fanout
        self.logger = logger
        self._new_id = id_factory

    @classmethod
    def from_config(cls, config: Config, logger: StructuredLogger) -> "ArchiveDownloader":
        """Wire the production collaborators described by ``config``."""
        init_database(config.database_path)
        session_factory = get_session_factory(config.database_path)
        ledger = ArchiveLedger(session_factory)

        if config.uses_sqs:
            queue = SqsCommandQueue(config.queue_url, region=config.aws_region)
        else:
            queue = SqlCommandQueue(session_factory, dedup_window_s=config.dedup_window_s)

        persistor = BatchPersistor(
            ledger,
            logger,
            backoff=backoff_from_name(config.persist_backoff, config.persist_retry_delay_ms / 1000),
            max_attempts=config.persist_max_attempts,
            max_elapsed=config.persist_max_elapsed_s,
        )
        return cls(
            catalog=RemoteCatalogClient(config.catalog_url, logger, timeout=config.catalog_timeout_s),
            ledger=ledger,
            persistor=persistor,
            fanout=CommandFanout(queue, logger),
            logger=logger,
        )

    def download(self, request: DownloadRequest, ctx: RequestContext) -> DownloadResponse:
        ctx = ctx.bind(username=request.username, platform=request.platform)

        profile = self.catalog.fetch_profile(request.username, ctx)
        user = UserRecord(
            username=request.username,
            platform=request.platform,
            user_id=profile.remote_user_id,
        )
        self.ledger.put_user(user)
        ctx = ctx.bind(user_id=user.user_id)
        self.logger.info("User persisted", ctx)

        remote_archive_ids = self.catalog.fetch_archives(request.username, ctx)

        self.logger.info("Requesting ledger for archives", ctx)
        known_archives = self.ledger.list_archives(user.user_id)
        self.logger.info("Archives found in ledger", ctx, totalArchivesCount=len(known_archives))

        result = reconcile(remote_archive_ids, known_archives)
        self.logger.record_reconciliation(len(result.missing), len(result.pending))
        self.logger.info(
            "Archives reconciled",
            ctx,
            missingArchivesCount=len(result.missing),
            pendingArchivesCount=len(result.pending),
        )

        missing_records = build_missing_records(user.user_id, result.missing, self.logger, ctx)
        self.persistor.persist(missing_records, ctx)

        download_id = self._new_id()
        ctx = ctx.bind(download_id=download_id)
        self.ledger.put_session(
            DownloadRecord(
                download_id=download_id,
                expected_count=result.expected_count,
                created_at=utcnow(),
            )
        )
        self.logger.info("Download session recorded", ctx, expectedCount=result.expected_count)

        self.fanout.publish(user, download_id, result.pending + missing_records, ctx)
        return DownloadResponse(download_id=download_id, expected_count=result.expected_count)

    def handle(self, body: str, request_id: Optional[str] = None) -> dict:
        """
        Serve one request body and return a ``{statusCode, headers, body}`` envelope.

        Errors never escape: they are logged, counted and rendered as
        ``{"kind", "message"}`` with the matching status.
        """
        ctx = RequestContext(request_id=request_id or _new_id())
        try:
            request = parse_download_request(body)
            response = self.download(request, ctx)
        except ArchiveSyncError as e:
            self.logger.record_failure(e.kind)
            self.logger.error("Download request failed", ctx, kind=e.kind, detail=e.message)
            return _envelope(e.status, e.to_dict())
        except Exception as e:
            self.logger.record_failure("INTERNAL_ERROR")
            self.logger.critical("Unexpected error while serving download request", ctx, error=repr(e))
            return _envelope(500, {"kind": "INTERNAL_ERROR", "message": "Internal error"})

        return _envelope(200, response.to_dict())
