"""
Batched persistence of newly discovered archives.

Records are written in batches of at most 25. The store may accept part of
a batch and hand back the rest; only that rejected subset is resubmitted,
paced by a backoff policy, until the store has accepted everything or a
retry ceiling is reached. Upsert-by-key makes resubmission safe.
"""

import time
from typing import Callable, List, Optional, Sequence, TypeVar

from .database import ArchiveRecord
from .errors import ArchiveSyncError, PersistenceError
from .ledger import MAX_BATCH_SIZE
from .logger import RequestContext, StructuredLogger
from .retry import BackoffPolicy, FixedBackoff
from .schema import parse_archive_period

T = TypeVar("T")


def batcher(items: Sequence[T], size: int) -> List[List[T]]:
    """Split items into consecutive chunks of at most ``size``."""
    if size <= 0:
        raise ValueError("batch size must be positive")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def build_missing_records(
    user_id: str,
    archive_ids: Sequence[str],
    logger: StructuredLogger,
    ctx: RequestContext,
) -> List[ArchiveRecord]:
    """
    Create fresh ledger records for archives not yet known.

    Raises:
        PersistenceError: If an archive id carries no parsable YYYY/MM period
    """
    records = []
    for archive_id in archive_ids:
        try:
            year, month = parse_archive_period(archive_id)
        except ValueError as e:
            logger.error("Impossible to parse the archive period", ctx, archiveId=archive_id, error=str(e))
            raise PersistenceError(f"Cannot derive year/month from archive {archive_id}") from e
        records.append(
            ArchiveRecord(
                user_id=user_id,
                archive_id=archive_id,
                resource=archive_id,
                year=year,
                month=month,
                downloaded=0,
                downloaded_at=None,
            )
        )
    return records


class BatchPersistor:
    """Writes archive records into the ledger, draining partial failures."""

    def __init__(
        self,
        ledger,
        logger: StructuredLogger,
        backoff: Optional[BackoffPolicy] = None,
        max_attempts: int = 10,
        max_elapsed: float = 30.0,
        batch_size: int = MAX_BATCH_SIZE,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            ledger: Store exposing ``batch_upsert(records) -> rejected records``
            logger: Logger receiving progress and retry events
            backoff: Pause policy between retries (default: fixed 100 ms)
            max_attempts: Writes allowed per batch, the first one included
            max_elapsed: Seconds a single batch may spend retrying
            batch_size: Records per write, capped at the store limit of 25
            sleep: Pause function, replaceable in tests
            clock: Monotonic clock, replaceable in tests
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.ledger = ledger
        self.logger = logger
        self.backoff = backoff or FixedBackoff(0.1)
        self.max_attempts = max_attempts
        self.max_elapsed = max_elapsed
        self.batch_size = min(batch_size, MAX_BATCH_SIZE)
        self._sleep = sleep
        self._clock = clock

    def persist(self, records: Sequence[ArchiveRecord], ctx: RequestContext) -> int:
        """
        Durably upsert all records.

        Batches already written stay written if a later batch fails.

        Returns:
            Number of records persisted

        Raises:
            PersistenceError: On a store failure or when a batch exhausts its retries
        """
        batches = batcher(records, self.batch_size)
        self.logger.info(
            "Persisting missing archives in batches",
            ctx,
            missingArchivesCount=len(records),
            batchesCount=len(batches),
        )
        for batch_number, batch in enumerate(batches, start=1):
            self._persist_batch(batch, ctx.bind(batchNumber=batch_number, batchSize=len(batch)))
        self.logger.record_persisted(len(records))
        self.logger.info("Missing archives persisted", ctx, persistedArchivesCount=len(records))
        return len(records)

    def _persist_batch(self, batch: List[ArchiveRecord], ctx: RequestContext) -> None:
        unprocessed = batch
        started = self._clock()
        attempt = 0
        while unprocessed:
            attempt += 1
            self.logger.debug("Writing archive batch", ctx, attempt=attempt, items=len(unprocessed))
            try:
                unprocessed = list(self.ledger.batch_upsert(unprocessed))
            except ArchiveSyncError:
                self.logger.error("Impossible to persist the missing archive records", ctx, attempt=attempt)
                raise
            except Exception as e:
                self.logger.error(
                    "Impossible to persist the missing archive records", ctx, attempt=attempt, error=str(e)
                )
                raise PersistenceError(f"Archive batch write failed: {e}") from e

            if not unprocessed:
                return

            elapsed = self._clock() - started
            if attempt >= self.max_attempts or elapsed >= self.max_elapsed:
                self.logger.error(
                    "Archive batch still has unprocessed items, giving up",
                    ctx,
                    attempts=attempt,
                    elapsedSeconds=round(elapsed, 3),
                    unprocessedCount=len(unprocessed),
                )
                raise PersistenceError(
                    f"{len(unprocessed)} archive records still unprocessed after "
                    f"{attempt} attempts ({elapsed:.1f}s)"
                )

            delay = self.backoff.delay(attempt)
            self.logger.warning(
                "Store left items unprocessed, retrying them",
                ctx,
                attempt=attempt,
                unprocessedCount=len(unprocessed),
                delaySeconds=round(delay, 3),
            )
            self.logger.record_persist_retry()
            self._sleep(delay)
