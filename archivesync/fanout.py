"""
Fan-out of one download command per eligible archive.

Commands are published one at a time in list order and stop at the first
failure. A repeated request recomputes the same eligible list, so the
deduplication id (the archive id) lets it finish the remainder without
doubling work for archives that were already sent.
"""

from dataclasses import dataclass, field
from typing import List, Sequence

from .commands import DownloadGamesCommand
from .database import ArchiveRecord, UserRecord
from .errors import FanoutError
from .logger import RequestContext, StructuredLogger


@dataclass
class FanoutResult:
    published: List[str] = field(default_factory=list)
    deduplicated: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.published) + len(self.deduplicated)


class CommandFanout:
    def __init__(self, queue, logger: StructuredLogger):
        self.queue = queue
        self.logger = logger

    def publish(
        self,
        user: UserRecord,
        download_id: str,
        archives: Sequence[ArchiveRecord],
        ctx: RequestContext,
    ) -> FanoutResult:
        """
        Publish a DownloadGamesCommand for every archive, in order.

        Raises:
            FanoutError: On the first failed publish; later archives are not attempted
        """
        result = FanoutResult()
        self.logger.info(
            "Publishing download game commands", ctx, eligibleForDownloadArchivesCount=len(archives)
        )
        for index, archive in enumerate(archives):
            command = DownloadGamesCommand(
                username=user.username,
                platform=user.platform,
                archiveId=archive.archive_id,
                userId=archive.user_id,
                downloadId=download_id,
            )
            try:
                enqueued = self.queue.send(
                    command.to_json(),
                    deduplication_id=archive.archive_id,
                    group_id=archive.user_id,
                )
            except Exception as e:
                not_attempted = [a.archive_id for a in archives[index + 1:]]
                self.logger.error(
                    "Impossible to publish the download game command",
                    ctx,
                    archiveId=archive.archive_id,
                    publishedCount=result.total,
                    notAttemptedCount=len(not_attempted),
                    error=str(e),
                )
                raise FanoutError(
                    f"Publishing command for {archive.archive_id} failed: {e}",
                    published=result.published + result.deduplicated,
                    unsent=[archive.archive_id] + not_attempted,
                ) from e

            if enqueued:
                result.published.append(archive.archive_id)
                self.logger.record_published()
            else:
                result.deduplicated.append(archive.archive_id)
                self.logger.debug("Command dropped as duplicate", ctx, archiveId=archive.archive_id)

        self.logger.info(
            "Download game commands published",
            ctx,
            publishedCount=len(result.published),
            deduplicatedCount=len(result.deduplicated),
        )
        return result
