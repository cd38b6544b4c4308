"""
Archive ledger backed by the SQLAlchemy tables in ``database``.

Responsibilities:
- Point reads of a user's archive records.
- Bounded batch upserts that report the rejected subset.
- User and download session records.

Invariant:
An upsert never overwrites the download progress of a record that already
exists; progress is written only by the download worker.
"""

from pathlib import Path
from typing import Callable, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from .database import ArchiveRecord, DownloadRecord, UserRecord, get_session_factory, utcnow
from .errors import PersistenceError

MAX_BATCH_SIZE = 25


class ArchiveLedger:
    """Persisted mapping from (user_id, archive_id) to archive state."""

    def __init__(self, session_factory: Callable):
        self._session_factory = session_factory

    @classmethod
    def from_path(cls, db_path: Path) -> "ArchiveLedger":
        return cls(get_session_factory(db_path))

    def put_user(self, user: UserRecord) -> None:
        session = self._session_factory()
        try:
            session.merge(
                UserRecord(username=user.username, platform=user.platform, user_id=user.user_id)
            )
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Could not persist user {user.username}: {e}") from e
        finally:
            session.close()

    def get_user(self, username: str, platform: str) -> Optional[UserRecord]:
        session = self._session_factory()
        try:
            return session.get(UserRecord, (username, platform))
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not read user {username}: {e}") from e
        finally:
            session.close()

    def list_archives(self, user_id: str) -> List[ArchiveRecord]:
        """All archive records of one user, ordered by archive id."""
        session = self._session_factory()
        try:
            return (
                session.query(ArchiveRecord)
                .filter(ArchiveRecord.user_id == user_id)
                .order_by(ArchiveRecord.archive_id)
                .all()
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not read archives of user {user_id}: {e}") from e
        finally:
            session.close()

    def batch_upsert(self, records: Sequence[ArchiveRecord]) -> List[ArchiveRecord]:
        """
        Upsert up to MAX_BATCH_SIZE records.

        Returns:
            The records the store did not process. A local SQLite store either
            accepts the whole batch or raises, so this is empty on success.

        Raises:
            ValueError: If the batch exceeds MAX_BATCH_SIZE
            PersistenceError: On any store failure
        """
        if len(records) > MAX_BATCH_SIZE:
            raise ValueError(f"Batch of {len(records)} exceeds the limit of {MAX_BATCH_SIZE}")

        session = self._session_factory()
        try:
            seen = set()
            for record in records:
                key = (record.user_id, record.archive_id)
                if key in seen:
                    continue
                seen.add(key)
                existing = session.get(ArchiveRecord, key)
                if existing is None:
                    session.add(
                        ArchiveRecord(
                            user_id=record.user_id,
                            archive_id=record.archive_id,
                            resource=record.resource,
                            year=record.year,
                            month=record.month,
                            downloaded=record.downloaded or 0,
                            downloaded_at=record.downloaded_at,
                        )
                    )
                else:
                    existing.resource = record.resource
                    existing.year = record.year
                    existing.month = record.month
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Could not write archive batch: {e}") from e
        finally:
            session.close()
        return []

    def put_session(self, record: DownloadRecord) -> None:
        session = self._session_factory()
        try:
            session.add(
                DownloadRecord(
                    download_id=record.download_id,
                    expected_count=record.expected_count,
                    created_at=record.created_at or utcnow(),
                )
            )
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Could not persist download {record.download_id}: {e}") from e
        finally:
            session.close()

    def get_session_record(self, download_id: str) -> Optional[DownloadRecord]:
        session = self._session_factory()
        try:
            return session.get(DownloadRecord, download_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not read download {download_id}: {e}") from e
        finally:
            session.close()
