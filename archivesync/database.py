"""
Database schema and connection management.

Uses SQLite with SQLAlchemy for the user table, the archive ledger, the
download session table and the local command outbox.
"""

from datetime import datetime, timezone
from pathlib import Path
from sqlalchemy import create_engine, Column, String, Integer, DateTime, Text, Index
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in SQLite."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class UserRecord(Base):
    """A user known to the remote catalog source."""

    __tablename__ = "users"

    username = Column(String, primary_key=True)
    platform = Column(String, primary_key=True)  # CHESS_DOT_COM
    user_id = Column(String, nullable=False)  # remote, immutable id


class ArchiveRecord(Base):
    """One monthly archive of a user, as discovered from the remote catalog."""

    __tablename__ = "archives"

    user_id = Column(String, primary_key=True)
    archive_id = Column(String, primary_key=True)
    resource = Column(String, nullable=False)
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)
    downloaded = Column(Integer, nullable=False, default=0)
    downloaded_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return (
            f"ArchiveRecord(user_id={self.user_id!r}, archive_id={self.archive_id!r}, "
            f"downloaded={self.downloaded}, downloaded_at={self.downloaded_at})"
        )


class DownloadRecord(Base):
    """A download session: how many commands one request fans out."""

    __tablename__ = "downloads"

    download_id = Column(String, primary_key=True)
    expected_count = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class QueuedCommand(Base):
    """A download command sitting in the local outbox queue."""

    __tablename__ = "download_commands"
    __table_args__ = (
        Index("ix_download_commands_group", "group_id", "sequence"),
        Index("ix_download_commands_dedup", "deduplication_id", "sent_at"),
    )

    sequence = Column(Integer, primary_key=True, autoincrement=True)
    group_id = Column(String, nullable=False)
    deduplication_id = Column(String, nullable=False)
    body = Column(Text, nullable=False)
    sent_at = Column(DateTime, nullable=False, default=utcnow)


def _engine(db_path: Path):
    return create_engine(f"sqlite:///{db_path}")


def init_database(db_path: Path) -> None:
    """
    Initialize database and create tables.

    Args:
        db_path: Path to SQLite database file
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    Base.metadata.create_all(_engine(db_path))


def get_session_factory(db_path: Path):
    """
    Get a session factory bound to one engine.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLAlchemy sessionmaker
    """
    return sessionmaker(bind=_engine(db_path), expire_on_commit=False)


def get_session(db_path: Path):
    """
    Get database session.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLAlchemy session
    """
    return get_session_factory(db_path)()
