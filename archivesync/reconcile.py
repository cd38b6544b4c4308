"""
Reconciliation of the remote archive catalog against the ledger.

``missing`` archives are listed remotely but unknown to the ledger.
``pending`` archives are known but may still receive games: they were never
downloaded, or their last download happened before the month they cover
had closed.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List, Sequence

from .database import ArchiveRecord


@dataclass
class Reconciliation:
    missing: List[str] = field(default_factory=list)
    pending: List[ArchiveRecord] = field(default_factory=list)

    @property
    def expected_count(self) -> int:
        return len(self.missing) + len(self.pending)


def month_cutoff(year: int, month: int) -> datetime:
    """First instant (naive UTC) of the month after (year, month)."""
    if month == 12:
        return datetime(year + 1, 1, 1)
    return datetime(year, month + 1, 1)


def _as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def is_eligible(record: ArchiveRecord) -> bool:
    """Whether a known archive should be downloaded again."""
    if record.downloaded_at is None:
        return True
    return _as_naive_utc(record.downloaded_at) < month_cutoff(record.year, record.month)


def resolve_missing_archives(
    remote_archive_ids: Iterable[str],
    known_archives: Sequence[ArchiveRecord],
) -> List[str]:
    """Remote archive ids without a ledger entry, in remote order, without repeats."""
    known = {archive.archive_id for archive in known_archives}
    missing = []
    for archive_id in remote_archive_ids:
        if archive_id in known:
            continue
        known.add(archive_id)
        missing.append(archive_id)
    return missing


def resolve_archives_to_download(known_archives: Sequence[ArchiveRecord]) -> List[ArchiveRecord]:
    return [archive for archive in known_archives if is_eligible(archive)]


def reconcile(
    remote_archive_ids: Iterable[str],
    known_archives: Sequence[ArchiveRecord],
) -> Reconciliation:
    """
    Compute missing and pending archives for one user.

    Args:
        remote_archive_ids: Archive ids listed by the remote catalog
        known_archives: The user's ledger records

    Returns:
        Reconciliation with disjoint ``missing`` ids and ``pending`` records
    """
    return Reconciliation(
        missing=resolve_missing_archives(remote_archive_ids, known_archives),
        pending=resolve_archives_to_download(known_archives),
    )
