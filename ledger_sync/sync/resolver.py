"""Last-writer-wins conflict resolution.

Invoked only when both directions disagree: the tracker state implies a
different ledger status than the one stored, and the ledger status implies a
different tracker state than the one stored. Exact timestamp ties go to the
ledger.
"""

from datetime import UTC, datetime
from enum import Enum

from ledger_sync.models.domain import TrackerIssue, WorkItem

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


class Winner(str, Enum):
    """Side whose value survives a conflict."""

    LEDGER = "ledger"
    TRACKER = "tracker"


def normalize_timestamp(value: datetime | None) -> datetime:
    """Make a timestamp comparable: None becomes the epoch, naive means UTC."""
    if value is None:
        return EPOCH
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def resolve_conflict(item: WorkItem, issue: TrackerIssue) -> Winner:
    """Decide which side wins a two-way disagreement.

    A missing timestamp counts as the epoch, so the side with a real
    timestamp wins.
    """
    ledger_time = normalize_timestamp(item.last_modified)
    tracker_time = normalize_timestamp(issue.updated_at)

    if ledger_time >= tracker_time:
        return Winner.LEDGER
    return Winner.TRACKER
