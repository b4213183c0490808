"""Index raw snapshots by canonical id."""

from collections.abc import Iterable
from dataclasses import dataclass, field

import structlog

from ledger_sync.models.domain import PullRequest, TrackerIssue, WorkItem
from ledger_sync.sync.identity import extract_id, extract_id_from_branch

log = structlog.get_logger(__name__)


@dataclass
class SnapshotIndex:
    """Lookup structures built from one pair of snapshots.

    Dict insertion order follows scan order, which the planner relies on for
    reproducible operation ordering.
    """

    item_by_id: dict[str, WorkItem] = field(default_factory=dict)
    issue_by_id: dict[str, TrackerIssue] = field(default_factory=dict)
    prs_by_id: dict[str, list[PullRequest]] = field(default_factory=dict)


def build_indices(
    work_items: Iterable[WorkItem],
    issues: Iterable[TrackerIssue],
    pull_requests: Iterable[PullRequest],
) -> SnapshotIndex:
    """Build id-keyed lookups over both snapshots.

    Duplicates are a data-quality problem in the external stores, not a
    reason to abort: the last one scanned wins and a warning is logged.
    Items without an id cannot be keyed and are skipped with a warning;
    unlinked issues and pull requests are ignored.
    """
    index = SnapshotIndex()

    for item in work_items:
        if not item.id:
            log.warning("skipping_invalid_work_item", storage_id=item.storage_id, errors=["id is missing"])
            continue
        if item.id in index.item_by_id:
            log.warning(
                "duplicate_work_item",
                item_id=item.id,
                kept=item.storage_id,
                dropped=index.item_by_id[item.id].storage_id,
            )
        index.item_by_id[item.id] = item

    for issue in issues:
        item_id = extract_id(issue.title)
        if item_id is None:
            continue
        if item_id in index.issue_by_id:
            previous = index.issue_by_id[item_id]
            log.warning(
                "duplicate_tracker_issue",
                item_id=item_id,
                kept=issue.url,
                dropped=previous.url,
            )
        index.issue_by_id[item_id] = issue

    for pr in pull_requests:
        item_id = extract_id_from_branch(pr.branch_name)
        if item_id is None:
            continue
        index.prs_by_id.setdefault(item_id, []).append(pr)

    log.debug(
        "snapshot_indexed",
        items=len(index.item_by_id),
        issues=len(index.issue_by_id),
        linked_prs=sum(len(prs) for prs in index.prs_by_id.values()),
    )
    return index
