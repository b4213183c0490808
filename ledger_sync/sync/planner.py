"""
Operation planning: the pure core of the reconciliation engine.

Given fresh snapshots of both stores, the planner computes the ordered list
of operations that converges them. It performs no I/O and holds no state
between calls, so the same snapshots always produce the same plan.

State machine per work item (in snapshot order):

    1. Invalid item (missing id/title/module/type)  -> skipped with a warning
    2. Task-like item                               -> PR sync only (step 5)
    3. Bug-like, no tracker issue                   -> create
    4. Bug-like, tracker issue found                -> state/status resolution,
                                                       issue link, body branch link
    5. Every item                                   -> PR status / PR link / clear

After the loop, tracker issues whose work item disappeared are closed
(``delete``). Operations are appended in discovery order; no operation
depends on another within one pass.

Example:
    >>> operations = plan(work_items, issues, pull_requests, routing)
    >>> [op.action.value for op in operations]
    ['create', 'update_ledger_pr_status']
"""

import warnings
from collections.abc import Iterable

import structlog

from ledger_sync.config.routing import RoutingConfig
from ledger_sync.exceptions import StaleLinkWarning, ValidationError
from ledger_sync.models.domain import (
    IssueState,
    PullRequest,
    PullRequestStatus,
    SyncAction,
    SyncOperation,
    TrackerIssue,
    WorkItem,
)
from ledger_sync.sync.identity import branch_name_for
from ledger_sync.sync.mapper import SnapshotIndex, build_indices
from ledger_sync.sync.resolver import Winner, normalize_timestamp, resolve_conflict
from ledger_sync.sync.status import (
    ledger_status_to_tracker_state,
    pr_state_to_pull_request_status,
    tracker_state_to_ledger_status,
)

log = structlog.get_logger(__name__)

REQUIRED_FIELDS = ("id", "title", "module", "type")

PR_PRIORITY = {"open": 3, "merged": 2, "closed": 1}


def validate_for_sync(item: WorkItem) -> None:
    """Check that an item can be routed and titled.

    Raises:
        ValidationError: If any required field is empty
    """
    errors = [f"{name} is missing" for name in REQUIRED_FIELDS if not getattr(item, name)]
    if errors:
        raise ValidationError("Work item is not syncable", item_id=item.id or None, errors=errors)


def pr_priority(pr: PullRequest) -> int:
    """Relevance rank: open beats merged beats closed-unmerged."""
    if pr.state == IssueState.OPEN:
        return PR_PRIORITY["open"]
    if pr.merged:
        return PR_PRIORITY["merged"]
    return PR_PRIORITY["closed"]


def get_most_relevant_pr(pull_requests: Iterable[PullRequest] | None) -> PullRequest | None:
    """Pick the pull request that represents a work item.

    Ordered by state priority, then most recent ``updated_at``, then highest
    ``pr_id``; the result does not depend on input order.
    """
    candidates = list(pull_requests or [])
    if not candidates:
        return None
    return max(candidates, key=lambda pr: (pr_priority(pr), normalize_timestamp(pr.updated_at), pr.pr_id))


class SyncPlanner:
    """Walks an indexed snapshot and emits sync operations."""

    def __init__(self, routing: RoutingConfig) -> None:
        self.routing = routing

    def plan(self, index: SnapshotIndex) -> list[SyncOperation]:
        operations: list[SyncOperation] = []

        for item_id, item in index.item_by_id.items():
            try:
                validate_for_sync(item)
            except ValidationError as e:
                log.warning("skipping_invalid_work_item", item_id=item_id, errors=e.errors)
                continue

            if not self.routing.is_task(item.id):
                issue = index.issue_by_id.get(item.id)
                if issue is None:
                    operations.append(self._plan_create(item))
                else:
                    operations.extend(self._plan_issue_sync(item, issue))

            operations.extend(self._plan_pr_sync(item, index.prs_by_id.get(item.id)))

        operations.extend(self._plan_orphans(index))

        log.info("sync_operations_planned", count=len(operations))
        return operations

    def _plan_create(self, item: WorkItem) -> SyncOperation:
        if item.issue_link:
            log.warning("stale_issue_link", item_id=item.id, link=item.issue_link)
            warnings.warn(StaleLinkWarning(item.id, item.issue_link), stacklevel=2)

        return SyncOperation(
            action=SyncAction.CREATE,
            source=item,
            target=None,
            reason="Work item exists in the ledger but not in the tracker",
        )

    def _plan_issue_sync(self, item: WorkItem, issue: TrackerIssue) -> list[SyncOperation]:
        operations = self._plan_state_sync(item, issue)

        if not item.issue_link or item.issue_link != issue.url:
            operations.append(
                SyncOperation(
                    action=SyncAction.UPDATE_LEDGER_LINK,
                    source=item,
                    target=issue,
                    reason="Ledger item is missing or has an incorrect tracker issue link",
                    desired=issue.url,
                )
            )

        if item.branch_url and item.branch_url not in (issue.body or ""):
            operations.append(
                SyncOperation(
                    action=SyncAction.UPDATE_TRACKER_BODY,
                    source=item,
                    target=issue,
                    reason="Tracker issue body does not mention the work item's branch",
                    desired=item.branch_url,
                )
            )

        return operations

    def _plan_state_sync(self, item: WorkItem, issue: TrackerIssue) -> list[SyncOperation]:
        """Reconcile ledger status with tracker state.

        The two sides are compared independently. When only one disagrees its
        single fix is emitted; when both disagree the resolver picks one.
        """
        tracker_state = IssueState(issue.state)
        expected_state = ledger_status_to_tracker_state(item.status)
        expected_status = tracker_state_to_ledger_status(tracker_state, item.status)

        tracker_outdated = tracker_state != expected_state
        ledger_outdated = item.status != expected_status

        update_tracker = SyncOperation(
            action=SyncAction.UPDATE_TRACKER_STATE,
            source=item,
            target=issue,
            reason=f'Ledger status "{item.status}" requires tracker state "{expected_state.value}"',
            desired=expected_state.value,
        )
        update_ledger = SyncOperation(
            action=SyncAction.UPDATE_LEDGER_STATUS,
            source=item,
            target=issue,
            reason=f'Tracker state "{tracker_state.value}" requires ledger status "{expected_status}"',
            desired=expected_status,
        )

        if tracker_outdated and ledger_outdated:
            winner = resolve_conflict(item, issue)
            log.info(
                "state_conflict_resolved",
                item_id=item.id,
                winner=winner.value,
                ledger_status=item.status,
                tracker_state=tracker_state.value,
            )
            return [update_tracker] if winner == Winner.LEDGER else [update_ledger]
        if tracker_outdated:
            return [update_tracker]
        if ledger_outdated:
            return [update_ledger]
        return []

    def _plan_pr_sync(self, item: WorkItem, pull_requests: list[PullRequest] | None) -> list[SyncOperation]:
        operations: list[SyncOperation] = []
        pr = get_most_relevant_pr(pull_requests)

        if pr is None:
            has_pr_status = bool(item.pull_request_status) and item.pull_request_status != PullRequestStatus.NONE
            if has_pr_status and not item.branch_url:
                operations.append(
                    SyncOperation(
                        action=SyncAction.CLEAR_LEDGER_PR,
                        source=item,
                        target=None,
                        reason=f'No pull request found but ledger status is "{item.pull_request_status}"',
                        desired=PullRequestStatus.NONE.value,
                    )
                )
            return operations

        expected_status = pr_state_to_pull_request_status(pr)
        if item.pull_request_status != expected_status:
            operations.append(
                SyncOperation(
                    action=SyncAction.UPDATE_LEDGER_PR_STATUS,
                    source=item,
                    target=pr,
                    reason=f'Pull request #{pr.pr_id} requires ledger PR status "{expected_status}"',
                    desired=expected_status,
                )
            )

        if item.pull_request_link != pr.url:
            operations.append(
                SyncOperation(
                    action=SyncAction.UPDATE_LEDGER_PR_LINK,
                    source=item,
                    target=pr,
                    reason="Ledger item is missing or has an incorrect pull request link",
                    desired=pr.url,
                )
            )

        return operations

    def _plan_orphans(self, index: SnapshotIndex) -> list[SyncOperation]:
        operations: list[SyncOperation] = []

        for item_id, issue in index.issue_by_id.items():
            if item_id in index.item_by_id:
                continue
            if issue.state == IssueState.CLOSED and issue.locked:
                # Already closed and locked by an earlier pass
                continue
            operations.append(
                SyncOperation(
                    action=SyncAction.DELETE,
                    source=None,
                    target=issue,
                    reason="Tracker issue exists but its work item was deleted from the ledger",
                )
            )

        return operations

    def plan_branch_action(self, item: WorkItem, known_branch_url: str | None) -> list[SyncOperation]:
        """Plan the single-record branch lifecycle for one work item.

        Args:
            item: The work item a branch was requested for
            known_branch_url: URL of the item's branch if the tracker already
                has it, otherwise None

        Returns:
            At most ``[create_branch, update_ledger_branch]``.
        """
        try:
            validate_for_sync(item)
        except ValidationError as e:
            log.warning("skipping_invalid_work_item", item_id=item.id, errors=e.errors)
            return []

        operations: list[SyncOperation] = []
        expected_url = known_branch_url

        if known_branch_url is None:
            branch_name = branch_name_for(item.id, item.title)
            repository = self.routing.module_mapping.get(item.module)
            # Unroutable: the create fails at execution, so no link can be predicted
            expected_url = self.routing.branch_url(repository, branch_name) if repository else None
            operations.append(
                SyncOperation(
                    action=SyncAction.CREATE_BRANCH,
                    source=item,
                    target=None,
                    reason=f"Work item has no branch; creating {branch_name}",
                    desired=branch_name,
                )
            )

        if expected_url and item.branch_url != expected_url:
            operations.append(
                SyncOperation(
                    action=SyncAction.UPDATE_LEDGER_BRANCH,
                    source=item,
                    target=None,
                    reason="Ledger item is missing or has an incorrect branch link",
                    desired=expected_url,
                )
            )

        return operations


def plan(
    work_items: Iterable[WorkItem],
    issues: Iterable[TrackerIssue],
    pull_requests: Iterable[PullRequest],
    routing: RoutingConfig,
) -> list[SyncOperation]:
    """Compute the operations that converge both snapshots. Pure, no I/O."""
    return SyncPlanner(routing).plan(build_indices(work_items, issues, pull_requests))


def plan_branch_action(
    item: WorkItem,
    known_branch_url: str | None,
    routing: RoutingConfig,
) -> list[SyncOperation]:
    """Single-record variant of :func:`plan` for branch webhooks."""
    return SyncPlanner(routing).plan_branch_action(item, known_branch_url)
