"""
Sequential, failure-isolated operation execution.

The executor is the only impure stage of a pass. Operations run strictly in
list order and each one is awaited before the next begins: both stores are
rate-limited, and one record can be the target of several operations in the
same pass.

Every operation is wrapped individually. A failure is recorded in the
SyncResult and execution moves on; one bad record never aborts the batch.
"""

import asyncio
from collections import Counter
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager

import structlog

from ledger_sync.config.routing import RoutingConfig
from ledger_sync.exceptions import OperationError
from ledger_sync.models.domain import (
    IssueState,
    PullRequest,
    PullRequestStatus,
    SyncAction,
    SyncOperation,
    SyncResult,
    TrackerIssue,
    WorkItem,
)
from ledger_sync.stores.base import LedgerStore, TrackerStore
from ledger_sync.sync.issue_body import branch_name_from_url, insert_branch_link
from ledger_sync.sync.status import ledger_status_to_tracker_state

log = structlog.get_logger(__name__)

ORPHAN_COMMENT = "This issue is being closed because the corresponding work item was deleted from the ledger."


class ItemLocks:
    """Per-work-item mutual exclusion within one process.

    A scheduled pass and a webhook-triggered branch action may touch the same
    record concurrently; both acquire the record's lock around each write.
    Other processes are not covered. A lock is dropped once its last holder
    or waiter leaves.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: Counter[str] = Counter()

    @asynccontextmanager
    async def hold(self, item_id: str | None) -> AsyncIterator[None]:
        if not item_id:
            yield
            return
        lock = self._locks.setdefault(item_id, asyncio.Lock())
        self._users[item_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[item_id] -= 1
            if self._users[item_id] <= 0:
                del self._users[item_id]
                del self._locks[item_id]

    def __len__(self) -> int:
        return len(self._locks)


class OperationExecutor:
    """Apply sync operations against the ledger and tracker stores.

    Attributes:
        ledger: Ledger store adapter
        tracker: Tracker store adapter
        routing: Module routing used for creates and branch creation
        locks: Per-item lock registry shared with single-record actions
    """

    def __init__(
        self,
        ledger: LedgerStore,
        tracker: TrackerStore,
        routing: RoutingConfig,
        locks: ItemLocks | None = None,
    ) -> None:
        self.ledger = ledger
        self.tracker = tracker
        self.routing = routing
        self.locks = locks or ItemLocks()

        self._handlers = {
            SyncAction.CREATE: self._create,
            SyncAction.UPDATE_TRACKER_STATE: self._update_tracker_state,
            SyncAction.UPDATE_LEDGER_STATUS: self._update_ledger_status,
            SyncAction.UPDATE_LEDGER_LINK: self._update_ledger_link,
            SyncAction.UPDATE_TRACKER_BODY: self._update_tracker_body,
            SyncAction.UPDATE_LEDGER_PR_STATUS: self._update_ledger_pr_status,
            SyncAction.UPDATE_LEDGER_PR_LINK: self._update_ledger_pr_link,
            SyncAction.CLEAR_LEDGER_PR: self._clear_ledger_pr,
            SyncAction.DELETE: self._delete,
            SyncAction.CREATE_BRANCH: self._create_branch,
            SyncAction.UPDATE_LEDGER_BRANCH: self._update_ledger_branch,
        }

    async def execute(self, operations: Iterable[SyncOperation]) -> SyncResult:
        """Run every operation in order and tally the outcomes."""
        operations = list(operations)
        result = SyncResult()

        log.info("executing_sync_operations", count=len(operations))

        for operation in operations:
            try:
                async with self.locks.hold(operation.item_id):
                    await self.execute_operation(operation)
            except OperationError as e:
                log.error(
                    "sync_operation_failed",
                    action=operation.action.value,
                    item_id=operation.item_id,
                    error=str(e.cause),
                )
                result.record_failure(operation, str(e.cause))
            else:
                result.record_success(operation)

        log.info(
            "sync_operations_completed",
            created=result.created,
            updated=result.updated,
            deleted=result.deleted,
            failed=result.failed,
        )
        return result

    async def execute_operation(self, operation: SyncOperation) -> None:
        """Execute a single operation.

        Raises:
            OperationError: Wrapping whatever the store call raised
        """
        log.info("executing_operation", action=operation.action.value, reason=operation.reason)

        handler = self._handlers.get(operation.action)
        try:
            if handler is None:
                raise ValueError(f"Unknown operation: {operation.action}")
            await handler(operation)
        except Exception as e:
            raise OperationError(
                "Sync operation failed",
                action=operation.action.value,
                item_id=operation.item_id,
                cause=e,
            ) from e

    async def _create(self, operation: SyncOperation) -> None:
        item = _source(operation)
        repository = self.routing.repository_for(item.module)

        log.info("creating_tracker_issue", item_id=item.id, repository=repository)
        issue = await self.tracker.create(repository, item)

        if ledger_status_to_tracker_state(item.status) == IssueState.CLOSED:
            # Trackers open new issues; a closed ledger status must not survive as open
            await self.tracker.set_state(repository, issue.issue_id, IssueState.CLOSED)
            log.info("tracker_issue_closed_on_create", item_id=item.id, issue=issue.issue_id)

        try:
            await self.ledger.update_link(item.storage_id, issue.url)
        except Exception as e:
            # The next pass emits update_ledger_link for the new issue
            log.warning("issue_link_writeback_failed", item_id=item.id, url=issue.url, error=str(e))

        log.info("tracker_issue_created", item_id=item.id, issue=issue.issue_id, url=issue.url)

    async def _update_tracker_state(self, operation: SyncOperation) -> None:
        item = _source(operation)
        issue = _issue(operation)
        state = IssueState(operation.desired)

        await self.tracker.set_state(issue.repository, issue.issue_id, state)

        try:
            await self.tracker.add_comment(
                issue.repository,
                issue.issue_id,
                f'Issue state updated to "{state.value}" based on ledger status: "{item.status}"',
            )
        except Exception as e:
            log.warning("state_comment_failed", issue=issue.issue_id, error=str(e))

    async def _update_ledger_status(self, operation: SyncOperation) -> None:
        item = _source(operation)
        await self.ledger.update_status(item.storage_id, operation.desired)

    async def _update_ledger_link(self, operation: SyncOperation) -> None:
        item = _source(operation)
        await self.ledger.update_link(item.storage_id, _issue(operation).url)

    async def _update_tracker_body(self, operation: SyncOperation) -> None:
        issue = _issue(operation)
        url = operation.desired or _source(operation).branch_url

        body = insert_branch_link(issue.body, url, branch_name_from_url(url))
        if body == (issue.body or ""):
            log.debug("issue_body_unchanged", issue=issue.issue_id)
            return

        await self.tracker.set_body(issue.repository, issue.issue_id, body)

    async def _update_ledger_pr_status(self, operation: SyncOperation) -> None:
        item = _source(operation)
        await self.ledger.update_properties(item.storage_id, pull_request_status=operation.desired)

    async def _update_ledger_pr_link(self, operation: SyncOperation) -> None:
        item = _source(operation)
        pr = operation.target
        if not isinstance(pr, PullRequest):
            raise ValueError(f"{operation.action} requires a pull request target")
        await self.ledger.update_properties(item.storage_id, pull_request_link=pr.url)

    async def _clear_ledger_pr(self, operation: SyncOperation) -> None:
        item = _source(operation)
        await self.ledger.update_properties(
            item.storage_id,
            pull_request_status=PullRequestStatus.NONE.value,
            pull_request_link="",
        )

    async def _delete(self, operation: SyncOperation) -> None:
        """Close and lock an orphaned issue; trackers have no true delete."""
        issue = _issue(operation)
        log.info("closing_orphaned_issue", issue=issue.issue_id, repository=issue.repository)

        try:
            await self.tracker.add_comment(issue.repository, issue.issue_id, ORPHAN_COMMENT)
        except Exception as e:
            log.warning("orphan_comment_failed", issue=issue.issue_id, error=str(e))

        await self.tracker.set_state(issue.repository, issue.issue_id, IssueState.CLOSED)
        await self.tracker.lock(issue.repository, issue.issue_id)

    async def _create_branch(self, operation: SyncOperation) -> None:
        item = _source(operation)
        repository = self.routing.repository_for(item.module)

        url = await self.tracker.create_branch(repository, operation.desired, self.routing.default_branch)
        log.info("branch_created", item_id=item.id, repository=repository, branch_url=url)

    async def _update_ledger_branch(self, operation: SyncOperation) -> None:
        item = _source(operation)
        await self.ledger.update_properties(item.storage_id, branch_url=operation.desired)


def _source(operation: SyncOperation) -> WorkItem:
    if operation.source is None:
        raise ValueError(f"{operation.action} requires a work item source")
    return operation.source


def _issue(operation: SyncOperation) -> TrackerIssue:
    if not isinstance(operation.target, TrackerIssue):
        raise ValueError(f"{operation.action} requires a tracker issue target")
    return operation.target


async def run(
    operations: Iterable[SyncOperation],
    ledger: LedgerStore,
    tracker: TrackerStore,
    routing: RoutingConfig,
) -> SyncResult:
    """Execute a planned operation list against both stores."""
    return await OperationExecutor(ledger, tracker, routing).execute(operations)
