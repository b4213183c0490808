"""
Reconciliation engine: fetch, plan, execute.

The engine is the impure shell around the planner. One pass:

    1. Pre-flight permission check (warning only)
    2. Fetch both snapshots concurrently
    3. Plan (pure, synchronous)
    4. Execute sequentially with per-operation isolation

Snapshot fetch failure is the only thing that aborts a pass; it surfaces as
SnapshotFetchError. Every other failure ends up in the SyncResult.

Example:
    >>> engine = SyncEngine(ledger, tracker, settings.routing())
    >>> result = await engine.sync_once()
    >>> result.summary()["failed"]
    0
"""

import asyncio
import uuid
from dataclasses import dataclass, field

import structlog

from ledger_sync.config.routing import RoutingConfig
from ledger_sync.exceptions import SnapshotFetchError, TrackerPermissionError
from ledger_sync.models.domain import (
    BranchRequest,
    PermissionReport,
    PullRequest,
    SyncOperation,
    SyncResult,
    TrackerIssue,
    WorkItem,
)
from ledger_sync.stores.base import LedgerStore, TrackerStore
from ledger_sync.sync.executor import ItemLocks, OperationExecutor
from ledger_sync.sync.identity import branch_name_for
from ledger_sync.sync.issue_body import branch_name_from_url
from ledger_sync.sync.mapper import build_indices
from ledger_sync.sync.planner import SyncPlanner

log = structlog.get_logger(__name__)


@dataclass
class Snapshot:
    """Both stores' state as fetched at the start of a pass."""

    work_items: list[WorkItem] = field(default_factory=list)
    issues: list[TrackerIssue] = field(default_factory=list)
    pull_requests: list[PullRequest] = field(default_factory=list)


class SyncEngine:
    """Bundle stores, routing and locks into runnable passes.

    Attributes:
        ledger: Ledger store adapter
        tracker: Tracker store adapter
        routing: Immutable module routing
        locks: Per-item lock registry shared by passes and branch requests
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
        self.planner = SyncPlanner(routing)
        self.executor = OperationExecutor(ledger, tracker, routing, self.locks)

    async def connect(self) -> None:
        await self.ledger.connect()
        await self.tracker.connect()

    async def close(self) -> None:
        await self.ledger.disconnect()
        await self.tracker.disconnect()

    async def preflight(self, strict: bool = False) -> PermissionReport | None:
        """Check tracker write access before mutating anything.

        Args:
            strict: Raise instead of warning when access is missing

        Returns:
            The permission report, or None if the check itself failed.

        Raises:
            TrackerPermissionError: Only when ``strict`` is set
        """
        repositories = self.routing.repositories()
        try:
            report = await self.tracker.check_permissions(repositories)
        except Exception as e:
            log.warning("permission_check_failed", error=str(e))
            return None

        if not report.can_write:
            error = TrackerPermissionError(
                f"Tracker user {report.user} lacks write access",
                repositories=report.read_only_repositories,
            )
            if strict:
                raise error
            log.warning(
                "tracker_write_access_missing",
                user=report.user,
                repositories=error.repositories,
            )
        return report

    async def _fetch_tracker(self) -> tuple[list[TrackerIssue], list[PullRequest]]:
        repositories = self.routing.repositories()
        results = await asyncio.gather(
            *(self.tracker.fetch_synced_issues(repository) for repository in repositories),
            *(self.tracker.fetch_pull_requests(repository) for repository in repositories),
        )
        issues = [issue for batch in results[: len(repositories)] for issue in batch]
        pull_requests = [pr for batch in results[len(repositories) :] for pr in batch]
        return issues, pull_requests

    async def fetch_snapshot(self) -> Snapshot:
        """Fetch ledger items plus per-repository issues and pull requests.

        Raises:
            SnapshotFetchError: If either side cannot be fetched
        """
        ledger_result, tracker_result = await asyncio.gather(
            self.ledger.fetch_all(),
            self._fetch_tracker(),
            return_exceptions=True,
        )

        if isinstance(ledger_result, BaseException):
            log.error("snapshot_fetch_failed", source="ledger", error=str(ledger_result))
            raise SnapshotFetchError("Failed to fetch snapshot", source="ledger") from ledger_result
        if isinstance(tracker_result, BaseException):
            log.error("snapshot_fetch_failed", source="tracker", error=str(tracker_result))
            raise SnapshotFetchError("Failed to fetch snapshot", source="tracker") from tracker_result

        issues, pull_requests = tracker_result
        snapshot = Snapshot(work_items=ledger_result, issues=issues, pull_requests=pull_requests)
        log.info(
            "snapshot_fetched",
            work_items=len(snapshot.work_items),
            issues=len(snapshot.issues),
            pull_requests=len(snapshot.pull_requests),
        )
        return snapshot

    def plan(self, snapshot: Snapshot) -> list[SyncOperation]:
        return self.planner.plan(build_indices(snapshot.work_items, snapshot.issues, snapshot.pull_requests))

    async def sync_once(self) -> SyncResult:
        """Run one full reconciliation pass.

        Raises:
            SnapshotFetchError: If a snapshot cannot be fetched
        """
        with structlog.contextvars.bound_contextvars(pass_id=uuid.uuid4().hex[:12]):
            log.info("sync_pass_started", repositories=self.routing.repositories())

            await self.preflight()
            snapshot = await self.fetch_snapshot()
            operations = self.plan(snapshot)
            result = await self.executor.execute(operations)

            summary = result.summary()
            log.info(
                "sync_pass_completed",
                created=summary["created"],
                updated=summary["updated"],
                deleted=summary["deleted"],
                failed=summary["failed"],
                total=summary["total"],
            )
            return result

    async def dry_run(self) -> list[SyncOperation]:
        """Fetch and plan without executing anything."""
        with structlog.contextvars.bound_contextvars(pass_id=uuid.uuid4().hex[:12], dry_run=True):
            snapshot = await self.fetch_snapshot()
            operations = self.plan(snapshot)
            log.info("dry_run_planned", count=len(operations))
            return operations

    async def handle_branch_request(self, request: BranchRequest) -> SyncResult | None:
        """Create a work item's branch and link it back to the ledger.

        The ledger record is authoritative: the request only names the item.

        Returns:
            The execution result, or None when the item does not exist.
        """
        log.info("branch_request_received", item_id=request.item_id)

        item = await self.ledger.find_by_id(request.item_id)
        if item is None:
            log.warning("branch_request_unknown_item", item_id=request.item_id)
            return None

        known_url = None
        repository = self.routing.module_mapping.get(item.module)
        if repository:
            # A linked branch outlives title edits, so it is checked first
            candidates = [branch_name_for(item.id, item.title)]
            if item.branch_url:
                candidates.insert(0, branch_name_from_url(item.branch_url))
            for name in candidates:
                known_url = await self.tracker.get_branch_url(repository, name)
                if known_url:
                    break

        operations = self.planner.plan_branch_action(item, known_url)
        if not operations:
            log.info("branch_already_linked", item_id=item.id, branch_url=known_url)
            return SyncResult()

        return await self.executor.execute(operations)
