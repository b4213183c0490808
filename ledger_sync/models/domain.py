"""
Domain models for the reconciliation engine.

These dataclasses are the normalized internal representation of both record
stores. Store adapters convert provider-specific payloads (Notion property
bags, PyGithub objects) into these shapes before anything reaches the core;
the planner never looks at raw external field names.

Every entity is ephemeral: built from a fresh fetch, consumed by one pass,
then discarded.

Example:
    Building a work item and its tracker issue::

        item = WorkItem(
            id="CBUG-12",
            title="Login button unresponsive",
            status=LedgerStatus.REPORTED,
            type="UI",
            module="App",
            storage_id="0f3c...",
        )
        issue = TrackerIssue(
            issue_id=42,
            url="https://github.com/acme/app/issues/42",
            repository="acme/app",
            title="CBUG-12: Login button unresponsive",
            body="",
            state=IssueState.OPEN,
        )
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from ledger_sync.sync.identity import extract_id


class LedgerStatus(str, Enum):
    """Workflow statuses a ledger record can carry.

    Statuses are stored on WorkItem as plain strings because the ledger may
    hold values outside this set; the str mixin lets both compare equal.
    """

    REPORTED = "Reported"
    BLOCKED = "Blocked"
    IN_PROGRESS = "In Progress"
    IN_REVIEW = "In Review"
    FIXED = "Fixed"
    REJECTED = "Rejected"


class IssueState(str, Enum):
    """Tracker issue and pull request state."""

    OPEN = "open"
    CLOSED = "closed"


class PullRequestStatus(str, Enum):
    """Value of the ledger's pull-request status field."""

    NONE = "None"
    OPEN = "Open"
    MERGED = "Merged"
    CLOSED = "Closed"


class ItemKind(str, Enum):
    """Ledger database a work item was read from."""

    BUG = "bug"
    TASK = "task"


class SyncAction(str, Enum):
    """Every mutating operation the planner can emit."""

    CREATE = "create"
    UPDATE_TRACKER_STATE = "update_tracker_state"
    UPDATE_LEDGER_STATUS = "update_ledger_status"
    UPDATE_LEDGER_LINK = "update_ledger_link"
    UPDATE_TRACKER_BODY = "update_tracker_body"
    UPDATE_LEDGER_PR_STATUS = "update_ledger_pr_status"
    UPDATE_LEDGER_PR_LINK = "update_ledger_pr_link"
    CLEAR_LEDGER_PR = "clear_ledger_pr"
    DELETE = "delete"
    CREATE_BRANCH = "create_branch"
    UPDATE_LEDGER_BRANCH = "update_ledger_branch"

    def __str__(self) -> str:
        return self.value

    @property
    def counter(self) -> str:
        """Name of the SyncResult counter a successful run increments."""
        if self in (SyncAction.CREATE, SyncAction.CREATE_BRANCH):
            return "created"
        if self == SyncAction.DELETE:
            return "deleted"
        return "updated"


class Outcome(str, Enum):
    """Result of executing one operation."""

    SUCCESS = "success"
    FAILURE = "failure"


@dataclass
class WorkItem:
    """One ledger record, either a bug or a task.

    Link fields use the empty string for "not set", mirroring how the
    ledger reports blank URL properties.
    """

    id: str
    """Canonical id in ``<PREFIX>-<n>`` form, e.g. ``CBUG-12`` or ``TSK-3``."""

    title: str
    status: str = LedgerStatus.REPORTED.value
    type: str = ""
    module: str = ""
    """Routes the item to a tracker repository via the module mapping."""

    description: str = ""
    detail_text: str = ""
    """Steps to reproduce for bugs, acceptance criteria for tasks."""

    issue_link: str = ""
    branch_url: str = ""
    pull_request_status: str = PullRequestStatus.NONE.value
    pull_request_link: str = ""
    last_modified: datetime | None = None
    storage_id: str = ""
    """Opaque ledger handle (Notion page id) used for mutation calls."""

    kind: ItemKind = ItemKind.BUG
    url: str = ""


@dataclass
class TrackerIssue:
    """An issue in the tracker carrying the sync marker label."""

    issue_id: int
    """Repository-scoped issue number."""

    url: str
    repository: str
    """Repository in ``owner/name`` form."""

    title: str
    body: str
    state: IssueState
    labels: set[str] = field(default_factory=set)
    updated_at: datetime | None = None
    locked: bool = False


@dataclass
class PullRequest:
    """A tracker pull request, linked to a work item through its branch name."""

    pr_id: int
    url: str
    repository: str
    state: IssueState
    merged: bool = False
    mergeable: bool | None = None
    """None when the tracker has not computed mergeability yet."""

    branch_name: str = ""
    base_branch: str = ""
    updated_at: datetime | None = None
    merged_at: datetime | None = None
    closed_at: datetime | None = None


@dataclass
class SyncOperation:
    """One mutating step planned for execution."""

    action: SyncAction
    source: WorkItem | None
    target: TrackerIssue | PullRequest | None
    reason: str
    desired: str | None = None
    """Value the operation writes: a state, status, URL or branch name."""

    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def item_id(self) -> str | None:
        """Canonical id the operation concerns, from either side."""
        if self.source is not None:
            return self.source.id
        if isinstance(self.target, TrackerIssue):
            return extract_id(self.target.title)
        return None


@dataclass
class OperationRecord:
    """Execution outcome of a single operation."""

    operation: SyncOperation
    outcome: Outcome
    error: str | None = None


@dataclass
class SyncResult:
    """Aggregated result of executing an operation list."""

    created: int = 0
    updated: int = 0
    deleted: int = 0
    failed: int = 0
    operations: list[OperationRecord] = field(default_factory=list)

    def record_success(self, operation: SyncOperation) -> None:
        counter = operation.action.counter
        setattr(self, counter, getattr(self, counter) + 1)
        self.operations.append(OperationRecord(operation, Outcome.SUCCESS))

    def record_failure(self, operation: SyncOperation, error: str) -> None:
        self.failed += 1
        self.operations.append(OperationRecord(operation, Outcome.FAILURE, error))

    @property
    def failures(self) -> list[OperationRecord]:
        return [record for record in self.operations if record.outcome == Outcome.FAILURE]

    def summary(self) -> dict[str, Any]:
        """Counters plus failure details, suitable for logs or CLI output."""
        return {
            "created": self.created,
            "updated": self.updated,
            "deleted": self.deleted,
            "failed": self.failed,
            "total": len(self.operations),
            "failures": [
                {
                    "action": record.operation.action.value,
                    "item_id": record.operation.item_id,
                    "error": record.error,
                }
                for record in self.failures
            ],
        }


@dataclass
class BranchRequest:
    """A single-record branch creation request from a webhook."""

    item_id: str
    title: str
    module: str | None = None
    type: str | None = None


@dataclass
class PermissionReport:
    """Outcome of the tracker's pre-flight capability check."""

    user: str
    writable: dict[str, bool] = field(default_factory=dict)

    @property
    def can_write(self) -> bool:
        return bool(self.writable) and all(self.writable.values())

    @property
    def read_only_repositories(self) -> list[str]:
        return sorted(repo for repo, ok in self.writable.items() if not ok)
