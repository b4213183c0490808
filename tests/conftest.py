"""Pytest configuration and shared fixtures."""

import copy
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from ledger_sync.config.routing import RoutingConfig
from ledger_sync.exceptions import ExternalServiceError
from ledger_sync.models.domain import (
    IssueState,
    ItemKind,
    PermissionReport,
    PullRequest,
    TrackerIssue,
    WorkItem,
)
from ledger_sync.stores.base import LEDGER_PROPERTY_KEYS, LedgerStore, TrackerStore
from ledger_sync.sync.identity import issue_title_for
from ledger_sync.sync.issue_body import issue_labels, render_issue_body

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


class InMemoryLedgerStore(LedgerStore):
    """Ledger fake that applies writes to in-memory WorkItems."""

    def __init__(self, items: list[WorkItem] | None = None) -> None:
        self.items: dict[str, WorkItem] = {}
        self.calls: list[tuple[str, str, dict[str, Any]]] = []
        self.failures: dict[str, Exception] = {}
        for index, item in enumerate(items or []):
            if not item.storage_id:
                item.storage_id = f"page-{index}"
            self.items[item.storage_id] = item

    def _maybe_fail(self, method: str) -> None:
        if method in self.failures:
            raise self.failures[method]

    async def fetch_all(self) -> list[WorkItem]:
        self._maybe_fail("fetch_all")
        return [copy.deepcopy(item) for item in self.items.values()]

    async def find_by_id(self, item_id: str) -> WorkItem | None:
        self._maybe_fail("find_by_id")
        for item in self.items.values():
            if item.id == item_id:
                return copy.deepcopy(item)
        return None

    async def update_status(self, storage_id: str, status: str) -> None:
        await self.update_properties(storage_id, status=status)

    async def update_link(self, storage_id: str, url: str) -> None:
        await self.update_properties(storage_id, issue_link=url)

    async def update_properties(self, storage_id: str, **changes: Any) -> None:
        self._maybe_fail("update_properties")
        unknown = set(changes) - LEDGER_PROPERTY_KEYS
        if unknown:
            raise ValueError(f"Unknown ledger properties: {sorted(unknown)}")
        if storage_id not in self.items:
            raise ExternalServiceError("Page not found", status_code=404)

        self.calls.append(("update_properties", storage_id, dict(changes)))
        item = self.items[storage_id]
        for key, value in changes.items():
            setattr(item, key, value)
        item.last_modified = datetime.now(UTC)


class InMemoryTrackerStore(TrackerStore):
    """Tracker fake holding issues, pull requests and branches per repository."""

    def __init__(
        self,
        issues: list[TrackerIssue] | None = None,
        pull_requests: list[PullRequest] | None = None,
        sync_label: str = "notion-sync",
        web_url: str = "https://github.com",
    ) -> None:
        self.sync_label = sync_label
        self.web_url = web_url
        self.issues: dict[tuple[str, int], TrackerIssue] = {}
        self.pull_requests = list(pull_requests or [])
        self.branches: dict[str, set[str]] = {}
        self.comments: list[tuple[str, int, str]] = []
        self.read_only: set[str] = set()
        self.failures: dict[str, Exception] = {}
        self._next_number = 100
        for issue in issues or []:
            self.issues[(issue.repository, issue.issue_id)] = issue

    def _maybe_fail(self, method: str) -> None:
        if method in self.failures:
            raise self.failures[method]

    def _issue(self, repository: str, issue_id: int) -> TrackerIssue:
        try:
            return self.issues[(repository, issue_id)]
        except KeyError:
            raise ExternalServiceError("Issue not found", status_code=404) from None

    async def fetch_synced_issues(self, repository: str) -> list[TrackerIssue]:
        self._maybe_fail("fetch_synced_issues")
        return [
            copy.deepcopy(issue)
            for (repo, _), issue in self.issues.items()
            if repo == repository and self.sync_label in issue.labels
        ]

    async def create(self, repository: str, item: WorkItem) -> TrackerIssue:
        self._maybe_fail("create")
        self._next_number += 1
        issue = TrackerIssue(
            issue_id=self._next_number,
            url=f"{self.web_url}/{repository}/issues/{self._next_number}",
            repository=repository,
            title=issue_title_for(item),
            body=render_issue_body(item),
            state=IssueState.OPEN,
            labels=set(issue_labels(item, self.sync_label)),
            updated_at=datetime.now(UTC),
        )
        self.issues[(repository, issue.issue_id)] = issue
        return copy.deepcopy(issue)

    async def set_state(self, repository: str, issue_id: int, state: IssueState) -> None:
        self._maybe_fail("set_state")
        issue = self._issue(repository, issue_id)
        issue.state = state
        issue.updated_at = datetime.now(UTC)

    async def add_comment(self, repository: str, issue_id: int, text: str) -> None:
        self._maybe_fail("add_comment")
        self._issue(repository, issue_id)
        self.comments.append((repository, issue_id, text))

    async def set_body(self, repository: str, issue_id: int, text: str) -> None:
        self._maybe_fail("set_body")
        issue = self._issue(repository, issue_id)
        issue.body = text
        issue.updated_at = datetime.now(UTC)

    async def lock(self, repository: str, issue_id: int) -> None:
        self._maybe_fail("lock")
        self._issue(repository, issue_id).locked = True

    async def fetch_pull_requests(self, repository: str) -> list[PullRequest]:
        self._maybe_fail("fetch_pull_requests")
        return [copy.deepcopy(pr) for pr in self.pull_requests if pr.repository == repository]

    async def create_branch(self, repository: str, name: str, from_branch: str) -> str:
        self._maybe_fail("create_branch")
        self.branches.setdefault(repository, set()).add(name)
        return f"{self.web_url}/{repository}/tree/{name}"

    async def get_branch_url(self, repository: str, name: str) -> str | None:
        if name in self.branches.get(repository, set()):
            return f"{self.web_url}/{repository}/tree/{name}"
        return None

    async def check_permissions(self, repositories: list[str]) -> PermissionReport:
        self._maybe_fail("check_permissions")
        return PermissionReport(
            user="sync-bot",
            writable={repository: repository not in self.read_only for repository in repositories},
        )


def make_item(item_id: str = "CBUG-1", **overrides: Any) -> WorkItem:
    """Build a syncable WorkItem with sensible defaults."""
    fields: dict[str, Any] = {
        "id": item_id,
        "title": f"Title of {item_id}",
        "status": "Reported",
        "type": "UI",
        "module": "App",
        "storage_id": f"page-{item_id}",
        "last_modified": T0,
        "kind": ItemKind.TASK if item_id.startswith("TSK-") else ItemKind.BUG,
    }
    fields.update(overrides)
    return WorkItem(**fields)


def make_issue(item_id: str = "CBUG-1", number: int = 1, **overrides: Any) -> TrackerIssue:
    """Build a synced TrackerIssue linked to ``item_id`` through its title."""
    repository = overrides.pop("repository", "acme/app")
    fields: dict[str, Any] = {
        "issue_id": number,
        "url": f"https://github.com/{repository}/issues/{number}",
        "repository": repository,
        "title": f"{item_id}: Title of {item_id}",
        "body": "",
        "state": IssueState.OPEN,
        "labels": {"bug", "notion-sync"},
        "updated_at": T0 - timedelta(hours=1),
    }
    fields.update(overrides)
    return TrackerIssue(**fields)


def make_pr(item_id: str = "TSK-1", number: int = 10, **overrides: Any) -> PullRequest:
    """Build a PullRequest whose branch links it to ``item_id``."""
    repository = overrides.pop("repository", "acme/app")
    fields: dict[str, Any] = {
        "pr_id": number,
        "url": f"https://github.com/{repository}/pull/{number}",
        "repository": repository,
        "state": IssueState.OPEN,
        "branch_name": f"{item_id}/some-change",
        "base_branch": "main",
        "updated_at": T0,
    }
    fields.update(overrides)
    return PullRequest(**fields)


@pytest.fixture
def routing() -> RoutingConfig:
    """Routing with two modules in two repositories."""
    return RoutingConfig(module_mapping={"App": "acme/app", "Firmware": "acme/firmware"})


@pytest.fixture
def ledger() -> InMemoryLedgerStore:
    return InMemoryLedgerStore()


@pytest.fixture
def tracker() -> InMemoryTrackerStore:
    return InMemoryTrackerStore()


@pytest.fixture
def settings_data() -> dict[str, Any]:
    """Minimal valid settings as a plain dict."""
    return {
        "ledger": {"api_token": "secret_notion", "bug_database_id": "bugs-db", "task_database_id": "tasks-db"},
        "tracker": {"api_token": "ghp_test"},
        "sync": {"module_mapping": {"App": "acme/app", "Firmware": "acme/firmware"}},
    }
