"""GitHub tracker store implementation using PyGithub and REST API."""

import asyncio
from collections.abc import Callable
from typing import TypeVar

import structlog
from github import Github, GithubException  # type: ignore[import-not-found]
from github.Issue import Issue as GHIssue  # type: ignore[import-not-found]
from github.PullRequest import PullRequest as GHPullRequest  # type: ignore[import-not-found]
from github.Repository import Repository as GHRepository  # type: ignore[import-not-found]

from ledger_sync.models.domain import IssueState, PermissionReport, PullRequest, TrackerIssue, WorkItem
from ledger_sync.stores.base import TrackerStore
from ledger_sync.sync.identity import issue_title_for
from ledger_sync.sync.issue_body import issue_labels, render_issue_body

log = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_SYNC_LABEL = "notion-sync"


async def _run_sync(func: Callable[[], T]) -> T:
    """Run a synchronous function in a thread pool.

    This prevents blocking the event loop when calling synchronous
    PyGithub methods.
    """
    return await asyncio.to_thread(func)


class GitHubTrackerStore(TrackerStore):
    """GitHub implementation using PyGithub library.

    One instance serves every repository in the module mapping; repository
    handles are fetched lazily and cached by ``owner/name``.
    """

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.github.com",
        web_url: str = "https://github.com",
        sync_label: str = DEFAULT_SYNC_LABEL,
    ):
        """Initialize GitHub tracker store.

        Args:
            token: GitHub personal access token or App token
            base_url: GitHub API base URL (for GitHub Enterprise)
            web_url: GitHub web UI base URL, used to build branch links
            sync_label: Label marking issues created by this tool
        """
        self.token = token.strip() if token else token
        # Normalize by removing trailing slash (Pydantic HttpUrl adds it)
        self.base_url = base_url.rstrip("/")
        self.web_url = web_url.rstrip("/")
        self.sync_label = sync_label
        self._client: Github | None = None
        self._repos: dict[str, GHRepository] = {}

    async def connect(self) -> None:
        """Initialize GitHub client."""
        self._client = await _run_sync(lambda: Github(self.token, base_url=self.base_url))
        log.info("github_connected", base_url=self.base_url)

    async def disconnect(self) -> None:
        """Close GitHub client."""
        if self._client:
            await _run_sync(self._client.close)
            self._client = None
            self._repos.clear()

    def _get_repo(self, repository: str) -> GHRepository:
        """Resolve a repository handle. Blocking; call inside ``_run_sync``."""
        if self._client is None:
            raise ConnectionError("GitHub client is not connected")
        if repository not in self._repos:
            self._repos[repository] = self._client.get_repo(repository)
        return self._repos[repository]

    def _get_issue(self, repository: str, issue_id: int) -> GHIssue:
        return self._get_repo(repository).get_issue(issue_id)

    async def fetch_synced_issues(self, repository: str) -> list[TrackerIssue]:
        """Retrieve synced issues via GitHub API."""
        log.info("fetch_synced_issues", repository=repository, label=self.sync_label)

        def _fetch() -> list[GHIssue]:
            repo = self._get_repo(repository)
            return list(repo.get_issues(state="all", labels=[self.sync_label]))

        try:
            gh_issues = await _run_sync(_fetch)
        except GithubException as e:
            if e.status == 404:
                log.warning("github_repository_not_found", repository=repository)
                return []
            log.error("github_fetch_issues_failed", repository=repository, error=str(e))
            raise

        # The issues endpoint also lists pull requests
        issues = [self._convert_issue(gh_issue, repository) for gh_issue in gh_issues if gh_issue.pull_request is None]
        log.info("synced_issues_fetched", repository=repository, count=len(issues))
        return issues

    async def create(self, repository: str, item: WorkItem) -> TrackerIssue:
        """Create the tracker issue for a work item."""
        title = issue_title_for(item)
        labels = issue_labels(item, self.sync_label)
        log.info("create_issue", repository=repository, title=title, labels=labels)

        try:
            gh_issue = await _run_sync(
                lambda: self._get_repo(repository).create_issue(
                    title=title,
                    body=render_issue_body(item),
                    labels=labels,
                )
            )
            return self._convert_issue(gh_issue, repository)

        except GithubException as e:
            log.error("github_create_issue_failed", repository=repository, error=str(e))
            raise

    async def set_state(self, repository: str, issue_id: int, state: IssueState) -> None:
        """Open or close an issue."""
        log.info("set_issue_state", repository=repository, number=issue_id, state=state.value)

        try:
            await _run_sync(lambda: self._get_issue(repository, issue_id).edit(state=state.value))
        except GithubException as e:
            log.error("github_set_state_failed", repository=repository, number=issue_id, error=str(e))
            raise

    async def add_comment(self, repository: str, issue_id: int, text: str) -> None:
        """Add comment to issue."""
        log.info("add_comment", repository=repository, number=issue_id)

        try:
            await _run_sync(lambda: self._get_issue(repository, issue_id).create_comment(text))
        except GithubException as e:
            log.error("github_add_comment_failed", repository=repository, number=issue_id, error=str(e))
            raise

    async def set_body(self, repository: str, issue_id: int, text: str) -> None:
        """Replace an issue body."""
        log.info("set_issue_body", repository=repository, number=issue_id)

        try:
            await _run_sync(lambda: self._get_issue(repository, issue_id).edit(body=text))
        except GithubException as e:
            log.error("github_set_body_failed", repository=repository, number=issue_id, error=str(e))
            raise

    async def lock(self, repository: str, issue_id: int) -> None:
        """Lock an issue's conversation."""
        log.info("lock_issue", repository=repository, number=issue_id)

        try:
            await _run_sync(lambda: self._get_issue(repository, issue_id).lock("resolved"))
        except GithubException as e:
            log.error("github_lock_failed", repository=repository, number=issue_id, error=str(e))
            raise

    async def fetch_pull_requests(self, repository: str) -> list[PullRequest]:
        """Retrieve all pull requests via GitHub API."""
        log.info("fetch_pull_requests", repository=repository)

        try:
            gh_prs = await _run_sync(lambda: list(self._get_repo(repository).get_pulls(state="all")))
        except GithubException as e:
            if e.status == 404:
                log.warning("github_repository_not_found", repository=repository)
                return []
            log.error("github_fetch_pulls_failed", repository=repository, error=str(e))
            raise

        return [self._convert_pull_request(gh_pr, repository) for gh_pr in gh_prs]

    async def create_branch(self, repository: str, name: str, from_branch: str) -> str:
        """Create a new branch."""
        log.info("create_branch", repository=repository, branch=name, from_branch=from_branch)

        def _create_branch() -> None:
            repo = self._get_repo(repository)
            source_sha = repo.get_git_ref(f"heads/{from_branch}").object.sha
            repo.create_git_ref(ref=f"refs/heads/{name}", sha=source_sha)

        try:
            await _run_sync(_create_branch)
        except GithubException as e:
            # 422: reference already exists
            if e.status == 422:
                log.info("github_branch_exists", repository=repository, branch=name)
            else:
                log.error(
                    "github_create_branch_failed",
                    repository=repository,
                    branch=name,
                    from_branch=from_branch,
                    error=str(e),
                )
                raise

        return self._branch_url(repository, name)

    async def get_branch_url(self, repository: str, name: str) -> str | None:
        """Get branch web URL, or None if it does not exist."""
        log.info("get_branch", repository=repository, branch=name)

        try:
            await _run_sync(lambda: self._get_repo(repository).get_branch(name))
        except GithubException as e:
            if e.status == 404:
                log.debug("github_branch_not_found", repository=repository, branch=name)
                return None
            log.error("github_get_branch_failed", repository=repository, branch=name, error=str(e))
            raise

        return self._branch_url(repository, name)

    async def check_permissions(self, repositories: list[str]) -> PermissionReport:
        """Check push access to each repository."""

        def _check() -> PermissionReport:
            if self._client is None:
                raise ConnectionError("GitHub client is not connected")
            user = self._client.get_user().login
            writable: dict[str, bool] = {}
            for repository in repositories:
                try:
                    permissions = self._get_repo(repository).permissions
                    writable[repository] = bool(permissions and permissions.push)
                except GithubException as e:
                    log.warning("github_repository_inaccessible", repository=repository, status=e.status)
                    writable[repository] = False
            return PermissionReport(user=user, writable=writable)

        report = await _run_sync(_check)
        log.info("github_permissions_checked", user=report.user, writable=report.writable)
        return report

    def _branch_url(self, repository: str, name: str) -> str:
        return f"{self.web_url}/{repository}/tree/{name}"

    def _convert_issue(self, gh_issue: GHIssue, repository: str) -> TrackerIssue:
        """Convert GitHub Issue to our TrackerIssue model."""
        state = IssueState.CLOSED if gh_issue.state == "closed" else IssueState.OPEN

        return TrackerIssue(
            issue_id=gh_issue.number,
            url=gh_issue.html_url,
            repository=repository,
            title=gh_issue.title,
            body=gh_issue.body or "",
            state=state,
            labels={label.name for label in gh_issue.labels},
            updated_at=gh_issue.updated_at,
            locked=bool(gh_issue.locked),
        )

    def _convert_pull_request(self, gh_pr: GHPullRequest, repository: str) -> PullRequest:
        """Convert GitHub PullRequest to our PullRequest model.

        Listing responses omit ``merged`` and ``mergeable``. Merged is
        derived from ``merged_at`` and mergeability is left unknown.
        """
        return PullRequest(
            pr_id=gh_pr.number,
            url=gh_pr.html_url,
            repository=repository,
            state=IssueState.CLOSED if gh_pr.state == "closed" else IssueState.OPEN,
            merged=gh_pr.merged_at is not None,
            mergeable=None,
            branch_name=gh_pr.head.ref,
            base_branch=gh_pr.base.ref,
            updated_at=gh_pr.updated_at,
            merged_at=gh_pr.merged_at,
            closed_at=gh_pr.closed_at,
        )
