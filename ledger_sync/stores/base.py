"""
Abstract base classes for the two record stores.

The reconciliation core talks to the ledger and the tracker only through
these interfaces. Implementations normalize provider payloads into the domain
models before returning them, so nothing above this layer sees raw external
field names.
"""

from abc import ABC, abstractmethod
from typing import Any

from ledger_sync.models.domain import IssueState, PermissionReport, PullRequest, TrackerIssue, WorkItem

LEDGER_PROPERTY_KEYS = frozenset({"status", "issue_link", "branch_url", "pull_request_status", "pull_request_link"})


class LedgerStore(ABC):
    """Abstract base class for ledger implementations.

    The ledger is the structured bug/task database treated as the source of
    intent. Records are addressed by their opaque ``storage_id`` for writes
    and by canonical id for lookups.
    """

    async def connect(self) -> None:
        """Open connections. The default implementation does nothing."""

    async def disconnect(self) -> None:
        """Release connections. The default implementation does nothing."""

    @abstractmethod
    async def fetch_all(self) -> list[WorkItem]:
        """Retrieve every bug and task record.

        Returns:
            WorkItems in the order the ledger reports them. Bugs come before
            tasks; each item's ``kind`` records which database it came from.

        Raises:
            ExternalServiceError: If the ledger API request fails.
        """
        pass

    @abstractmethod
    async def find_by_id(self, item_id: str) -> WorkItem | None:
        """Look up one record by canonical id.

        Args:
            item_id: Canonical id such as ``CBUG-12``. The prefix decides
                which database is queried.

        Returns:
            The WorkItem, or None when no record carries the id.
        """
        pass

    @abstractmethod
    async def update_status(self, storage_id: str, status: str) -> None:
        """Set the workflow status of a record."""
        pass

    @abstractmethod
    async def update_link(self, storage_id: str, url: str) -> None:
        """Set the tracker issue link of a record."""
        pass

    @abstractmethod
    async def update_properties(self, storage_id: str, **changes: Any) -> None:
        """Write several properties of a record in one call.

        Args:
            storage_id: Opaque record handle
            **changes: Any of ``status``, ``issue_link``, ``branch_url``,
                ``pull_request_status`` and ``pull_request_link``. An empty
                string clears a URL property.

        Raises:
            ValueError: If an unknown property key is passed.
        """
        pass


class TrackerStore(ABC):
    """Abstract base class for issue tracker implementations.

    All methods take the ``owner/name`` repository explicitly: one tracker
    instance serves every repository in the module mapping.
    """

    async def connect(self) -> None:
        """Open connections. The default implementation does nothing."""

    async def disconnect(self) -> None:
        """Release connections. The default implementation does nothing."""

    @abstractmethod
    async def fetch_synced_issues(self, repository: str) -> list[TrackerIssue]:
        """Retrieve every issue (open and closed) carrying the sync label.

        Pull requests the tracker reports as issues are excluded. A missing
        repository yields an empty list.
        """
        pass

    @abstractmethod
    async def create(self, repository: str, item: WorkItem) -> TrackerIssue:
        """Create the tracker issue for a work item.

        The title is ``"<ID>: <title>"`` so the identity extractor can link
        it back; labels always include the sync label.

        Returns:
            The created issue with its server-assigned number and URL.
        """
        pass

    @abstractmethod
    async def set_state(self, repository: str, issue_id: int, state: IssueState) -> None:
        """Open or close an issue."""
        pass

    @abstractmethod
    async def add_comment(self, repository: str, issue_id: int, text: str) -> None:
        """Post a comment on an issue. Markdown is supported."""
        pass

    @abstractmethod
    async def set_body(self, repository: str, issue_id: int, text: str) -> None:
        """Replace an issue body."""
        pass

    @abstractmethod
    async def lock(self, repository: str, issue_id: int) -> None:
        """Lock an issue's conversation."""
        pass

    @abstractmethod
    async def fetch_pull_requests(self, repository: str) -> list[PullRequest]:
        """Retrieve every pull request (open and closed) of a repository."""
        pass

    @abstractmethod
    async def create_branch(self, repository: str, name: str, from_branch: str) -> str:
        """Create a branch pointing at the head of ``from_branch``.

        Returns:
            Web URL of the branch. If the branch already exists its URL is
            returned without error.
        """
        pass

    @abstractmethod
    async def get_branch_url(self, repository: str, name: str) -> str | None:
        """Web URL of a branch, or None if it does not exist."""
        pass

    @abstractmethod
    async def check_permissions(self, repositories: list[str]) -> PermissionReport:
        """Report which repositories the credential can write to."""
        pass
