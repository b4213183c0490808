"""Custom exception hierarchy for the ledger-sync reconciliation engine.

Exception Hierarchy:
    LedgerSyncError (base)
    ├── ConfigurationError
    ├── ValidationError
    ├── UnknownModuleError
    ├── TrackerPermissionError
    ├── ExternalServiceError
    ├── SnapshotFetchError
    └── OperationError

    StaleLinkWarning (UserWarning)

Only ConfigurationError and SnapshotFetchError are expected to escape a
reconciliation pass. Everything else is recovered locally: invalid work items
are skipped, failing operations are recorded in the SyncResult, and permission
problems are downgraded to warnings.

Example Usage:
    >>> from ledger_sync.exceptions import UnknownModuleError
    >>> try:
    ...     repository = routing.repository_for(item.module)
    ... except UnknownModuleError as e:
    ...     log.error("unroutable_item", module=e.module)
"""

from typing import Any


class LedgerSyncError(Exception):
    """Base exception for all ledger-sync errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ConfigurationError(LedgerSyncError):
    """Configuration-related errors.

    Examples:
        - Configuration file not found
        - Invalid YAML syntax
        - Module mapping that is not valid JSON
        - Missing required environment variables
    """

    pass


class ValidationError(LedgerSyncError):
    """A work item is missing fields required for syncing.

    Raised by the planner's validation step and caught right there: the item
    is skipped with a warning and the pass carries on.

    Attributes:
        item_id: Canonical id of the offending item (may be empty)
        errors: One entry per missing field
    """

    def __init__(self, message: str, item_id: str | None = None, errors: list[str] | None = None) -> None:
        self.item_id = item_id
        self.errors = errors or []

        full_message = message
        if self.errors:
            full_message = f"{message}: {', '.join(self.errors)}"

        super().__init__(full_message)
        self.message = message


class UnknownModuleError(LedgerSyncError):
    """A work item's module has no repository mapping.

    Attributes:
        module: The unmapped module name
    """

    def __init__(self, module: str) -> None:
        self.module = module
        super().__init__(f"No repository mapping found for module: {module}")


class TrackerPermissionError(LedgerSyncError):
    """The tracker credential lacks write access.

    Detected during the pre-flight check of a pass. Never fatal: the engine
    logs it and still attempts every operation.

    Attributes:
        repositories: Repositories the credential cannot write to
    """

    def __init__(self, message: str, repositories: list[str] | None = None) -> None:
        self.repositories = repositories or []

        full_message = message
        if self.repositories:
            full_message = f"{message} (repositories: {', '.join(self.repositories)})"

        super().__init__(full_message)
        self.message = message


class ExternalServiceError(LedgerSyncError):
    """Communication with the ledger or tracker API failed.

    Examples:
        - HTTP request failed
        - API returned an error payload
        - Rate limiting
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_text: str | None = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.response_text = response_text

        full_message = message
        if status_code:
            full_message = f"{message} (HTTP {status_code})"

        super().__init__(full_message)


class SnapshotFetchError(LedgerSyncError):
    """Fetching one of the two snapshots failed.

    This is the only error that aborts a reconciliation pass.

    Attributes:
        source: Which side failed ("ledger" or "tracker")
    """

    def __init__(self, message: str, source: str | None = None) -> None:
        self.source = source
        full_message = f"{message} ({source})" if source else message
        super().__init__(full_message)
        self.message = message


class OperationError(LedgerSyncError):
    """A single sync operation failed during execution.

    Always caught at the per-operation boundary of the executor.

    Attributes:
        action: The SyncAction value of the failed operation
        item_id: Canonical id the operation concerned, if any
        cause: The underlying exception
    """

    def __init__(
        self,
        message: str,
        action: str | None = None,
        item_id: str | None = None,
        cause: Any = None,
    ) -> None:
        self.action = action
        self.item_id = item_id
        self.cause = cause

        parts = [message]
        if action:
            parts.append(f"action: {action}")
        if item_id:
            parts.append(f"item: {item_id}")

        full_message = message if len(parts) == 1 else f"{message} ({', '.join(parts[1:])})"
        super().__init__(full_message)
        self.message = message


class StaleLinkWarning(UserWarning):
    """A work item links to a tracker issue that no longer resolves.

    Issued alongside the ``create`` operation the planner still emits for
    the item.
    """

    def __init__(self, item_id: str, link: str) -> None:
        self.item_id = item_id
        self.link = link
        super().__init__(f"Work item {item_id} has issue link {link} but no matching tracker issue")
