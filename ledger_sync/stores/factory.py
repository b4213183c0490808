"""Build store adapters from settings."""

from ledger_sync.config.settings import SyncSettings
from ledger_sync.exceptions import ConfigurationError
from ledger_sync.stores.github_rest import GitHubTrackerStore
from ledger_sync.stores.notion_rest import NotionLedgerStore


def create_ledger_store(settings: SyncSettings) -> NotionLedgerStore:
    ledger = settings.ledger
    return NotionLedgerStore(
        token=ledger.api_token.get_secret_value(),
        bug_database_id=ledger.bug_database_id,
        task_database_id=ledger.task_database_id,
        base_url=ledger.base_url,
        api_version=ledger.api_version,
        task_prefixes=settings.sync.task_prefixes,
        timeout=ledger.timeout,
    )


def create_tracker_store(settings: SyncSettings) -> GitHubTrackerStore:
    """Create the tracker adapter for the configured provider.

    Raises:
        ConfigurationError: If the provider type is not supported
    """
    tracker = settings.tracker
    if tracker.provider_type != "github":
        raise ConfigurationError(f"Unsupported tracker provider: {tracker.provider_type}")

    return GitHubTrackerStore(
        token=tracker.api_token.get_secret_value(),
        base_url=tracker.base_url,
        web_url=tracker.web_url,
        sync_label=tracker.sync_label,
    )
