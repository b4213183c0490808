"""Configuration system for ledger-sync.

Key Components:
    - SyncSettings: Main settings container with YAML and environment loading
    - LedgerConfig: Notion ledger connection settings
    - TrackerConfig: GitHub tracker connection settings
    - SyncConfig: Module mapping and scheduling
    - RoutingConfig: Immutable routing value handed to the sync core

Example:
    >>> from ledger_sync.config.settings import SyncSettings
    >>> settings = SyncSettings.from_yaml("ledger-sync.yaml")
    >>> routing = settings.routing()
"""
