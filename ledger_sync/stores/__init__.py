"""Record store adapters.

Key Components:
    - LedgerStore / TrackerStore: Abstract interfaces used by the sync core
    - NotionLedgerStore: Notion REST implementation (httpx)
    - GitHubTrackerStore: GitHub implementation (PyGithub)
"""
