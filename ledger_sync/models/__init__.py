"""Domain models shared by the stores and the sync core.

Key Models:
    - WorkItem: One ledger record (bug or task)
    - TrackerIssue: A synced tracker issue
    - PullRequest: A tracker pull request
    - SyncOperation: One planned mutation
    - SyncResult: Aggregated execution outcome
"""
