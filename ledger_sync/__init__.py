"""ledger-sync: two-way reconciliation between a Notion ledger and GitHub issues."""

__version__ = "0.1.0"
