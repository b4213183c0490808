"""Reconciliation engine.

Leaf-first:
    - identity: canonical id extraction from titles and branch names
    - mapper: snapshot indexing
    - status: ledger status / tracker state translation
    - resolver: last-writer-wins conflict resolution
    - planner: pure operation planning
    - issue_body: issue rendering and the branch-link body patch
    - executor: sequential, failure-isolated operation execution
    - engine: fetch -> plan -> execute, plus single-record branch actions

Submodules are imported explicitly (``from ledger_sync.sync.planner import
plan``); this package does not re-export them so that the domain models can
depend on ``identity`` without an import cycle.
"""
