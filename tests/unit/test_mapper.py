"""Tests for ledger_sync/sync/mapper.py - snapshot indexing."""

from conftest import make_issue, make_item, make_pr
from ledger_sync.sync.mapper import build_indices


class TestBuildIndices:
    """Tests for build_indices."""

    def test_indexes_by_canonical_id(self):
        """Items, issues and PRs are keyed by the same id."""
        index = build_indices(
            [make_item("CBUG-1"), make_item("TSK-2")],
            [make_issue("CBUG-1", 1)],
            [make_pr("TSK-2", 5)],
        )

        assert list(index.item_by_id) == ["CBUG-1", "TSK-2"]
        assert index.issue_by_id["CBUG-1"].issue_id == 1
        assert [pr.pr_id for pr in index.prs_by_id["TSK-2"]] == [5]

    def test_unlinked_issues_and_prs_ignored(self):
        """Issues and PRs without an extractable id are dropped."""
        index = build_indices(
            [],
            [make_issue(title="Random issue")],
            [make_pr(branch_name="main")],
        )

        assert index.issue_by_id == {}
        assert index.prs_by_id == {}

    def test_item_without_id_skipped(self):
        """Items without an id cannot be keyed."""
        index = build_indices([make_item(""), make_item("CBUG-2")], [], [])
        assert list(index.item_by_id) == ["CBUG-2"]

    def test_duplicate_item_last_wins(self):
        """The last scanned duplicate item wins."""
        index = build_indices(
            [make_item("CBUG-1", storage_id="first"), make_item("CBUG-1", storage_id="second")],
            [],
            [],
        )
        assert index.item_by_id["CBUG-1"].storage_id == "second"

    def test_duplicate_issue_last_wins(self):
        """The last scanned duplicate issue wins."""
        index = build_indices([], [make_issue("CBUG-1", 1), make_issue("CBUG-1", 2)], [])
        assert index.issue_by_id["CBUG-1"].issue_id == 2

    def test_legacy_titles_are_linked(self):
        """Legacy '[type]/<ID> title' issues are indexed."""
        index = build_indices([], [make_issue(title="[UI]/CBUG-9 Old title")], [])
        assert "CBUG-9" in index.issue_by_id

    def test_multiple_prs_per_item(self):
        """Every PR for an item is kept, in scan order."""
        index = build_indices([], [], [make_pr("TSK-1", 1), make_pr("TSK-1", 2)])
        assert [pr.pr_id for pr in index.prs_by_id["TSK-1"]] == [1, 2]
