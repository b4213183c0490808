"""Tests for ledger_sync/sync/planner.py - operation planning."""

import itertools
import warnings
from datetime import timedelta

import pytest

from conftest import T0, make_issue, make_item, make_pr
from ledger_sync.exceptions import StaleLinkWarning, ValidationError
from ledger_sync.models.domain import IssueState, SyncAction
from ledger_sync.sync.planner import (
    get_most_relevant_pr,
    plan,
    plan_branch_action,
    pr_priority,
    validate_for_sync,
)


def actions(operations):
    return [op.action for op in operations]


class TestValidateForSync:
    """Tests for validate_for_sync."""

    def test_valid_item(self):
        """A complete item passes."""
        validate_for_sync(make_item())

    def test_missing_fields_listed(self):
        """Every missing required field is reported."""
        with pytest.raises(ValidationError) as exc_info:
            validate_for_sync(make_item(module="", type=""))

        assert exc_info.value.item_id == "CBUG-1"
        assert exc_info.value.errors == ["module is missing", "type is missing"]


class TestMostRelevantPullRequest:
    """Tests for get_most_relevant_pr."""

    def test_no_candidates(self):
        """No PRs, no result."""
        assert get_most_relevant_pr(None) is None
        assert get_most_relevant_pr([]) is None

    def test_open_beats_newer_closed(self):
        """An older open PR beats a newer closed one."""
        closed = make_pr("CBUG-3", 1, state=IssueState.CLOSED, updated_at=T0)
        open_ = make_pr("CBUG-3", 2, state=IssueState.OPEN, updated_at=T0 - timedelta(days=1))

        assert get_most_relevant_pr([closed, open_]).pr_id == 2

    def test_merged_beats_closed(self):
        """A merged PR outranks a closed unmerged one."""
        merged = make_pr(number=1, state=IssueState.CLOSED, merged=True, updated_at=T0 - timedelta(days=2))
        closed = make_pr(number=2, state=IssueState.CLOSED, updated_at=T0)

        assert pr_priority(merged) > pr_priority(closed)
        assert get_most_relevant_pr([closed, merged]).pr_id == 1

    def test_most_recent_within_priority(self):
        """Within one priority the most recently updated PR wins."""
        older = make_pr(number=1, updated_at=T0 - timedelta(hours=1))
        newer = make_pr(number=2, updated_at=T0)

        assert get_most_relevant_pr([newer, older]).pr_id == 2

    def test_independent_of_input_order(self):
        """Every permutation of the input selects the same PR."""
        prs = [
            make_pr(number=1, state=IssueState.CLOSED, updated_at=T0),
            make_pr(number=2, state=IssueState.CLOSED, merged=True, updated_at=T0),
            make_pr(number=3, state=IssueState.OPEN, updated_at=T0 - timedelta(hours=2)),
            make_pr(number=4, state=IssueState.OPEN, updated_at=T0 - timedelta(hours=2)),
            make_pr(number=5, state=IssueState.OPEN, updated_at=None),
        ]

        chosen = {get_most_relevant_pr(list(order)).pr_id for order in itertools.permutations(prs)}

        assert chosen == {4}


class TestPlanScenarios:
    """End-to-end planning scenarios."""

    def test_missing_issue_is_created(self, routing):
        """An item with no matching issue yields a single create."""
        item = make_item("CBUG-1", status="Reported", module="App")

        operations = plan([item], [], [], routing)

        assert actions(operations) == [SyncAction.CREATE]
        assert operations[0].source is item
        assert operations[0].target is None

    def test_fixed_item_closes_open_issue(self, routing):
        """A Fixed item newer than its open issue closes the issue."""
        item = make_item("CBUG-2", status="Fixed", last_modified=T0, issue_link="https://github.com/acme/app/issues/2")
        issue = make_issue("CBUG-2", 2, state=IssueState.OPEN, updated_at=T0 - timedelta(days=1))

        operations = plan([item], [issue], [], routing)

        assert actions(operations) == [SyncAction.UPDATE_TRACKER_STATE]
        assert operations[0].desired == "closed"
        assert "closed" in operations[0].reason

    def test_task_pr_status_without_pr_is_cleared(self, routing):
        """A task claiming an open PR with no PR and no branch is cleared."""
        item = make_item("TSK-5", pull_request_status="Open")

        operations = plan([item], [], [], routing)

        assert actions(operations) == [SyncAction.CLEAR_LEDGER_PR]
        assert operations[0].desired == "None"

    def test_branch_without_pr_is_not_cleared(self, routing):
        """A branch with no PR yet is a normal transient state."""
        item = make_item(
            "TSK-5",
            pull_request_status="Open",
            branch_url="https://github.com/acme/app/tree/TSK-5/x",
        )

        assert plan([item], [], [], routing) == []

    def test_open_pr_over_closed_pr(self, routing):
        """The open PR drives the ledger's PR fields."""
        item = make_item("CBUG-3", issue_link="https://github.com/acme/app/issues/3")
        issue = make_issue("CBUG-3", 3)
        closed = make_pr("CBUG-3", 20, state=IssueState.CLOSED, updated_at=T0)
        open_ = make_pr("CBUG-3", 21, updated_at=T0 - timedelta(days=1))

        operations = plan([item], [issue], [closed, open_], routing)

        assert actions(operations) == [SyncAction.UPDATE_LEDGER_PR_STATUS, SyncAction.UPDATE_LEDGER_PR_LINK]
        assert operations[0].desired == "Open"
        assert operations[1].desired == open_.url

    def test_in_sync_pair_yields_nothing(self, routing):
        """A consistent item/issue pair needs no work."""
        item = make_item("CBUG-1", issue_link="https://github.com/acme/app/issues/1")
        issue = make_issue("CBUG-1", 1)

        assert plan([item], [issue], [], routing) == []


class TestStateConflicts:
    """Tests for two-way status disagreements."""

    def test_ledger_newer_wins(self, routing):
        """The ledger wins when it was modified later."""
        item = make_item(status="Fixed", last_modified=T0, issue_link="https://github.com/acme/app/issues/1")
        issue = make_issue(state=IssueState.OPEN, updated_at=T0 - timedelta(minutes=5))

        operations = plan([item], [issue], [], routing)

        assert actions(operations) == [SyncAction.UPDATE_TRACKER_STATE]

    def test_tracker_newer_wins(self, routing):
        """The tracker wins when it was updated later."""
        item = make_item(status="Fixed", last_modified=T0, issue_link="https://github.com/acme/app/issues/1")
        issue = make_issue(state=IssueState.OPEN, updated_at=T0 + timedelta(minutes=5))

        operations = plan([item], [issue], [], routing)

        assert actions(operations) == [SyncAction.UPDATE_LEDGER_STATUS]
        assert operations[0].desired == "Reported"

    def test_closed_issue_marks_item_fixed(self, routing):
        """A newer closed issue moves an active record to Fixed."""
        item = make_item(status="In Progress", last_modified=T0, issue_link="https://github.com/acme/app/issues/1")
        issue = make_issue(state=IssueState.CLOSED, updated_at=T0 + timedelta(hours=1))

        operations = plan([item], [issue], [], routing)

        assert actions(operations) == [SyncAction.UPDATE_LEDGER_STATUS]
        assert operations[0].desired == "Fixed"

    def test_tie_goes_to_ledger(self, routing):
        """Equal timestamps resolve in the ledger's favor."""
        item = make_item(status="Rejected", last_modified=T0, issue_link="https://github.com/acme/app/issues/1")
        issue = make_issue(state=IssueState.OPEN, updated_at=T0)

        assert actions(plan([item], [issue], [], routing)) == [SyncAction.UPDATE_TRACKER_STATE]

    def test_never_both_directions(self, routing):
        """A conflict never emits both state operations."""
        for offset in (-1, 0, 1):
            item = make_item(status="Fixed", last_modified=T0, issue_link="https://github.com/acme/app/issues/1")
            issue = make_issue(state=IssueState.OPEN, updated_at=T0 + timedelta(seconds=offset))

            state_actions = {SyncAction.UPDATE_TRACKER_STATE, SyncAction.UPDATE_LEDGER_STATUS}
            planned = [a for a in actions(plan([item], [issue], [], routing)) if a in state_actions]
            assert len(planned) == 1


class TestLinksAndBody:
    """Tests for link and branch body reconciliation."""

    def test_missing_issue_link(self, routing):
        """An empty issue link is written back."""
        issue = make_issue("CBUG-1", 7)

        operations = plan([make_item("CBUG-1")], [issue], [], routing)

        assert actions(operations) == [SyncAction.UPDATE_LEDGER_LINK]
        assert operations[0].desired == issue.url

    def test_wrong_issue_link(self, routing):
        """A link to another issue is corrected."""
        item = make_item("CBUG-1", issue_link="https://github.com/acme/app/issues/999")

        assert actions(plan([item], [make_issue("CBUG-1", 7)], [], routing)) == [SyncAction.UPDATE_LEDGER_LINK]

    def test_branch_missing_from_body(self, routing):
        """A branch URL absent from the issue body is patched in."""
        branch = "https://github.com/acme/app/tree/CBUG-1/fix"
        item = make_item("CBUG-1", issue_link="https://github.com/acme/app/issues/1", branch_url=branch)

        operations = plan([item], [make_issue("CBUG-1", 1, body="Some body")], [], routing)

        assert actions(operations) == [SyncAction.UPDATE_TRACKER_BODY]
        assert operations[0].desired == branch

    def test_branch_already_in_body(self, routing):
        """A body that mentions the branch is left alone."""
        branch = "https://github.com/acme/app/tree/CBUG-1/fix"
        item = make_item("CBUG-1", issue_link="https://github.com/acme/app/issues/1", branch_url=branch)
        issue = make_issue("CBUG-1", 1, body=f"**Branch:** [CBUG-1/fix]({branch})")

        assert plan([item], [issue], [], routing) == []

    def test_stale_link_warns_and_creates(self, routing):
        """A link to a vanished issue warns and still plans a create."""
        item = make_item("CBUG-4", issue_link="https://github.com/acme/app/issues/4")

        with pytest.warns(StaleLinkWarning) as record:
            operations = plan([item], [], [], routing)

        assert actions(operations) == [SyncAction.CREATE]
        assert record[0].message.item_id == "CBUG-4"


class TestTasksAndOrphans:
    """Tests for task handling and orphan detection."""

    def test_task_never_creates_issue(self, routing):
        """Task-like items get PR sync only."""
        assert plan([make_item("TSK-1")], [], [], routing) == []

    def test_task_issue_is_not_orphaned(self, routing):
        """An issue for an existing task is neither synced nor closed."""
        issue = make_issue("TSK-1", 1, state=IssueState.CLOSED)

        assert plan([make_item("TSK-1", status="Reported")], [issue], [], routing) == []

    def test_orphan_issue_deleted(self, routing):
        """An issue whose item vanished is closed."""
        issue = make_issue("CBUG-99", 99)

        operations = plan([], [issue], [], routing)

        assert actions(operations) == [SyncAction.DELETE]
        assert operations[0].source is None
        assert operations[0].item_id == "CBUG-99"

    def test_closed_unlocked_orphan_still_deleted(self, routing):
        """Closing alone does not finish an orphan; it must be locked too."""
        issue = make_issue("CBUG-99", 99, state=IssueState.CLOSED)

        assert actions(plan([], [issue], [], routing)) == [SyncAction.DELETE]

    def test_closed_locked_orphan_skipped(self, routing):
        """An orphan closed and locked by an earlier pass is done."""
        issue = make_issue("CBUG-99", 99, state=IssueState.CLOSED, locked=True)

        assert plan([], [issue], [], routing) == []

    def test_orphans_follow_items(self, routing):
        """Orphan deletes come after every per-item operation."""
        operations = plan([make_item("CBUG-1")], [make_issue("CBUG-99", 99)], [], routing)

        assert actions(operations) == [SyncAction.CREATE, SyncAction.DELETE]

    def test_invalid_item_skipped(self, routing):
        """An item missing a required field produces no operations."""
        item = make_item("CBUG-1", module="", pull_request_status="Open")

        assert plan([item], [], [], routing) == []

    def test_invalid_item_issue_not_orphaned(self, routing):
        """A skipped item still keeps its issue from being closed."""
        item = make_item("CBUG-1", type="")

        assert plan([item], [make_issue("CBUG-1", 1)], [], routing) == []


class TestPlanDeterminism:
    """Tests for reproducible planning."""

    def test_same_input_same_plan(self, routing):
        """Planning twice yields identical operation sequences."""
        items = [make_item("CBUG-1"), make_item("CBUG-2", status="Fixed"), make_item("TSK-3", pull_request_status="Open")]
        issues = [make_issue("CBUG-2", 2), make_issue("CBUG-50", 50)]

        with warnings.catch_warnings():
            warnings.simplefilter("ignore", StaleLinkWarning)
            first = plan(items, issues, [], routing)
            second = plan(items, issues, [], routing)

        assert [(op.action, op.item_id, op.desired) for op in first] == [
            (op.action, op.item_id, op.desired) for op in second
        ]

    def test_operations_follow_item_order(self, routing):
        """Operations are emitted in ledger scan order."""
        operations = plan([make_item("CBUG-2"), make_item("CBUG-1")], [], [], routing)

        assert [op.item_id for op in operations] == ["CBUG-2", "CBUG-1"]


class TestPlanBranchAction:
    """Tests for plan_branch_action."""

    def test_new_branch_and_link(self, routing):
        """An item with no branch gets a branch and a ledger link."""
        item = make_item("CBUG-1", title="Crash on save")

        operations = plan_branch_action(item, None, routing)

        assert actions(operations) == [SyncAction.CREATE_BRANCH, SyncAction.UPDATE_LEDGER_BRANCH]
        assert operations[0].desired == "CBUG-1/crash-on-save"
        assert operations[1].desired == "https://github.com/acme/app/tree/CBUG-1/crash-on-save"

    def test_existing_branch_already_linked(self, routing):
        """A linked existing branch needs nothing."""
        url = "https://github.com/acme/app/tree/CBUG-1/crash-on-save"
        item = make_item("CBUG-1", title="Crash on save", branch_url=url)

        assert plan_branch_action(item, url, routing) == []

    def test_existing_branch_not_linked(self, routing):
        """An existing branch only needs its link written."""
        url = "https://github.com/acme/app/tree/CBUG-1/crash-on-save"

        operations = plan_branch_action(make_item("CBUG-1", title="Crash on save"), url, routing)

        assert actions(operations) == [SyncAction.UPDATE_LEDGER_BRANCH]
        assert operations[0].desired == url

    def test_unroutable_module(self, routing):
        """Without a repository no link can be predicted."""
        operations = plan_branch_action(make_item("CBUG-1", module="Unknown"), None, routing)

        assert actions(operations) == [SyncAction.CREATE_BRANCH]

    def test_invalid_item(self, routing):
        """Invalid items are skipped."""
        assert plan_branch_action(make_item("CBUG-1", title=""), None, routing) == []
