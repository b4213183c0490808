"""Pure, table-driven status translation between the two stores."""

from ledger_sync.models.domain import IssueState, LedgerStatus, PullRequest, PullRequestStatus

LEDGER_TO_TRACKER_STATE: dict[str, IssueState] = {
    LedgerStatus.REPORTED.value: IssueState.OPEN,
    LedgerStatus.BLOCKED.value: IssueState.OPEN,
    LedgerStatus.IN_PROGRESS.value: IssueState.OPEN,
    LedgerStatus.IN_REVIEW.value: IssueState.OPEN,
    LedgerStatus.FIXED.value: IssueState.CLOSED,
    LedgerStatus.REJECTED.value: IssueState.CLOSED,
}

CLOSED_STATUSES = frozenset({LedgerStatus.FIXED.value, LedgerStatus.REJECTED.value})

STATUS_LABELS: dict[str, str] = {
    LedgerStatus.BLOCKED.value: "blocked",
    LedgerStatus.IN_PROGRESS.value: "in-progress",
    LedgerStatus.IN_REVIEW.value: "in-review",
}


def ledger_status_to_tracker_state(status: str | None) -> IssueState:
    """Map a ledger status to the tracker state it implies.

    Unknown statuses map to open: unrecognized input never closes an issue.
    """
    return LEDGER_TO_TRACKER_STATE.get(status or "", IssueState.OPEN)


def tracker_state_to_ledger_status(state: str, current_status: str) -> str:
    """Map a tracker state to the ledger status it implies.

    The current status is returned unchanged whenever it already agrees
    with the tracker, so repeated passes never flap the ledger history.
    """
    if state == IssueState.CLOSED:
        if current_status in CLOSED_STATUSES:
            return current_status
        return LedgerStatus.FIXED.value

    # Reopened in the tracker after being closed in the ledger
    if current_status in CLOSED_STATUSES:
        return LedgerStatus.REPORTED.value

    return current_status


def pr_state_to_pull_request_status(pr: PullRequest) -> str:
    """Derive the ledger pull-request status for a pull request."""
    if pr.merged:
        return PullRequestStatus.MERGED.value
    if pr.state == IssueState.OPEN:
        return PullRequestStatus.OPEN.value
    return PullRequestStatus.CLOSED.value


def status_labels(status: str | None) -> list[str]:
    """Extra tracker labels applied at issue creation for a status."""
    label = STATUS_LABELS.get(status or "")
    return [label] if label else []
