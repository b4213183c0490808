"""Canonical id extraction and the naming conventions built on it.

Tracker issues and branches carry a work item's canonical id in free text.
This module is the single place that knows those formats:

    Issue titles:   "CBUG-7: Crash on save"       (current format)
                    "[UI]/CBUG-7 Crash on save"   (legacy format)
    Branch names:   "CBUG-7/crash-on-save"

A bare "CBUG-7-crash" is deliberately not recognized; too many ordinary
titles contain hyphenated tokens.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ledger_sync.models.domain import WorkItem

ID_PATTERN = r"[A-Z]+-\d+"

_TITLE_PATTERNS = (
    re.compile(rf"^(?P<id>{ID_PATTERN}):\s+.+$"),
    re.compile(rf"^\[[^\]]+\]/(?P<id>{ID_PATTERN})\s+.+$"),
)
_BRANCH_PATTERN = re.compile(rf"^(?P<id>{ID_PATTERN})/")
_ID_ONLY = re.compile(rf"^(?P<prefix>[A-Z]+)-\d+$")

DEFAULT_TASK_PREFIXES = ("TSK",)
BRANCH_SLUG_LENGTH = 40


def extract_id(text: str | None) -> str | None:
    """Extract a canonical work item id from a tracker issue title.

    Args:
        text: Issue title

    Returns:
        The id (e.g. "CBUG-7"), or None when no known format matches.
        Callers treat None as "unrelated issue", never as an error.

    Example:
        >>> extract_id("CBUG-7: Crash on save")
        'CBUG-7'
        >>> extract_id("[UI]/TSK-21 Add dark mode")
        'TSK-21'
        >>> extract_id("CBUG-7-crash-on-save") is None
        True
    """
    if not text:
        return None

    text = text.strip()
    for pattern in _TITLE_PATTERNS:
        match = pattern.match(text)
        if match:
            return match.group("id")
    return None


def extract_id_from_branch(branch_name: str | None) -> str | None:
    """Extract the id prefix from a ``<ID>/<slug>`` branch name."""
    if not branch_name:
        return None
    match = _BRANCH_PATTERN.match(branch_name)
    return match.group("id") if match else None


def is_task_id(item_id: str, task_prefixes: Iterable[str] = DEFAULT_TASK_PREFIXES) -> bool:
    """Check whether an id belongs to a task rather than a bug."""
    match = _ID_ONLY.match(item_id or "")
    if not match:
        return False
    return match.group("prefix") in set(task_prefixes)


def slugify(text: str) -> str:
    """Convert text to a branch-safe slug.

    Example:
        >>> slugify("Fix: Login fails (SSO)!")
        'fix-login-fails-sso'
    """
    text = text.lower()
    text = re.sub(r"[^a-z0-9]+", "-", text)
    return text.strip("-")


def branch_name_for(item_id: str, title: str) -> str:
    """Build the branch name for a work item.

    Example:
        >>> branch_name_for("CBUG-3", "Crash when saving")
        'CBUG-3/crash-when-saving'
    """
    slug = slugify(title)[:BRANCH_SLUG_LENGTH].rstrip("-")
    return f"{item_id}/{slug}" if slug else item_id


def issue_title_for(item: WorkItem) -> str:
    """Render the tracker issue title for a work item."""
    return f"{item.id}: {item.title}"
