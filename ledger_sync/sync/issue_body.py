"""Tracker issue rendering and the branch-link body patch."""

import re

from ledger_sync.models.domain import ItemKind, WorkItem
from ledger_sync.sync.status import status_labels

DEVELOPMENT_HEADING = "## Development"
FOOTER_MARKER = "---\n*This issue was automatically created"

_HEADING = re.compile(r"^## ", re.MULTILINE)


def render_issue_body(item: WorkItem) -> str:
    """Render the markdown body of a newly created issue."""
    parts: list[str] = []

    if item.description:
        parts.append(f"## Description\n{item.description}\n")

    if item.detail_text:
        heading = "Acceptance Criteria" if item.kind == ItemKind.TASK else "Steps to Reproduce"
        parts.append(f"## {heading}\n{item.detail_text}\n")

    parts.append(
        "## Bug Information\n"
        f"- **Type**: {item.type or 'Unknown'}\n"
        f"- **Module**: {item.module or 'Unknown'}\n"
        f"- **Status**: {item.status or 'Unknown'}\n"
    )

    if item.branch_url:
        parts.append(f"{DEVELOPMENT_HEADING}\n{branch_line(item.branch_url)}\n")

    parts.append(f"{FOOTER_MARKER} from ledger item {item.id}*")
    return "\n".join(parts)


def issue_labels(item: WorkItem, sync_label: str) -> list[str]:
    """Labels for a newly created issue; always includes the sync marker."""
    labels = ["bug", sync_label]
    if item.type:
        labels.append(item.type.lower())
    labels.extend(status_labels(item.status))
    return labels


def branch_name_from_url(url: str) -> str:
    """Recover the branch name from a ``.../tree/<branch>`` URL."""
    if "/tree/" in url:
        return url.split("/tree/", 1)[1]
    return url.rstrip("/").rsplit("/", 1)[-1]


def branch_line(url: str, name: str | None = None) -> str:
    return f"**Branch:** [{name or branch_name_from_url(url)}]({url})"


def insert_branch_link(body: str | None, url: str, name: str | None = None) -> str:
    """Add a branch link to an issue body, idempotently.

    - ``## Development`` section containing the URL: body returned unchanged
    - section without the URL: a ``**Branch:**`` line is appended inside it
    - no section: one is inserted before the footer marker, or appended to
      the end when there is no footer
    """
    body = body or ""
    line = branch_line(url, name)

    start = body.find(DEVELOPMENT_HEADING)
    if start != -1:
        section_start = start + len(DEVELOPMENT_HEADING)
        end = _section_end(body, section_start)
        section = body[start:end]
        if url in section:
            return body
        insert_at = start + len(section.rstrip("\n"))
        return f"{body[:insert_at]}\n{line}{body[insert_at:]}"

    section = f"{DEVELOPMENT_HEADING}\n{line}\n"
    footer = body.find(FOOTER_MARKER)
    if footer != -1:
        head = body[:footer].rstrip("\n")
        prefix = f"{head}\n\n" if head else ""
        return f"{prefix}{section}\n{body[footer:]}"

    if not body.strip():
        return section
    return f"{body.rstrip()}\n\n{section}"


def _section_end(body: str, offset: int) -> int:
    """Index where the section starting before ``offset`` ends."""
    candidates = [len(body)]

    heading = _HEADING.search(body, offset)
    if heading:
        candidates.append(heading.start())

    footer = body.find(FOOTER_MARKER, offset)
    if footer != -1:
        candidates.append(footer)

    return min(candidates)
