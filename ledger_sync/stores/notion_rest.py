"""Notion ledger store implementation using direct REST API calls.

This is the only module that knows Notion's property bag layout. Pages from
the bug and task databases are parsed into WorkItems here; nothing above the
store layer sees a raw property name.
"""

import asyncio
from collections.abc import Iterable
from datetime import datetime
from typing import Any

import httpx
import structlog

from ledger_sync.exceptions import ExternalServiceError
from ledger_sync.models.domain import ItemKind, WorkItem
from ledger_sync.stores.base import LEDGER_PROPERTY_KEYS, LedgerStore
from ledger_sync.sync.identity import DEFAULT_TASK_PREFIXES, is_task_id
from ledger_sync.utils.connection_pool import HTTPConnectionPool, get_pool
from ledger_sync.utils.retry import async_retry

log = structlog.get_logger(__name__)

PAGE_SIZE = 100

# Candidate property names, first present wins
TITLE_PROPERTIES = {
    ItemKind.BUG: ("Bug Title", "Title", "Name"),
    ItemKind.TASK: ("Task Title", "Title", "Name"),
}
DETAIL_PROPERTIES = {
    ItemKind.BUG: ("Steps to Reproduce",),
    ItemKind.TASK: ("Acceptance Criteria", "Requirements"),
}

# WorkItem field -> (Notion property, property type) for writes
WRITABLE_PROPERTIES: dict[str, tuple[str, str]] = {
    "status": ("Status", "status"),
    "issue_link": ("Issue Link", "url"),
    "branch_url": ("Branch Link", "url"),
    "pull_request_status": ("Pull Request Status", "status"),
    "pull_request_link": ("Pull Request Link", "url"),
}


def plain_text(prop: dict[str, Any] | None) -> str:
    """Concatenated plain text of a ``title`` or ``rich_text`` property."""
    if not prop:
        return ""
    kind = prop.get("type")
    if kind not in ("title", "rich_text"):
        return ""
    return "".join(part.get("plain_text", "") for part in prop.get(kind) or [])


def select_name(prop: dict[str, Any] | None) -> str:
    if not prop or prop.get("type") != "select" or not prop.get("select"):
        return ""
    return prop["select"].get("name", "")


def status_name(prop: dict[str, Any] | None) -> str:
    if not prop or prop.get("type") != "status" or not prop.get("status"):
        return ""
    return prop["status"].get("name", "")


def url_value(prop: dict[str, Any] | None) -> str:
    if not prop or prop.get("type") != "url":
        return ""
    return prop.get("url") or ""


def unique_id(prop: dict[str, Any] | None) -> str:
    """Render a ``unique_id`` property as ``<PREFIX>-<n>``."""
    if not prop or prop.get("type") != "unique_id" or not prop.get("unique_id"):
        return ""
    value = prop["unique_id"]
    if value.get("number") is None:
        return ""
    prefix = value.get("prefix")
    return f"{prefix}-{value['number']}" if prefix else str(value["number"])


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        log.warning("unparseable_timestamp", value=value)
        return None


_FLATTENERS = {
    "title": plain_text,
    "rich_text": plain_text,
    "select": select_name,
    "status": status_name,
    "url": url_value,
    "unique_id": unique_id,
}


def flatten_properties(properties: dict[str, Any]) -> dict[str, str]:
    """Reduce a property bag to ``name -> display string``.

    Used for webhook payloads that carry a whole page rather than flat
    values. Property types without a text rendering are dropped.
    """
    flat: dict[str, str] = {}
    for name, prop in properties.items():
        if not isinstance(prop, dict):
            continue
        flattener = _FLATTENERS.get(prop.get("type", ""))
        if flattener is not None:
            flat[name] = flattener(prop)
    return flat


def _first_present(properties: dict[str, Any], names: Iterable[str]) -> dict[str, Any] | None:
    for name in names:
        if name in properties:
            return properties[name]
    return None


def parse_page(page: dict[str, Any], kind: ItemKind) -> WorkItem:
    """Convert a Notion page from the bug or task database into a WorkItem."""
    properties = page.get("properties") or {}

    return WorkItem(
        id=unique_id(properties.get("ID")),
        title=plain_text(_first_present(properties, TITLE_PROPERTIES[kind])),
        status=status_name(properties.get("Status")),
        type=select_name(properties.get("Type")),
        module=select_name(properties.get("Module")),
        description=plain_text(properties.get("Description")),
        detail_text=plain_text(_first_present(properties, DETAIL_PROPERTIES[kind])),
        issue_link=url_value(properties.get("Issue Link")),
        branch_url=url_value(properties.get("Branch Link")),
        pull_request_status=status_name(properties.get("Pull Request Status")) or "None",
        pull_request_link=url_value(properties.get("Pull Request Link")),
        last_modified=parse_timestamp(page.get("last_edited_time")),
        storage_id=page.get("id", ""),
        kind=kind,
        url=page.get("url", ""),
    )


def build_property_payload(changes: dict[str, Any]) -> dict[str, Any]:
    """Translate WorkItem field changes into a Notion ``properties`` object.

    Raises:
        ValueError: If a key is not a writable ledger property
    """
    unknown = set(changes) - LEDGER_PROPERTY_KEYS
    if unknown:
        raise ValueError(f"Unknown ledger properties: {', '.join(sorted(unknown))}")

    payload: dict[str, Any] = {}
    for key, value in changes.items():
        name, kind = WRITABLE_PROPERTIES[key]
        if kind == "url":
            # Notion clears a URL property with null, not ""
            payload[name] = {"url": value or None}
        else:
            payload[name] = {"status": {"name": value}}
    return payload


class NotionLedgerStore(LedgerStore):
    """Ledger backed by a Notion bug database and optional task database."""

    def __init__(
        self,
        token: str,
        bug_database_id: str,
        task_database_id: str | None = None,
        base_url: str = "https://api.notion.com/v1",
        api_version: str = "2022-06-28",
        task_prefixes: Iterable[str] = DEFAULT_TASK_PREFIXES,
        timeout: float = 30.0,
    ):
        """Initialize Notion ledger store.

        Args:
            token: Notion integration token
            bug_database_id: Database holding bug records
            task_database_id: Database holding task records, if any
            base_url: Notion API base URL
            api_version: Value of the Notion-Version header
            task_prefixes: Id prefixes routed to the task database on lookup
            timeout: HTTP timeout in seconds
        """
        self.token = token.strip() if token else token
        self.bug_database_id = bug_database_id
        self.task_database_id = task_database_id
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version
        self.task_prefixes = tuple(task_prefixes)
        self.timeout = timeout
        self._pool: HTTPConnectionPool | None = None

    async def connect(self) -> None:
        """Attach to the shared connection pool for the Notion API."""
        self._pool = await get_pool(
            name=f"notion-{self.base_url}",
            base_url=self.base_url,
            timeout=self.timeout,
            headers={
                "Authorization": f"Bearer {self.token}",
                "Notion-Version": self.api_version,
                "Content-Type": "application/json",
            },
        )
        log.info("notion_connected", base_url=self.base_url, api_version=self.api_version)

    async def disconnect(self) -> None:
        """Clear pool reference (pool manager handles actual cleanup)."""
        self._pool = None

    async def __aenter__(self) -> "NotionLedgerStore":
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.disconnect()

    def _require_pool(self) -> HTTPConnectionPool:
        if self._pool is None:
            raise ConnectionError("Notion store is not connected")
        return self._pool

    @staticmethod
    def _check_response(response: httpx.Response, action: str) -> dict[str, Any]:
        if response.status_code >= 400:
            raise ExternalServiceError(
                f"Notion {action} failed",
                status_code=response.status_code,
                response_text=response.text,
            )
        return response.json()

    @async_retry(max_attempts=3, backoff_factor=2.0)
    async def _query_page(self, database_id: str, body: dict[str, Any]) -> dict[str, Any]:
        response = await self._require_pool().post(f"/databases/{database_id}/query", json=body)
        return self._check_response(response, "database query")

    async def _query_all(self, database_id: str, filter_: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """Run a database query, following pagination cursors to the end."""
        pages: list[dict[str, Any]] = []
        body: dict[str, Any] = {
            "page_size": PAGE_SIZE,
            "sorts": [{"property": "ID", "direction": "ascending"}],
        }
        if filter_:
            body["filter"] = filter_

        while True:
            data = await self._query_page(database_id, body)
            pages.extend(data.get("results", []))
            if not data.get("has_more") or not data.get("next_cursor"):
                return pages
            body["start_cursor"] = data["next_cursor"]

    async def fetch_bugs(self) -> list[WorkItem]:
        log.info("fetching_ledger_items", kind=ItemKind.BUG.value)
        pages = await self._query_all(self.bug_database_id)
        items = [parse_page(page, ItemKind.BUG) for page in pages]
        log.info("ledger_items_fetched", kind=ItemKind.BUG.value, count=len(items))
        return items

    async def fetch_tasks(self) -> list[WorkItem]:
        if not self.task_database_id:
            log.debug("task_database_not_configured")
            return []
        log.info("fetching_ledger_items", kind=ItemKind.TASK.value)
        pages = await self._query_all(self.task_database_id)
        items = [parse_page(page, ItemKind.TASK) for page in pages]
        log.info("ledger_items_fetched", kind=ItemKind.TASK.value, count=len(items))
        return items

    async def fetch_all(self) -> list[WorkItem]:
        """Fetch bugs and tasks concurrently; bugs first in the result."""
        bugs, tasks = await asyncio.gather(self.fetch_bugs(), self.fetch_tasks())
        return [*bugs, *tasks]

    async def find_by_id(self, item_id: str) -> WorkItem | None:
        """Look up a record by canonical id via a ``unique_id`` filter."""
        prefix, _, number = item_id.rpartition("-")
        if not prefix or not number.isdigit():
            log.warning("invalid_item_id", item_id=item_id)
            return None

        if is_task_id(item_id, self.task_prefixes):
            kind, database_id = ItemKind.TASK, self.task_database_id
        else:
            kind, database_id = ItemKind.BUG, self.bug_database_id
        if not database_id:
            log.warning("task_database_not_configured", item_id=item_id)
            return None

        pages = await self._query_all(database_id, {"property": "ID", "unique_id": {"equals": int(number)}})
        for page in pages:
            item = parse_page(page, kind)
            if item.id == item_id:
                return item

        log.info("ledger_item_not_found", item_id=item_id)
        return None

    async def update_status(self, storage_id: str, status: str) -> None:
        await self.update_properties(storage_id, status=status)

    async def update_link(self, storage_id: str, url: str) -> None:
        await self.update_properties(storage_id, issue_link=url)

    @async_retry(max_attempts=3, backoff_factor=2.0)
    async def update_properties(self, storage_id: str, **changes: Any) -> None:
        """Write one or more properties of a page in a single PATCH."""
        properties = build_property_payload(changes)
        if not properties:
            return

        log.info("update_ledger_properties", storage_id=storage_id, properties=sorted(changes))
        response = await self._require_pool().patch(f"/pages/{storage_id}", json={"properties": properties})
        self._check_response(response, "page update")
