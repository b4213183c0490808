"""Webhook server for single-record branch actions triggered from the ledger."""

from datetime import UTC, datetime
from typing import Any

import structlog
from fastapi import BackgroundTasks, FastAPI, HTTPException, Request

from ledger_sync import __version__
from ledger_sync.exceptions import LedgerSyncError
from ledger_sync.models.domain import BranchRequest
from ledger_sync.stores.notion_rest import flatten_properties
from ledger_sync.sync.engine import SyncEngine

log = structlog.get_logger(__name__)

app = FastAPI(title="ledger-sync Webhook Server", version=__version__)

# Global state
engine: SyncEngine | None = None

TITLE_KEYS = ("Title", "title", "Name", "name", "Bug Title", "Task Title")
ID_KEYS = ("ID", "id", "Bug ID", "Task ID")
MODULE_KEYS = ("Module", "module", "Component")
TYPE_KEYS = ("Type", "type")


def set_engine(sync_engine: SyncEngine | None) -> None:
    """Install the engine that background branch requests run against."""
    global engine
    engine = sync_engine


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _first_value(payload: dict[str, Any], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str | int) and str(value).strip():
            return str(value).strip()
    return None


def parse_branch_request(payload: dict[str, Any]) -> BranchRequest | None:
    """Parse a ledger button payload into a branch request.

    Accepts flat ``{"Title": ..., "ID": ...}`` bodies as well as a full page
    under ``data.properties``. A request needs a title and an id; anything
    else is not a branch action.
    """
    data = payload.get("data")
    if isinstance(data, dict) and isinstance(data.get("properties"), dict):
        payload = flatten_properties(data["properties"])

    title = _first_value(payload, TITLE_KEYS)
    item_id = _first_value(payload, ID_KEYS)
    if not title or not item_id:
        return None

    return BranchRequest(
        item_id=item_id,
        title=title,
        module=_first_value(payload, MODULE_KEYS),
        type=_first_value(payload, TYPE_KEYS),
    )


async def process_branch_request(request: BranchRequest) -> None:
    """Run a branch request; failures are logged, never raised."""
    if engine is None:
        log.error("branch_request_dropped", item_id=request.item_id, reason="engine not configured")
        return

    try:
        result = await engine.handle_branch_request(request)
    except LedgerSyncError as e:
        log.error("branch_request_failed", item_id=request.item_id, error=e.message, exc_info=True)
        return
    except Exception as e:
        log.error("branch_request_unexpected", item_id=request.item_id, error=str(e), exc_info=True)
        return

    if result is not None:
        log.info("branch_request_processed", item_id=request.item_id, **result.summary())


@app.post("/webhook/ledger")
async def ledger_webhook(request: Request, background_tasks: BackgroundTasks) -> dict[str, Any]:
    """Handle a ledger button webhook.

    Responds immediately; the branch work runs as a background task.
    """
    try:
        payload = await request.json()
    except ValueError:
        payload = None

    if not payload or not isinstance(payload, dict):
        log.warning("webhook_empty_payload")
        raise HTTPException(status_code=400, detail="Webhook body is required")

    branch_request = parse_branch_request(payload)
    if branch_request is None:
        log.info("webhook_ignored", keys=sorted(payload))
        return {"status": "ignored", "timestamp": _now()}

    if engine is None:
        raise HTTPException(status_code=503, detail="Sync engine is not configured")

    log.info("webhook_received", item_id=branch_request.item_id)
    background_tasks.add_task(process_branch_request, branch_request)
    return {"status": "received", "item_id": branch_request.item_id, "timestamp": _now()}


@app.post("/webhook/test")
async def test_webhook(request: Request) -> dict[str, Any]:
    """Echo a payload back, for wiring up the ledger automation."""
    try:
        payload = await request.json()
    except ValueError:
        payload = None

    log.info("test_webhook_received", payload=payload)
    return {"status": "received", "received_data": payload, "timestamp": _now()}


@app.get("/health")
async def health_check() -> dict[str, Any]:
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "ledger-sync-webhook",
        "engine": engine is not None,
        "version": __version__,
        "timestamp": _now(),
    }


@app.get("/")
async def root() -> dict[str, Any]:
    return {
        "service": "ledger-sync-webhook",
        "status": "running",
        "endpoints": {
            "webhook": "POST /webhook/ledger",
            "health": "GET /health",
            "test": "POST /webhook/test",
        },
        "timestamp": _now(),
    }
