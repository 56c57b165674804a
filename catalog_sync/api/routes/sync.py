"""
Sync Routes

POST /api/trigger-sync                 start a run (optional {force, filterName})
GET  /api/sync-runs/{run_id}           status + summary of an in-process run
POST /api/sync-runs/{run_id}/cancel    stop a run's pending items
"""
import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from catalog_sync.api.deps import get_run_registry, get_sync_deps, get_task_sink
from catalog_sync.core.config import settings
from catalog_sync.core.exceptions import AuthError, ConfigError, QueueUnavailable, SyncBaseError
from catalog_sync.core.rate_limit import trigger_limit
from catalog_sync.jobs.sync_images import SyncDependencies, dispatch_sync
from catalog_sync.schemas import TriggerSyncRequest
from catalog_sync.services.run_registry import RunRegistry

logger = logging.getLogger(__name__)

router = APIRouter()


def fatal_hint(error: SyncBaseError) -> Optional[str]:
    """Operator hint for errors that stop a run before anything is dispatched."""
    if isinstance(error, ConfigError):
        return "Set SQUARE_ACCESS_TOKEN in the environment (or .env) and restart."
    if isinstance(error, AuthError):
        return f"Check that SQUARE_ACCESS_TOKEN is valid for the {settings.SQUARE_ENVIRONMENT} environment."
    if isinstance(error, QueueUnavailable):
        return "Check ARQ_REDIS_URL, or unset it to run syncs in-process."
    return None


def fatal_response(error: SyncBaseError) -> JSONResponse:
    content = {"ok": False, "error": error.message}
    hint = fatal_hint(error)
    if hint:
        content["hint"] = hint
    return JSONResponse(status_code=500, content=content)


@router.post("/trigger-sync")
@trigger_limit()
async def trigger_sync(
    request: Request,
    payload: Optional[TriggerSyncRequest] = Body(default=None),
    deps: SyncDependencies = Depends(get_sync_deps),
    registry: RunRegistry = Depends(get_run_registry),
):
    """
    Manually trigger the BGG -> Square image sync.

    Returns once every item is dispatched; the work itself continues in the
    background (in-process pool or ARQ workers).
    """
    sync_request = (payload or TriggerSyncRequest()).to_request()

    try:
        sink = await get_task_sink(deps, registry)
        summary = await dispatch_sync(deps, sync_request, sink)
    except SyncBaseError as e:
        logger.error(f"[SYNC] Failed to trigger sync: {e.kind}: {e.message}")
        return fatal_response(e)

    return {
        "ok": True,
        "message": (
            f"Sync run {summary.run_id} started: {summary.dispatched} items "
            f"in {summary.batches} batches ({summary.mode})."
        ),
        "dispatch": summary.to_dict(),
    }


@router.get("/sync-runs/{run_id}")
async def get_sync_run(run_id: str, registry: RunRegistry = Depends(get_run_registry)):
    record = registry.get(run_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Unknown run {run_id}")
    return record.to_dict()


@router.post("/sync-runs/{run_id}/cancel")
async def cancel_sync_run(run_id: str, registry: RunRegistry = Depends(get_run_registry)):
    record = registry.get(run_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Unknown run {run_id}")
    if not registry.cancel(run_id):
        raise HTTPException(status_code=409, detail=f"Run {run_id} is not running in this process")
    return {"ok": True, "run_id": run_id, "status": record.status}
