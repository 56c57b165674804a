"""
Job Webhook Routes

POST /api/jobs/run - entry point for an external job platform.

Body: {"unit": "dispatch", "force": bool, "filterName": str}
   or {"unit": "item", "runId": str, "force": bool, "item": {...CatalogItem}}

When JOB_SIGNING_KEY is set the raw body must be signed:
    X-Job-Signature: hex(HMAC-SHA256(JOB_SIGNING_KEY, body))
(a "sha256=" prefix is accepted).
"""
import hashlib
import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError

from catalog_sync.api.deps import get_run_registry, get_sync_deps, get_task_sink
from catalog_sync.api.routes.sync import fatal_response
from catalog_sync.core.config import settings
from catalog_sync.core.exceptions import SyncBaseError
from catalog_sync.core.utils import new_run_id
from catalog_sync.jobs.sync_images import SyncDependencies, SyncItemWorker, dispatch_sync
from catalog_sync.models import CatalogItem, SyncRequest
from catalog_sync.schemas import JobRunRequest
from catalog_sync.services.run_registry import RunRegistry

logger = logging.getLogger(__name__)

router = APIRouter()

SIGNATURE_HEADER = "X-Job-Signature"


def sign_body(body: bytes, key: str) -> str:
    return hmac.new(key.encode(), body, hashlib.sha256).hexdigest()


def verify_job_signature(body: bytes, signature: Optional[str]) -> bool:
    if not settings.JOB_SIGNING_KEY:
        logger.warning("[HTTP] JOB_SIGNING_KEY not set, skipping signature verification")
        return True
    if not signature:
        return False
    if signature.startswith("sha256="):
        signature = signature[len("sha256="):]
    return hmac.compare_digest(signature, sign_body(body, settings.JOB_SIGNING_KEY))


@router.post("/jobs/run")
async def run_job_unit(
    request: Request,
    deps: SyncDependencies = Depends(get_sync_deps),
    registry: RunRegistry = Depends(get_run_registry),
):
    body = await request.body()
    if not verify_job_signature(body, request.headers.get(SIGNATURE_HEADER)):
        logger.warning("[HTTP] Rejected job webhook with invalid signature")
        raise HTTPException(status_code=401, detail="Invalid job signature")

    try:
        job = JobRunRequest.model_validate_json(body)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False))

    if job.unit == "dispatch":
        try:
            sink = await get_task_sink(deps, registry)
            summary = await dispatch_sync(deps, SyncRequest(force=job.force, filter_name=job.filter_name), sink)
        except SyncBaseError as e:
            logger.error(f"[SYNC] Dispatch unit failed: {e.kind}: {e.message}")
            return fatal_response(e)
        return {"ok": True, "dispatch": summary.to_dict()}

    if not job.item:
        raise HTTPException(status_code=400, detail="unit=item requires an item")
    try:
        item = CatalogItem.from_dict(job.item)
    except KeyError as e:
        raise HTTPException(status_code=400, detail=f"item is missing {e}")

    outcome = await SyncItemWorker(deps, force=job.force).run(item)
    return {"ok": True, "run_id": job.run_id or new_run_id(), "outcome": outcome.to_dict()}
