"""
Health & Diagnostics Routes

GET /api/health          deployment is live + which settings are present
GET /api/debug-catalog   how the Square catalog is being filtered
"""
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from catalog_sync.api.deps import get_sync_deps
from catalog_sync.core.config import settings
from catalog_sync.core.exceptions import SyncBaseError
from catalog_sync.core.utils import utcnow
from catalog_sync.jobs.sync_images import SyncDependencies

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check():
    """Presence of configuration only; secret values are never echoed."""
    return {
        "ok": True,
        "timestamp": utcnow().isoformat(),
        "env": {
            "hasSquareToken": bool(settings.SQUARE_ACCESS_TOKEN),
            "hasBggToken": bool(settings.BGG_API_TOKEN),
            "hasQueue": bool(settings.ARQ_REDIS_URL),
            "hasJobSigningKey": bool(settings.JOB_SIGNING_KEY),
            "squareEnvironment": settings.SQUARE_ENVIRONMENT or "not set",
        },
    }


@router.get("/debug-catalog")
async def debug_catalog(deps: SyncDependencies = Depends(get_sync_deps)):
    try:
        report = await deps.catalog.classify_catalog()
    except SyncBaseError as e:
        logger.error(f"[Square] debug-catalog failed: {e.kind}: {e.message}")
        return JSONResponse(status_code=500, content={"error": e.message})
    return report.to_dict()
