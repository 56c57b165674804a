"""
Square BGG Image Sync
FastAPI application entry point

- Trigger, run status and cancellation endpoints
- Health / configuration-presence diagnostic and catalog debug report
- Signed job webhook for external job platforms
- Rate limiting with SlowAPI
- HTTP client lifecycle management (clients closed on shutdown)
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from slowapi.errors import RateLimitExceeded

from catalog_sync.api.routes import health, jobs, sync
from catalog_sync.core.config import settings
from catalog_sync.core.rate_limit import limiter, rate_limit_exceeded_handler
from catalog_sync.jobs.job_queue import close_queue_pool
from catalog_sync.jobs.sync_images import build_dependencies

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build shared clients on startup, close them on shutdown."""
    app.state.sync_deps = build_dependencies()
    logger.info(
        f"{settings.APP_NAME} starting ({settings.ENVIRONMENT}, "
        f"square={settings.SQUARE_ENVIRONMENT}, queue={'arq' if settings.ARQ_REDIS_URL else 'inline'})"
    )
    if not settings.SQUARE_ACCESS_TOKEN:
        logger.warning("SQUARE_ACCESS_TOKEN is not set - sync triggers will fail")

    yield

    await app.state.sync_deps.close()
    await close_queue_pool()
    logger.info("HTTP clients closed")


app = FastAPI(
    lifespan=lifespan,
    title=settings.APP_NAME,
    description="Attach BoardGameGeek images and descriptions to Square catalog items",
    version="1.0.0",
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

app.include_router(sync.router, prefix="/api", tags=["Sync"])
app.include_router(health.router, prefix="/api", tags=["Health"])
app.include_router(jobs.router, prefix="/api", tags=["Jobs"])


@app.get("/", tags=["Health"])
async def root():
    return {"name": settings.APP_NAME, "health": "/api/health"}
