"""
API dependencies
"""
import logging

from fastapi import Request

from catalog_sync.core.config import settings
from catalog_sync.core.exceptions import QueueUnavailable
from catalog_sync.jobs.sync_images import InlineTaskSink, SyncDependencies
from catalog_sync.services.run_registry import RunRegistry, run_registry

logger = logging.getLogger(__name__)


def get_sync_deps(request: Request) -> SyncDependencies:
    """Clients built in the app lifespan."""
    return request.app.state.sync_deps


def get_run_registry() -> RunRegistry:
    return run_registry


async def get_task_sink(deps: SyncDependencies, registry: RunRegistry):
    """
    ARQ sink when ARQ_REDIS_URL is configured, else an in-process pool.

    Raises:
        QueueUnavailable: Redis is configured but cannot be reached
    """
    if not settings.ARQ_REDIS_URL:
        return InlineTaskSink(deps, registry=registry)

    from catalog_sync.jobs.job_queue import ArqTaskSink, get_queue_pool

    try:
        redis = await get_queue_pool()
    except Exception as e:
        logger.error(f"[QUEUE] Redis unavailable: {type(e).__name__}: {e}")
        raise QueueUnavailable(f"Job queue unavailable: {e}") from e
    return ArqTaskSink(redis, registry=registry)
