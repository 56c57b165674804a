"""
Job Queue Configuration

ARQ worker settings and the queue-backed task sink.

Jobs:
- dispatch_sync_job: list + filter the catalog, enqueue one sync_item_job per item
- sync_item_job:     run SyncItemWorker for a single item

Start a worker with:
    arq catalog_sync.jobs.job_queue.WorkerSettings

Items of one run may land on several worker processes, so the run's auth
failure count is kept in Redis instead of an in-process breaker.
"""
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings

from catalog_sync.core.config import settings
from catalog_sync.jobs.sync_images import (
    SyncItemWorker,
    build_dependencies,
    dispatch_sync,
    is_auth_failure,
)
from catalog_sync.models import CatalogItem, SyncRequest
from catalog_sync.services.run_registry import RunRecord, RunRegistry, run_registry

logger = logging.getLogger(__name__)

AUTH_FAILURES_KEY = "catalog-sync:{run_id}:auth-failures"
AUTH_FAILURES_TTL_SECONDS = 24 * 3600


def parse_redis_url(url: str) -> RedisSettings:
    """Parse Redis URL into ARQ RedisSettings."""
    if not url:
        # Default to localhost
        return RedisSettings()

    # Parse redis://host:port/db or redis://:password@host:port/db
    parsed = urlparse(url)

    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        password=parsed.password,
        database=int(parsed.path.lstrip("/") or 0) if parsed.path else 0,
        ssl=parsed.scheme == "rediss",
    )


_queue_pool: Optional[ArqRedis] = None


async def get_queue_pool() -> ArqRedis:
    """Shared ARQ connection for enqueuing from the API process."""
    global _queue_pool
    if _queue_pool is None:
        _queue_pool = await create_pool(parse_redis_url(settings.ARQ_REDIS_URL))
    return _queue_pool


async def close_queue_pool():
    global _queue_pool
    if _queue_pool is not None:
        await _queue_pool.close()
        _queue_pool = None


class ArqTaskSink:
    """Enqueues one sync_item_job per item; job id is "{run_id}:{item_id}"."""

    mode = "queue"

    def __init__(self, redis: ArqRedis, registry: Optional[RunRegistry] = None):
        self.redis = redis
        self.registry = registry
        self.record: Optional[RunRecord] = None
        self.enqueued = 0

    async def open(self, run_id: str, request: SyncRequest) -> None:
        if self.registry is not None:
            self.record = self.registry.register(RunRecord(run_id=run_id, mode=self.mode))

    async def submit(self, run_id: str, batch: List[CatalogItem], request: SyncRequest) -> None:
        for item in batch:
            job = await self.redis.enqueue_job(
                "sync_item_job",
                run_id,
                item.to_dict(),
                request.force,
                _job_id=f"{run_id}:{item.id}",
            )
            if job is None:
                # ARQ returns None when a job with this id already exists
                logger.debug(f"[QUEUE] {run_id}:{item.id} already queued")
            self.enqueued += 1
        if self.record is not None:
            self.record.dispatched = self.enqueued
        logger.info(f"[QUEUE] {run_id}: enqueued batch of {len(batch)}")

    async def close(self, run_id: str) -> None:
        logger.info(f"[QUEUE] {run_id}: {self.enqueued} item jobs enqueued")


# =============================================================================
# JOBS
# =============================================================================


async def dispatch_sync_job(ctx: dict, force: bool = False, filter_name: Optional[str] = None) -> Dict[str, Any]:
    """Dispatcher unit: enumerate the catalog and fan out item jobs."""
    sink = ArqTaskSink(ctx["redis"])
    summary = await dispatch_sync(ctx["deps"], SyncRequest(force=force, filter_name=filter_name), sink)
    return summary.to_dict()


async def sync_item_job(ctx: dict, run_id: str, item: Dict[str, Any], force: bool = False) -> Dict[str, Any]:
    """
    Worker unit: sync one item.

    Skips the item once the run has accumulated AUTH_FAILURE_THRESHOLD
    auth failures.
    """
    redis = ctx.get("redis")
    key = AUTH_FAILURES_KEY.format(run_id=run_id)
    threshold = settings.AUTH_FAILURE_THRESHOLD

    if redis is not None:
        failures = int(await redis.get(key) or 0)
        if failures >= threshold:
            logger.warning(f"[QUEUE] {run_id}: auth circuit open ({failures}), skipping {item.get('id')}")
            return {"item_id": item.get("id"), "skipped": True, "reason": "auth_circuit_open"}

    worker = SyncItemWorker(ctx["deps"], force=force)
    outcome = await worker.run(CatalogItem.from_dict(item))

    if is_auth_failure(outcome) and redis is not None:
        failures = await redis.incr(key)
        await redis.expire(key, AUTH_FAILURES_TTL_SECONDS)
        if failures == threshold:
            logger.error(f"[QUEUE] {run_id}: {failures} auth failures - remaining items will be skipped")

    return outcome.to_dict()


async def startup(ctx: dict):
    ctx["deps"] = build_dependencies()
    logger.info("[QUEUE] Worker started")


async def shutdown(ctx: dict):
    deps = ctx.pop("deps", None)
    if deps is not None:
        await deps.close()
    logger.info("[QUEUE] Worker stopped")


class WorkerSettings:
    """
    ARQ Worker configuration.

    max_jobs bounds concurrent items per worker process; BGG's soft limit
    makes more than a handful counterproductive.
    """

    functions = [
        dispatch_sync_job,
        sync_item_job,
    ]

    on_startup = startup
    on_shutdown = shutdown

    # Redis connection
    redis_settings = parse_redis_url(settings.ARQ_REDIS_URL)

    # Worker settings
    max_jobs = settings.SYNC_CONCURRENCY
    job_timeout = settings.ARQ_JOB_TIMEOUT_SECONDS
    keep_result = 3600  # 1 hour

    # Item retries happen inside SyncItemWorker
    max_tries = 1
