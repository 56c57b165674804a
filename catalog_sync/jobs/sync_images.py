"""
Image & Description Sync Jobs

Fan-out model:

    dispatch_sync()            list + filter catalog items, submit batches of
        |                      SYNC_BATCH_SIZE to a task sink, return at once
        v
    TaskSink                   InlineTaskSink: SyncWorkerPool in this process
        |                      ArqTaskSink:    one ARQ job per item
        v
    SyncItemWorker.run()       match -> upload image -> update description
                               (each step memoised in ItemProgress, so a retry
                               skips what already succeeded)

A run-scoped AuthCircuitBreaker stops scheduling once AUTH_FAILURE_THRESHOLD
items have failed with AuthError; credentials do not fix themselves mid-run.

run_sequential_sync() is the single-loop variant used by the CLI for small
or manual runs.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from catalog_sync.adapters.bgg import BGGClient
from catalog_sync.adapters.square import SquareCatalogGateway, image_idempotency_key
from catalog_sync.adapters.upc import UpcResolver
from catalog_sync.core.circuit_breaker import AuthCircuitBreaker
from catalog_sync.core.exceptions import AuthError, SyncBaseError, is_retryable
from catalog_sync.core.utils import chunked, new_run_id, utcnow
from catalog_sync.models import (
    CatalogItem,
    DispatchSummary,
    ItemProgress,
    ItemState,
    RunSummary,
    SyncOutcome,
    SyncRequest,
    SyncStatus,
)
from catalog_sync.services.match_scoring import MatchEngine
from catalog_sync.services.run_registry import RunRecord, RunRegistry, run_registry

logger = logging.getLogger(__name__)


# =============================================================================
# DEPENDENCIES
# =============================================================================


@dataclass
class SyncDependencies:
    """Clients shared by every item of a run."""
    catalog: SquareCatalogGateway
    metadata: BGGClient
    resolver: UpcResolver
    matcher: MatchEngine

    async def close(self):
        await self.catalog.close()
        await self.metadata.close()
        await self.resolver.close()


def build_dependencies() -> SyncDependencies:
    """Construct the production clients from settings."""
    metadata = BGGClient()
    resolver = UpcResolver()
    return SyncDependencies(
        catalog=SquareCatalogGateway(),
        metadata=metadata,
        resolver=resolver,
        matcher=MatchEngine(metadata, resolver),
    )


def filter_items(items: Iterable[CatalogItem], request: SyncRequest) -> List[CatalogItem]:
    """
    Apply run filters.

    - Items with both image and description are skipped unless forced
    - filter_name keeps items whose name contains it (case-insensitive)
    """
    needle = (request.filter_name or "").strip().lower()
    selected = []
    for item in items:
        if item.fully_synced and not request.force:
            continue
        if needle and needle not in item.name.lower():
            continue
        selected.append(item)
    return selected


# =============================================================================
# WORKER
# =============================================================================


class SyncItemWorker:
    """
    Processes one catalog item end to end.

    Every error is converted to an error SyncOutcome here; nothing escapes
    the item boundary except cancellation.
    """

    def __init__(
        self,
        deps: SyncDependencies,
        force: bool = False,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ):
        from catalog_sync.core.config import settings

        self.deps = deps
        self.force = force
        self.max_retries = settings.SYNC_WORKER_RETRIES if max_retries is None else max_retries
        self.retry_delay = settings.SYNC_RETRY_DELAY_SECONDS if retry_delay is None else retry_delay

    async def run(self, item: CatalogItem, progress: Optional[ItemProgress] = None) -> SyncOutcome:
        if progress is None:
            progress = ItemProgress(item_id=item.id)
        max_attempts = 1 + max(0, self.max_retries)

        for attempt in range(max_attempts):
            progress.attempts += 1
            try:
                return await self._run_steps(item, progress)
            except Exception as e:
                if is_retryable(e) and attempt + 1 < max_attempts:
                    logger.warning(
                        f"[SYNC] {item.name}: {type(e).__name__} - retrying in {self.retry_delay:.0f}s "
                        f"(attempt {attempt + 1}/{max_attempts})"
                    )
                    await asyncio.sleep(self.retry_delay)
                    continue
                return self._error_outcome(item, progress, e)

        # max_attempts >= 1, so the loop always returns
        raise AssertionError("unreachable")

    async def _run_steps(self, item: CatalogItem, progress: ItemProgress) -> SyncOutcome:
        # Step 1: match
        if not progress.match_done:
            progress.advance(ItemState.MATCHING)
            logger.info(f"[SYNC] Processing: {item.name}")
            progress.match = await self.deps.matcher.find_best_match(item.name, item.meta)
            progress.match_done = True
            if progress.match is None:
                progress.advance(ItemState.NO_MATCH)
            else:
                progress.advance(ItemState.MATCHED)

        match = progress.match
        if match is None:
            logger.info(f"[SYNC] No match: {item.name}")
            return SyncOutcome(item_id=item.id, name=item.name, status=SyncStatus.NO_MATCH)

        wants_image = bool(match.image_url) and (self.force or not item.has_image)
        wants_description = bool(match.description_html) and (self.force or not item.has_description)
        if not (wants_image or wants_description):
            # Matched, but BGG has nothing this item is missing
            progress.advance(ItemState.NO_MATCH)
            logger.info(f"[SYNC] No usable content for {item.name} on BGG {match.external_id}")
            return SyncOutcome(
                item_id=item.id,
                name=item.name,
                status=SyncStatus.NO_MATCH,
                external_id=match.external_id,
            )

        progress.advance(ItemState.UPLOADING)

        # Step 2: image
        if wants_image and progress.asset_id is None:
            progress.asset_id = await self.deps.catalog.upload_asset(
                item.id,
                match.image_url,
                item.name,
                idempotency_key=image_idempotency_key(item.id, match.image_url, match.external_id),
            )

        # Step 3: description
        if wants_description and not progress.description_done:
            await self.deps.catalog.update_description(item.id, match.description_html)
            progress.description_done = True

        progress.advance(ItemState.SYNCED)
        logger.info(f"[SYNC] Synced: {item.name} -> BGG {match.external_id}")
        return SyncOutcome(
            item_id=item.id,
            name=item.name,
            status=SyncStatus.SYNCED,
            external_id=match.external_id,
            asset_id=progress.asset_id,
            description_updated=progress.description_done,
        )

    def _error_outcome(self, item: CatalogItem, progress: ItemProgress, error: Exception) -> SyncOutcome:
        if progress.state in (ItemState.MATCHING, ItemState.MATCHED, ItemState.UPLOADING):
            progress.advance(ItemState.ERROR)

        if isinstance(error, AuthError):
            logger.error(f"[SYNC] Auth failure on {item.name}: {error}")
        elif isinstance(error, SyncBaseError):
            logger.error(f"[SYNC] Failed: {item.name}: {type(error).__name__}: {error}")
        else:
            logger.exception(f"[SYNC] Unexpected error on {item.name}")

        return SyncOutcome(
            item_id=item.id,
            name=item.name,
            status=SyncStatus.ERROR,
            external_id=progress.match.external_id if progress.match else None,
            error_kind=type(error).__name__,
            error=str(error),
            asset_id=progress.asset_id,
            description_updated=progress.description_done,
        )


def is_auth_failure(outcome: SyncOutcome) -> bool:
    return outcome.status == SyncStatus.ERROR and outcome.error_kind == AuthError.__name__


# =============================================================================
# POOL
# =============================================================================


_STOP = object()


class SyncWorkerPool:
    """
    Bounded asyncio worker pool for one run.

    Items are queued as batches arrive; `concurrency` consumers pull from the
    queue. cancel() (or an opened auth breaker) stops items that have not
    started yet; items already in flight finish and keep their outcome.

    Usage:
        pool = SyncWorkerPool(worker, run_id)
        pool.start()
        pool.submit(batch)
        summary = await pool.join()
    """

    def __init__(
        self,
        worker: SyncItemWorker,
        run_id: str,
        concurrency: Optional[int] = None,
        breaker: Optional[AuthCircuitBreaker] = None,
    ):
        from catalog_sync.core.config import settings

        self.worker = worker
        self.run_id = run_id
        self.concurrency = max(1, concurrency or settings.SYNC_CONCURRENCY)
        if breaker is None:
            breaker = AuthCircuitBreaker(name=run_id, failure_threshold=settings.AUTH_FAILURE_THRESHOLD)
        self.breaker = breaker
        self.summary = RunSummary(run_id=run_id)
        self.cancel_event = asyncio.Event()
        self.queue: asyncio.Queue = asyncio.Queue()
        self.submitted = 0
        self.finished = False
        self._consumers: List[asyncio.Task] = []
        self._closed = False

    @property
    def status(self) -> str:
        if self.summary.aborted:
            return "aborted"
        if self.cancel_event.is_set():
            return "cancelled" if self.finished else "cancelling"
        return "completed" if self.finished else "running"

    def start(self) -> "SyncWorkerPool":
        if not self._consumers:
            self._consumers = [
                asyncio.create_task(self._consume(i), name=f"{self.run_id}-worker-{i}")
                for i in range(self.concurrency)
            ]
        return self

    def submit(self, items: Iterable[CatalogItem]) -> int:
        if self._closed:
            raise RuntimeError(f"Pool for {self.run_id} is closed")
        count = 0
        for item in items:
            self.queue.put_nowait(item)
            count += 1
        self.submitted += count
        return count

    def cancel(self) -> None:
        if not self.cancel_event.is_set():
            logger.warning(f"[SYNC] Run {self.run_id} cancelled - pending items will not start")
            self.cancel_event.set()

    def close(self) -> None:
        """No more batches; consumers exit once the queue drains."""
        if self._closed:
            return
        self._closed = True
        for _ in range(self.concurrency):
            self.queue.put_nowait(_STOP)

    async def join(self) -> RunSummary:
        self.start()
        self.close()
        try:
            await asyncio.gather(*self._consumers)
        finally:
            self.finished = True
        logger.info(f"[SYNC] {self.run_id}: {self.summary.summary_line}")
        return self.summary

    async def run(self, items: Iterable[CatalogItem]) -> RunSummary:
        """Process a fixed list of items and wait for the summary."""
        self.start()
        self.submit(items)
        return await self.join()

    async def _consume(self, index: int):
        while True:
            item = await self.queue.get()
            try:
                if item is _STOP:
                    return
                if self.cancel_event.is_set():
                    continue
                outcome = await self.worker.run(item)
                self._record(outcome)
            finally:
                self.queue.task_done()

    def _record(self, outcome: SyncOutcome) -> None:
        self.summary.outcomes.append(outcome)
        if is_auth_failure(outcome):
            self.summary.auth_errors += 1
            if self.breaker.record_auth_failure():
                self.summary.aborted = True
                self.cancel()


# =============================================================================
# TASK SINKS
# =============================================================================


class InlineTaskSink:
    """Runs batches on a SyncWorkerPool inside the current event loop."""

    mode = "inline"

    def __init__(
        self,
        deps: SyncDependencies,
        registry: Optional[RunRegistry] = None,
        concurrency: Optional[int] = None,
    ):
        self.deps = deps
        self.registry = registry if registry is not None else run_registry
        self.concurrency = concurrency
        self.pool: Optional[SyncWorkerPool] = None
        self.record: Optional[RunRecord] = None

    async def open(self, run_id: str, request: SyncRequest) -> None:
        worker = SyncItemWorker(self.deps, force=request.force)
        self.pool = SyncWorkerPool(worker, run_id, concurrency=self.concurrency).start()
        self.record = self.registry.register(RunRecord(run_id=run_id, mode=self.mode, pool=self.pool))

    async def submit(self, run_id: str, batch: List[CatalogItem], request: SyncRequest) -> None:
        self.pool.submit(batch)
        self.record.dispatched = self.pool.submitted

    async def close(self, run_id: str) -> None:
        # join() in the background; the registry keeps a reference to the task
        self.record.task = asyncio.create_task(self.pool.join(), name=f"{run_id}-join")


def _batch_size() -> int:
    from catalog_sync.core.config import settings

    return settings.SYNC_BATCH_SIZE


# =============================================================================
# DISPATCHER
# =============================================================================


async def dispatch_sync(
    deps: SyncDependencies,
    request: SyncRequest,
    sink,
    run_id: Optional[str] = None,
    batch_size: Optional[int] = None,
) -> DispatchSummary:
    """
    Enumerate and filter items, then hand them to ``sink`` in batches.

    Returns as soon as every batch is submitted; outcomes are produced by
    the sink's workers.

    Raises:
        ConfigError: Square token missing (nothing is dispatched)
    """
    run_id = run_id or new_run_id()
    size = batch_size or _batch_size()

    items = await deps.catalog.list_items()
    selected = filter_items(items, request)
    logger.info(
        f"[SYNC] {run_id}: {len(selected)} of {len(items)} items to process "
        f"(force={request.force}, filter={request.filter_name!r})"
    )

    await sink.open(run_id, request)
    batches = 0
    for batch in chunked(selected, size):
        await sink.submit(run_id, batch, request)
        batches += 1
    await sink.close(run_id)

    summary = DispatchSummary(run_id=run_id, dispatched=len(selected), batches=batches, mode=sink.mode)
    logger.info(f"[SYNC] {run_id}: dispatched {summary.dispatched} items in {batches} batches ({sink.mode})")
    return summary


# =============================================================================
# LEGACY SEQUENTIAL LOOP
# =============================================================================


async def run_sequential_sync(
    deps: SyncDependencies,
    request: SyncRequest,
    run_id: Optional[str] = None,
    auth_failure_threshold: Optional[int] = None,
    worker: Optional[SyncItemWorker] = None,
) -> RunSummary:
    """
    Process every selected item one after another and wait for the result.

    Halts as soon as the auth breaker opens; the summary then reports
    aborted=True.
    """
    from catalog_sync.core.config import settings

    run_id = run_id or new_run_id()
    threshold = auth_failure_threshold or settings.AUTH_FAILURE_THRESHOLD
    breaker = AuthCircuitBreaker(name=run_id, failure_threshold=threshold)
    if worker is None:
        worker = SyncItemWorker(deps, force=request.force)
    summary = RunSummary(run_id=run_id)

    items = filter_items(await deps.catalog.list_items(), request)
    started = utcnow()
    logger.info(f"[SYNC] {run_id}: {len(items)} items to process")

    for index, item in enumerate(items, start=1):
        if not breaker.is_call_permitted():
            break
        logger.info(f"[SYNC] ({index}/{len(items)}) {item.name}")
        outcome = await worker.run(item)
        summary.outcomes.append(outcome)
        if is_auth_failure(outcome):
            summary.auth_errors += 1
            if breaker.record_auth_failure():
                summary.aborted = True

    elapsed = (utcnow() - started).total_seconds()
    logger.info(f"[SYNC] {run_id}: {summary.summary_line} ({elapsed:.0f}s)")
    return summary
