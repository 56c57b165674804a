"""
Jobs Package

Sync orchestration (dispatcher, item worker, pool, legacy loop) and the
ARQ job definitions that run them on an external worker.
"""
from catalog_sync.jobs.sync_images import (
    InlineTaskSink,
    SyncDependencies,
    SyncItemWorker,
    SyncWorkerPool,
    build_dependencies,
    dispatch_sync,
    filter_items,
    run_sequential_sync,
)

__all__ = [
    "InlineTaskSink",
    "SyncDependencies",
    "SyncItemWorker",
    "SyncWorkerPool",
    "build_dependencies",
    "dispatch_sync",
    "filter_items",
    "run_sequential_sync",
]
