#!/usr/bin/env python3
"""
Square BGG Image Sync - command-line runner

Runs a sync in the foreground and prints the summary line. Intended for
small or manual runs; large catalogs should go through the API trigger or
the ARQ worker.

Usage:
    python run_sync.py                       # items missing an image or description
    python run_sync.py --filter catan        # only names containing "catan"
    python run_sync.py --force               # re-sync everything
    python run_sync.py --dry-run             # classification report only
    python run_sync.py --concurrency 1       # single sequential loop

Exit code 1 on a missing credential or an auth-aborted run.
"""
import argparse
import asyncio
import json
import logging
import sys

from catalog_sync.core.config import settings
from catalog_sync.core.exceptions import ConfigError, SyncBaseError
from catalog_sync.core.utils import new_run_id
from catalog_sync.jobs.sync_images import (
    SyncItemWorker,
    SyncWorkerPool,
    build_dependencies,
    filter_items,
    run_sequential_sync,
)
from catalog_sync.models import SyncRequest

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("run_sync")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Attach BoardGameGeek images and descriptions to Square items")
    parser.add_argument("--force", action="store_true", help="Re-sync items that already have image and description")
    parser.add_argument("--filter", dest="filter_name", default=None, help="Only items whose name contains this text")
    parser.add_argument("--dry-run", action="store_true", help="Print the catalog classification report and exit")
    parser.add_argument(
        "--concurrency",
        type=int,
        default=settings.SYNC_CONCURRENCY,
        help="Items processed in parallel (1 = sequential loop)",
    )
    return parser.parse_args(argv)


async def run(args) -> int:
    deps = build_dependencies()
    request = SyncRequest(force=args.force, filter_name=args.filter_name)

    try:
        if args.dry_run:
            report = await deps.catalog.classify_catalog()
            print(json.dumps(report.to_dict(), indent=2))
            return 0

        if args.concurrency <= 1:
            summary = await run_sequential_sync(deps, request)
        else:
            run_id = new_run_id()
            items = filter_items(await deps.catalog.list_items(), request)
            worker = SyncItemWorker(deps, force=request.force)
            pool = SyncWorkerPool(worker, run_id, concurrency=args.concurrency)
            summary = await pool.run(items)
    except ConfigError as e:
        logger.error(f"Configuration error: {e.message}")
        return 1
    except SyncBaseError as e:
        logger.error(f"Sync failed before processing: {e.kind}: {e.message}")
        return 1
    finally:
        await deps.close()

    print(summary.summary_line)
    return 1 if summary.aborted else 0


def main(argv=None) -> int:
    return asyncio.run(run(parse_args(argv)))


if __name__ == "__main__":
    sys.exit(main())
