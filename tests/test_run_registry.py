"""
Tests for the in-process run registry and how the inline sink records runs.
"""
import pytest

from catalog_sync.jobs.sync_images import InlineTaskSink, SyncItemWorker, SyncWorkerPool
from catalog_sync.models import SyncRequest
from catalog_sync.services.run_registry import RunRecord, RunRegistry, run_registry


def make_pool(deps, run_id):
    worker = SyncItemWorker(deps, max_retries=0, retry_delay=0)
    return SyncWorkerPool(worker, run_id, concurrency=1)


class TestEviction:
    @pytest.mark.asyncio
    async def test_active_run_is_never_evicted(self, sync_deps):
        registry = RunRegistry(max_runs=3)
        pool = make_pool(sync_deps, "run_live")
        registry.register(RunRecord(run_id="run_live", mode="inline", pool=pool))

        for i in range(5):
            registry.register(RunRecord(run_id=f"run_q{i}", mode="queue"))

        assert len(registry) == 3
        assert registry.get("run_live") is not None
        assert registry.get("run_q0") is None
        assert registry.get("run_q3") is not None and registry.get("run_q4") is not None
        assert registry.cancel("run_live")
        assert pool.cancel_event.is_set()

    @pytest.mark.asyncio
    async def test_finished_runs_are_evicted_oldest_first(self, sync_deps):
        registry = RunRegistry(max_runs=2)
        for run_id in ("run_a", "run_b"):
            pool = make_pool(sync_deps, run_id)
            await pool.run([])
            registry.register(RunRecord(run_id=run_id, mode="inline", pool=pool))

        registry.register(RunRecord(run_id="run_c", mode="queue"))

        assert registry.get("run_a") is None
        assert registry.get("run_b") is not None
        assert registry.get("run_c") is not None

    @pytest.mark.asyncio
    async def test_newest_record_kept_when_all_others_active(self, sync_deps):
        registry = RunRegistry(max_runs=1)
        registry.register(RunRecord(run_id="run_live", mode="inline", pool=make_pool(sync_deps, "run_live")))

        registry.register(RunRecord(run_id="run_q", mode="queue"))

        assert registry.get("run_live") is not None
        assert registry.get("run_q") is not None


@pytest.mark.asyncio
async def test_status_includes_breaker_metrics(sync_deps):
    pool = make_pool(sync_deps, "run_m")
    await pool.run([])
    data = RunRecord(run_id="run_m", mode="inline", pool=pool).to_dict()

    assert data["status"] == "completed"
    assert data["breaker"]["state"] == "CLOSED"
    assert data["breaker"]["failure_count"] == 0


@pytest.mark.asyncio
async def test_inline_sink_records_in_injected_empty_registry(sync_deps):
    registry = RunRegistry()
    sink = InlineTaskSink(sync_deps, registry=registry)

    await sink.open("run_injected", SyncRequest())
    await sink.close("run_injected")
    await sink.record.task

    assert sink.registry is registry
    assert registry.get("run_injected") is sink.record
    assert run_registry.get("run_injected") is None
