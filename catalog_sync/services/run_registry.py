"""
Run Registry

Tracks sync runs started by this process so the HTTP surface can report
progress and cancel them. Runs dispatched to the ARQ queue are recorded
too, but only as a dispatch acknowledgement: their outcomes live with the
workers.

In-memory only; a restart forgets every run.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from catalog_sync.core.utils import utcnow

logger = logging.getLogger(__name__)

MAX_TRACKED_RUNS = 50


@dataclass
class RunRecord:
    run_id: str
    mode: str
    dispatched: int = 0
    pool: Optional[Any] = None  # SyncWorkerPool for inline runs
    task: Optional[Any] = None  # asyncio.Task awaiting the pool
    created_at: datetime = field(default_factory=utcnow)

    @property
    def status(self) -> str:
        if self.pool is None:
            return "dispatched"
        return self.pool.status

    @property
    def is_active(self) -> bool:
        return self.pool is not None and not self.pool.finished

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "run_id": self.run_id,
            "mode": self.mode,
            "status": self.status,
            "dispatched": self.dispatched,
            "created_at": self.created_at.isoformat(),
        }
        if self.pool is not None:
            data["summary"] = self.pool.summary.to_dict()
            data["breaker"] = self.pool.breaker.get_metrics()
        return data


class RunRegistry:
    """
    Bounded map of run_id -> RunRecord.

    Past max_runs the oldest finished records are dropped; runs still in
    flight are kept so they stay reachable for status and cancel.
    """

    def __init__(self, max_runs: int = MAX_TRACKED_RUNS):
        self.max_runs = max_runs
        self._runs: Dict[str, RunRecord] = {}

    def register(self, record: RunRecord) -> RunRecord:
        self._runs[record.run_id] = record
        self._evict(keep=record.run_id)
        return record

    def _evict(self, keep: str) -> None:
        excess = len(self._runs) - self.max_runs
        if excess <= 0:
            return
        stale = [
            run_id for run_id, rec in self._runs.items()
            if run_id != keep and not rec.is_active
        ][:excess]
        for run_id in stale:
            logger.debug(f"[SYNC] Forgetting run {run_id}")
            del self._runs[run_id]

    def get(self, run_id: str) -> Optional[RunRecord]:
        return self._runs.get(run_id)

    def cancel(self, run_id: str) -> bool:
        """Cancel an inline run; False if unknown or not cancellable here."""
        record = self._runs.get(run_id)
        if record is None or record.pool is None:
            return False
        record.pool.cancel()
        return True

    def __len__(self) -> int:
        return len(self._runs)


run_registry = RunRegistry()
