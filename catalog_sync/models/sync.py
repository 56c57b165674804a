"""
Sync run records

SyncOutcome is the only durable output of a run; RunSummary aggregates
them. ItemProgress is the per-item step memo that lets a retried worker
skip steps that already succeeded.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from catalog_sync.models.metadata import MetadataDetail


class SyncStatus(str, Enum):
    SYNCED = "synced"
    NO_MATCH = "no_match"
    ERROR = "error"


class ItemState(str, Enum):
    PENDING = "pending"
    MATCHING = "matching"
    MATCHED = "matched"
    UPLOADING = "uploading"
    SYNCED = "synced"
    NO_MATCH = "no_match"
    ERROR = "error"


_TRANSITIONS = {
    ItemState.PENDING: {ItemState.MATCHING},
    ItemState.MATCHING: {ItemState.MATCHED, ItemState.NO_MATCH, ItemState.ERROR},
    ItemState.MATCHED: {ItemState.UPLOADING, ItemState.NO_MATCH, ItemState.ERROR},
    ItemState.UPLOADING: {ItemState.SYNCED, ItemState.ERROR},
}


@dataclass
class SyncRequest:
    """Run-level options from the trigger surface."""
    force: bool = False
    filter_name: Optional[str] = None


@dataclass
class SyncOutcome:
    """Result for exactly one catalog item."""
    item_id: str
    name: str
    status: SyncStatus
    external_id: Optional[int] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None
    asset_id: Optional[str] = None
    description_updated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "item_id": self.item_id,
            "name": self.name,
            "status": self.status.value,
        }
        if self.external_id is not None:
            data["external_id"] = self.external_id
        if self.asset_id:
            data["asset_id"] = self.asset_id
        if self.description_updated:
            data["description_updated"] = True
        if self.error_kind:
            data["error_kind"] = self.error_kind
            data["error"] = self.error
        return data


@dataclass
class ItemProgress:
    """
    Step memo for one item.

    Each completed step is recorded here; a retried worker invocation
    reads it and resumes after the last completed step.
    """
    item_id: str
    state: ItemState = ItemState.PENDING
    match_done: bool = False
    match: Optional[MetadataDetail] = None
    asset_id: Optional[str] = None
    description_done: bool = False
    attempts: int = 0

    def advance(self, new_state: ItemState) -> None:
        """Move to ``new_state``; re-entering the current state is a no-op."""
        if new_state == self.state:
            return
        if new_state not in _TRANSITIONS.get(self.state, set()):
            raise ValueError(f"Illegal transition {self.state.value} -> {new_state.value}")
        self.state = new_state


@dataclass
class RunSummary:
    """Aggregate of all outcomes for a run."""
    run_id: str
    outcomes: List[SyncOutcome] = field(default_factory=list)
    auth_errors: int = 0
    aborted: bool = False

    def _count(self, status: SyncStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def synced(self) -> int:
        return self._count(SyncStatus.SYNCED)

    @property
    def no_match(self) -> int:
        return self._count(SyncStatus.NO_MATCH)

    @property
    def errors(self) -> int:
        return self._count(SyncStatus.ERROR)

    @property
    def summary_line(self) -> str:
        line = (
            f"Done! {self.synced} synced, {self.no_match} no match, "
            f"{self.errors} errors out of {self.total} items."
        )
        if self.aborted:
            line += f" Aborted after {self.auth_errors} auth failures."
        return line

    def to_dict(self, include_outcomes: bool = True) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "run_id": self.run_id,
            "summary": self.summary_line,
            "total": self.total,
            "synced": self.synced,
            "no_match": self.no_match,
            "error": self.errors,
            "auth_errors": self.auth_errors,
            "aborted": self.aborted,
        }
        if include_outcomes:
            data["results"] = [o.to_dict() for o in self.outcomes]
        return data


@dataclass
class DispatchSummary:
    """Acknowledgement returned by the dispatcher before work completes."""
    run_id: str
    dispatched: int
    batches: int
    mode: str  # "inline" | "queue"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "dispatched": self.dispatched,
            "batches": self.batches,
            "mode": self.mode,
        }
