"""
Request bodies for the sync endpoints.
"""
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from catalog_sync.models import SyncRequest


class TriggerSyncRequest(BaseModel):
    """POST /api/trigger-sync body (all fields optional)."""
    model_config = ConfigDict(populate_by_name=True)

    force: bool = False
    filter_name: Optional[str] = Field(default=None, alias="filterName")

    def to_request(self) -> SyncRequest:
        name = (self.filter_name or "").strip() or None
        return SyncRequest(force=self.force, filter_name=name)


class JobRunRequest(BaseModel):
    """
    POST /api/jobs/run body.

    unit=dispatch runs the dispatcher with force / filterName;
    unit=item runs one worker unit for ``item`` (a CatalogItem dict).
    """
    model_config = ConfigDict(populate_by_name=True)

    unit: Literal["dispatch", "item"]
    force: bool = False
    filter_name: Optional[str] = Field(default=None, alias="filterName")
    run_id: Optional[str] = Field(default=None, alias="runId")
    item: Optional[Dict[str, Any]] = None
