"""
Domain records for the sync pipeline.
"""
from catalog_sync.models.catalog import CatalogItem, CatalogReport, CategoryInfo, ItemMeta
from catalog_sync.models.metadata import MetadataDetail, SearchCandidate, UpcLookupResult
from catalog_sync.models.sync import (
    DispatchSummary,
    ItemProgress,
    ItemState,
    RunSummary,
    SyncOutcome,
    SyncRequest,
    SyncStatus,
)

__all__ = [
    "CatalogItem",
    "CatalogReport",
    "CategoryInfo",
    "ItemMeta",
    "MetadataDetail",
    "SearchCandidate",
    "UpcLookupResult",
    "DispatchSummary",
    "ItemProgress",
    "ItemState",
    "RunSummary",
    "SyncOutcome",
    "SyncRequest",
    "SyncStatus",
]
