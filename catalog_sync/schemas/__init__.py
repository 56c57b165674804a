from catalog_sync.schemas.sync import JobRunRequest, TriggerSyncRequest

__all__ = ["JobRunRequest", "TriggerSyncRequest"]
