from datetime import datetime

from pydantic import BaseModel


class SyncRunResponse(BaseModel):
    synced: int
    errors: int


class SyncStatusResponse(BaseModel):
    total_entries: int
    last_sync_time: datetime | None = None
    sync_interval: int
    scheduler_running: bool = False
