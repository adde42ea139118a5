from pydantic import BaseModel
from typing import Dict, List, Optional
from datetime import datetime

class EpgProgramOut(BaseModel):
    id: Optional[int] = None
    epg_channel_id: str
    title: str
    description: Optional[str] = None
    start_time: datetime
    end_time: datetime
    category: Optional[str] = None
    icon: Optional[str] = None
    lang: Optional[str] = None

    class Config:
        from_attributes = True

class NowNext(BaseModel):
    current: Optional[EpgProgramOut] = None
    next: Optional[EpgProgramOut] = None

class CurrentProgramsRequest(BaseModel):
    epg_channel_ids: List[Optional[str]]

class CurrentProgramsResponse(BaseModel):
    programs: Dict[str, EpgProgramOut]

class ProviderSyncStatus(BaseModel):
    id: int
    name: str
    sync_status: str
    live_channels_count: int
    movies_count: int
    series_count: int
    live_synced_at: Optional[datetime] = None
    vod_synced_at: Optional[datetime] = None
    series_synced_at: Optional[datetime] = None
    epg_synced_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class SeriesDetailsProgress(BaseModel):
    total: int
    synced: int

class SyncTriggerResponse(BaseModel):
    message: str
    task_id: str
