from sqlalchemy import Column, Integer, String, Boolean, DateTime, JSON
from sqlalchemy.orm import relationship
import enum
from catalog_sync.db.base_class import Base
from catalog_sync.utils import utcnow

class SyncStatus(str, enum.Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    COMPLETED = "completed"
    FAILED = "failed"

class Visibility(str, enum.Enum):
    PRIVATE = "private"
    PUBLIC = "public"
    GLOBAL = "global"

class Provider(Base):
    __tablename__ = "providers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    url = Column(String, nullable=False)
    username = Column(String, nullable=True)
    password = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    visibility = Column(String, default=Visibility.PRIVATE.value, nullable=False)
    is_system = Column(Boolean, default=False, nullable=False)  # global provider bootstrapped by the system
    user_id = Column(Integer, nullable=True, index=True)

    # Only the sync orchestrator writes these
    sync_status = Column(String, default=SyncStatus.IDLE.value, nullable=False)
    live_channels_count = Column(Integer, default=0, nullable=False)
    movies_count = Column(Integer, default=0, nullable=False)
    series_count = Column(Integer, default=0, nullable=False)
    live_synced_at = Column(DateTime, nullable=True)
    vod_synced_at = Column(DateTime, nullable=True)
    series_synced_at = Column(DateTime, nullable=True)
    epg_synced_at = Column(DateTime, nullable=True)
    epg_sync_interval_hours = Column(Integer, default=6, nullable=False)
    server_info = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relations
    categories = relationship("Category", cascade="all, delete-orphan", passive_deletes=True)
    live_channels = relationship("LiveChannel", cascade="all, delete-orphan", passive_deletes=True)
    movies = relationship("Movie", cascade="all, delete-orphan", passive_deletes=True)
    series = relationship("Series", cascade="all, delete-orphan", passive_deletes=True)
    epg_programs = relationship("EpgProgram", cascade="all, delete-orphan", passive_deletes=True)
