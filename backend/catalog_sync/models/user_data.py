from sqlalchemy import Column, Integer, String, Text, DateTime, UniqueConstraint, Index, CheckConstraint
import enum
from catalog_sync.db.base_class import Base
from catalog_sync.utils import utcnow

class ContentType(str, enum.Enum):
    """Closed set of entities a favorite or history row may point at."""
    LIVE_CHANNEL = "live_channel"
    MOVIE = "movie"
    SERIES = "series"
    EPISODE = "episode"


CONTENT_TYPE_CHECK = "content_type IN ('live_channel', 'movie', 'series', 'episode')"

class Favorite(Base):
    __tablename__ = "favorites"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    content_type = Column(String, nullable=False)
    content_id = Column(Integer, nullable=False)  # local id, no FK: swept after each sync
    content_name = Column(String, nullable=True)
    content_icon = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "content_type", "content_id", name="uq_favorites_user_content"),
        Index("ix_favorites_content", "content_type", "content_id"),
        CheckConstraint(CONTENT_TYPE_CHECK, name="ck_favorites_content_type"),
    )

class WatchHistory(Base):
    __tablename__ = "watch_history"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    content_type = Column(String, nullable=False)
    content_id = Column(Integer, nullable=False)
    content_name = Column(String, nullable=True)
    content_icon = Column(Text, nullable=True)
    progress_seconds = Column(Integer, default=0, nullable=False)
    duration_seconds = Column(Integer, nullable=True)
    watched_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_watch_history_content", "content_type", "content_id"),
        CheckConstraint(CONTENT_TYPE_CHECK, name="ck_watch_history_content_type"),
    )
