from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, UniqueConstraint, Index
from catalog_sync.db.base_class import Base
from catalog_sync.utils import utcnow

class EpgProgram(Base):
    __tablename__ = "epg_programs"

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(Integer, ForeignKey("providers.id", ondelete="CASCADE"), nullable=False)
    epg_channel_id = Column(String, nullable=False)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    category = Column(String, nullable=True)
    icon = Column(Text, nullable=True)
    lang = Column(String, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("provider_id", "epg_channel_id", "start_time", name="uq_epg_programs_channel_start"),
        Index("ix_epg_programs_channel_end", "provider_id", "epg_channel_id", "end_time"),
        Index("ix_epg_programs_provider_end", "provider_id", "end_time"),
    )
