from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint, Index
import enum
from catalog_sync.db.base_class import Base
from catalog_sync.utils import utcnow

class CategoryType(str, enum.Enum):
    LIVE = "live"
    VOD = "vod"
    SERIES = "series"

class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(Integer, ForeignKey("providers.id", ondelete="CASCADE"), nullable=False)
    external_id = Column(String, nullable=False)  # Xtream category_id
    name = Column(String, nullable=False)
    type = Column(String, nullable=False)
    parent_id = Column(Integer, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True)
    is_adult = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("provider_id", "external_id", "type", name="uq_categories_provider_external_type"),
        Index("ix_categories_provider_type", "provider_id", "type"),
    )
