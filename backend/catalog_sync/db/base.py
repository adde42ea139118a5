# Import Base class
from catalog_sync.db.base_class import Base

# Import all models here so that Base has them registered
# This is needed for Base.metadata.create_all()
from catalog_sync.models.provider import Provider, SyncStatus, Visibility
from catalog_sync.models.category import Category, CategoryType
from catalog_sync.models.content import (
    LiveChannel, Movie, Series, Season, Episode,
    live_channel_categories, movie_categories, series_categories,
)
from catalog_sync.models.epg import EpgProgram
from catalog_sync.models.user_data import ContentType, Favorite, WatchHistory
