from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime, Date, Numeric, JSON,
    ForeignKey, Table, UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship
from catalog_sync.db.base_class import Base
from catalog_sync.utils import utcnow

# Category associations are rebuilt on every sync; both sides cascade.
live_channel_categories = Table(
    "live_channel_categories",
    Base.metadata,
    Column("live_channel_id", Integer, ForeignKey("live_channels.id", ondelete="CASCADE"), primary_key=True),
    Column("category_id", Integer, ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True),
)

movie_categories = Table(
    "movie_categories",
    Base.metadata,
    Column("movie_id", Integer, ForeignKey("movies.id", ondelete="CASCADE"), primary_key=True),
    Column("category_id", Integer, ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True),
)

series_categories = Table(
    "series_categories",
    Base.metadata,
    Column("series_id", Integer, ForeignKey("series.id", ondelete="CASCADE"), primary_key=True),
    Column("category_id", Integer, ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True),
)


class LiveChannel(Base):
    __tablename__ = "live_channels"

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(Integer, ForeignKey("providers.id", ondelete="CASCADE"), nullable=False)
    stream_id = Column(Integer, nullable=False)  # Xtream stream_id
    name = Column(String, nullable=False)
    num = Column(Integer, nullable=True)
    stream_icon = Column(Text, nullable=True)
    epg_channel_id = Column(String, nullable=True)
    tv_archive = Column(Boolean, default=False, nullable=False)
    tv_archive_duration = Column(Integer, nullable=True)
    direct_source = Column(Text, nullable=True)
    added = Column(String, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    categories = relationship("Category", secondary=live_channel_categories, viewonly=True)

    __table_args__ = (
        UniqueConstraint("provider_id", "stream_id", name="uq_live_channels_provider_stream"),
        Index("ix_live_channels_provider_epg", "provider_id", "epg_channel_id"),
    )


class Movie(Base):
    __tablename__ = "movies"

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(Integer, ForeignKey("providers.id", ondelete="CASCADE"), nullable=False)
    stream_id = Column(Integer, nullable=False)
    name = Column(String, nullable=False)
    title = Column(String, nullable=True)
    year = Column(Integer, nullable=True)
    stream_icon = Column(Text, nullable=True)
    rating = Column(Numeric(4, 2), nullable=True)
    rating_5based = Column(Numeric(4, 2), nullable=True)
    genre = Column(Text, nullable=True)
    cast = Column(Text, nullable=True)
    director = Column(Text, nullable=True)
    plot = Column(Text, nullable=True)
    container_extension = Column(String, nullable=True)
    duration_secs = Column(Integer, nullable=True)
    duration = Column(String, nullable=True)
    tmdb_id = Column(String, nullable=True)
    imdb_id = Column(String, nullable=True)
    backdrop_path = Column(JSON(none_as_null=True), nullable=True)
    youtube_trailer = Column(String, nullable=True)
    tagline = Column(Text, nullable=True)
    content_rating = Column(String, nullable=True)
    images = Column(JSON(none_as_null=True), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    categories = relationship("Category", secondary=movie_categories, viewonly=True)

    __table_args__ = (
        UniqueConstraint("provider_id", "stream_id", name="uq_movies_provider_stream"),
    )


class Series(Base):
    __tablename__ = "series"

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(Integer, ForeignKey("providers.id", ondelete="CASCADE"), nullable=False)
    series_id = Column(Integer, nullable=False)  # Xtream series_id
    name = Column(String, nullable=False)
    title = Column(String, nullable=True)
    year = Column(Integer, nullable=True)
    cover = Column(Text, nullable=True)
    rating = Column(Numeric(4, 2), nullable=True)
    rating_5based = Column(Numeric(4, 2), nullable=True)
    genre = Column(Text, nullable=True)
    cast = Column(Text, nullable=True)
    director = Column(Text, nullable=True)
    plot = Column(Text, nullable=True)
    backdrop_path = Column(JSON(none_as_null=True), nullable=True)
    youtube_trailer = Column(String, nullable=True)
    tmdb_id = Column(String, nullable=True)
    tagline = Column(Text, nullable=True)
    content_rating = Column(String, nullable=True)
    images = Column(JSON(none_as_null=True), nullable=True)

    # Maintained by the details stage, never by the listing upsert
    season_count = Column(Integer, default=0, nullable=False)
    episode_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    categories = relationship("Category", secondary=series_categories, viewonly=True)
    seasons = relationship(
        "Season", back_populates="series", cascade="all, delete-orphan",
        passive_deletes=True, order_by="Season.season_number",
    )

    __table_args__ = (
        UniqueConstraint("provider_id", "series_id", name="uq_series_provider_series"),
    )


class Season(Base):
    __tablename__ = "seasons"

    id = Column(Integer, primary_key=True, index=True)
    series_id = Column(Integer, ForeignKey("series.id", ondelete="CASCADE"), nullable=False)
    season_number = Column(Integer, nullable=False)
    name = Column(String, nullable=True)
    cover = Column(Text, nullable=True)
    air_date = Column(Date, nullable=True)
    overview = Column(Text, nullable=True)
    episode_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    series = relationship("Series", back_populates="seasons")
    episodes = relationship(
        "Episode", back_populates="season", cascade="all, delete-orphan",
        passive_deletes=True, order_by="Episode.episode_num",
    )

    __table_args__ = (
        UniqueConstraint("series_id", "season_number", name="uq_seasons_series_number"),
    )


class Episode(Base):
    __tablename__ = "episodes"

    id = Column(Integer, primary_key=True, index=True)
    season_id = Column(Integer, ForeignKey("seasons.id", ondelete="CASCADE"), nullable=False)
    episode_id = Column(Integer, nullable=True)  # Xtream episode id (used for stream URL)
    episode_num = Column(Integer, nullable=False)
    title = Column(String, nullable=True)
    plot = Column(Text, nullable=True)
    cover = Column(Text, nullable=True)
    duration_secs = Column(Integer, nullable=True)
    duration = Column(String, nullable=True)
    container_extension = Column(String, nullable=True)
    tmdb_id = Column(String, nullable=True)
    rating = Column(Numeric(4, 2), nullable=True)
    air_date = Column(Date, nullable=True)
    tmdb_enriched = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    season = relationship("Season", back_populates="episodes")

    __table_args__ = (
        UniqueConstraint("season_id", "episode_num", name="uq_episodes_season_number"),
    )
