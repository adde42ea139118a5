from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    PROJECT_NAME: str = "Xtream Catalog Sync"
    VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./catalog.db"

    # Redis / Celery
    REDIS_URL: str = "redis://localhost:6379/0"
    TIMEZONE: str = "UTC"

    # Xtream API
    XTREAM_TIMEOUT: float = 30.0
    XTREAM_MAX_RETRIES: int = 3
    XTREAM_RETRY_BASE_DELAY: float = 10.0
    XTREAM_RETRY_JITTER: float = 2.0
    XTREAM_USER_AGENT: str = "XtreamCatalogSync/1.0"

    # Sync pipeline
    SYNC_BATCH_SIZE: int = 500
    SYNC_CONTENT_TIMEOUT: float = 600.0  # 10 minutes for live/movies/series fan-out
    SERIES_DETAILS_CONCURRENCY: int = 10
    SERIES_DETAILS_TIMEOUT: float = 60.0
    SERIES_DETAILS_CHUNK_SIZE: int = 100
    SERIES_DETAILS_BATCH_SIZE: int = 50
    SERIES_DETAILS_ENQUEUE_DELAY: int = 5
    MOVIE_DETAILS_CONCURRENCY: int = 10
    MOVIE_DETAILS_TIMEOUT: float = 30.0

    # TMDB enrichment
    TMDB_ENABLED: bool = False
    TMDB_API_TOKEN: Optional[str] = None
    TMDB_BASE_URL: str = "https://api.themoviedb.org/3"
    TMDB_IMAGE_BASE_URL: str = "https://image.tmdb.org/t/p"
    TMDB_LANGUAGE: str = "en-US"
    TMDB_TIMEOUT: float = 10.0
    TMDB_MAX_RETRIES: int = 2
    TMDB_RETRY_BACKOFF: float = 1.0

    # EPG
    EPG_SYNC_INTERVAL_HOURS: int = 6
    EPG_CLEANUP_HOURS: int = 6
    EPG_NOW_TTL: int = 60
    EPG_CONCURRENCY: int = 5
    EPG_CHANNEL_TIMEOUT: float = 30.0
    EPG_SHORT_LIMIT: int = 20
    EPG_CACHE_BACKEND: str = "memory"  # "memory" or "redis"

    # Stream proxy
    PROXY_CACHE_TTL: int = 300
    PROXY_SWEEP_INTERVAL: float = 60.0
    PROXY_CONNECT_TIMEOUT: float = 10.0
    PROXY_RECEIVE_TIMEOUT: float = 30.0
    PROXY_MAX_REDIRECTS: int = 5

    class Config:
        env_file = ".env"

settings = Settings()
