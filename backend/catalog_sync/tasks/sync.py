import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from catalog_sync.core.celery_app import celery_app
from catalog_sync.core.config import settings
from catalog_sync.core.errors import ProviderNotFoundError, StageError, SyncTimeoutError
from catalog_sync.db.session import SessionLocal
from catalog_sync.models.provider import Provider, SyncStatus
from catalog_sync.services.cleanup import cleanup_orphaned_user_data
from catalog_sync.services.movie_details import sync_all_movie_details
from catalog_sync.services.notifications import publish_sync_status
from catalog_sync.services.reconcile import (
    ReconcileResult,
    sync_categories,
    sync_live_channels,
    sync_movies,
    sync_series,
)
from catalog_sync.services.series_details import (
    series_ids_for_provider,
    sync_all_series_details,
)
from catalog_sync.services.tmdb import TmdbClient
from catalog_sync.services.xtream import XtreamClient
from catalog_sync.utils import chunked, utcnow

logger = logging.getLogger(__name__)


class SeriesDetailsMode(str, enum.Enum):
    SKIP = "skip"
    IMMEDIATE = "immediate"
    ENQUEUE = "enqueue"


@dataclass
class SyncOptions:
    series_details: SeriesDetailsMode = SeriesDetailsMode.SKIP
    batch_size: Optional[int] = None
    details_batch_size: Optional[int] = None


@dataclass
class SyncResult:
    live: int = 0
    movies: int = 0
    series: int = 0
    deleted: Dict[str, int] = field(default_factory=dict)
    details: Optional[Dict[str, Any]] = None
    orphans: Optional[Dict[str, int]] = None

    def counts(self) -> Dict[str, int]:
        return {"live": self.live, "movies": self.movies, "series": self.series}


def _set_status(session_factory, provider_id: int, status: SyncStatus, **fields):
    with session_factory() as db:
        provider = db.get(Provider, provider_id)
        if provider is None:
            logger.warning(f"Provider {provider_id} disappeared during sync, not marking it {status.value}")
            return
        provider.sync_status = status.value
        for key, value in fields.items():
            setattr(provider, key, value)
        db.commit()


def _fail(session_factory, notifier, provider_id: int, error: Exception):
    logger.error(f"Sync failed for provider {provider_id}: {error}")
    _set_status(session_factory, provider_id, SyncStatus.FAILED)
    notifier(provider_id, SyncStatus.FAILED.value)


async def sync_provider(
    provider_id: int,
    options: Optional[SyncOptions] = None,
    *,
    session_factory=SessionLocal,
    client: Optional[XtreamClient] = None,
    tmdb: Optional[TmdbClient] = None,
    notifier: Callable = publish_sync_status,
    enqueuer: Optional[Callable[[int, int], int]] = None,
    content_timeout: Optional[float] = None,
) -> SyncResult:
    """Full sync of one provider.

    Categories first, then live channels, movies and series concurrently,
    then the optional series details stage. The provider ends up
    ``completed`` with fresh counters only when every stage succeeded;
    otherwise it is ``failed`` and the first error is raised.
    """
    options = options or SyncOptions()
    mode = SeriesDetailsMode(options.series_details)
    content_timeout = settings.SYNC_CONTENT_TIMEOUT if content_timeout is None else content_timeout
    enqueuer = enqueuer or enqueue_series_details

    with session_factory() as db:
        provider = db.get(Provider, provider_id)
        if provider is None:
            raise ProviderNotFoundError(provider_id)
        if client is None:
            client = XtreamClient.for_provider(provider)
        provider.sync_status = SyncStatus.SYNCING.value
        db.commit()
    notifier(provider_id, SyncStatus.SYNCING.value)
    logger.info(f"Starting sync for provider {provider_id} (series details: {mode.value})")

    try:
        await sync_categories(provider_id, client, session_factory, options.batch_size)
    except Exception as e:
        _fail(session_factory, notifier, provider_id, e)
        raise

    units = asyncio.gather(
        sync_live_channels(provider_id, client, session_factory, options.batch_size),
        sync_movies(provider_id, client, session_factory, options.batch_size),
        sync_series(provider_id, client, session_factory, options.batch_size),
        return_exceptions=True,
    )
    try:
        live, movies, series = await asyncio.wait_for(units, timeout=content_timeout)
    except asyncio.TimeoutError:
        error = SyncTimeoutError(f"Content sync exceeded {content_timeout}s")
        _fail(session_factory, notifier, provider_id, error)
        raise error

    for outcome in (live, movies, series):
        if isinstance(outcome, BaseException):
            _fail(session_factory, notifier, provider_id, outcome)
            raise outcome

    result = SyncResult(
        live=live.upserted,
        movies=movies.upserted,
        series=series.upserted,
        deleted={"live": live.deleted, "movies": movies.deleted, "series": series.deleted},
    )

    try:
        result.details = await _series_details_stage(
            mode, provider_id, options, session_factory, client, tmdb, enqueuer
        )
    except Exception as e:
        error = e if isinstance(e, StageError) else StageError("series_details", e)
        _fail(session_factory, notifier, provider_id, error)
        raise error from e

    now = utcnow()
    _set_status(
        session_factory,
        provider_id,
        SyncStatus.COMPLETED,
        live_channels_count=result.live,
        movies_count=result.movies,
        series_count=result.series,
        live_synced_at=now,
        vod_synced_at=now,
        series_synced_at=now,
    )
    notifier(provider_id, SyncStatus.COMPLETED.value, result.counts())
    logger.info(
        f"Sync completed for provider {provider_id}: {result.live} live, "
        f"{result.movies} movies, {result.series} series"
    )

    try:
        with session_factory() as db:
            result.orphans = cleanup_orphaned_user_data(db)
    except Exception:
        logger.exception(f"Orphan sweep after sync of provider {provider_id} failed")
    return result


async def _series_details_stage(mode, provider_id, options, session_factory, client, tmdb, enqueuer):
    if mode is SeriesDetailsMode.SKIP:
        return None
    if mode is SeriesDetailsMode.IMMEDIATE:
        if tmdb is None:
            tmdb = TmdbClient()
        summary = await sync_all_series_details(
            provider_id, session_factory=session_factory, client=client, tmdb=tmdb
        )
        return summary.as_dict()
    batch_size = options.details_batch_size or settings.SERIES_DETAILS_BATCH_SIZE
    jobs = enqueuer(provider_id, batch_size)
    return {"batch_size": batch_size, "jobs": jobs}


def enqueue_series_details(provider_id: int, batch_size: Optional[int] = None, *,
                           session_factory=SessionLocal, delay: Optional[int] = None) -> int:
    """Schedule detail jobs for the provider's series without episodes.

    Jobs are staggered by ``delay`` seconds. Returns the number of jobs.
    """
    batch_size = batch_size or settings.SERIES_DETAILS_BATCH_SIZE
    delay = settings.SERIES_DETAILS_ENQUEUE_DELAY if delay is None else delay

    with session_factory() as db:
        series_ids = series_ids_for_provider(db, provider_id, only_missing=True)
    if not series_ids:
        logger.info(f"No series details to sync for provider {provider_id}")
        return 0

    batches: List[List[int]] = list(chunked(series_ids, batch_size))
    for index, batch in enumerate(batches):
        sync_series_details_task.apply_async(args=[provider_id, batch], countdown=index * delay)
    logger.info(
        f"Enqueued {len(batches)} series details jobs for {len(series_ids)} series "
        f"({batch_size} per job, {delay}s apart)"
    )
    return len(batches)


@celery_app.task
def sync_provider_task(provider_id: int, series_details: str = SeriesDetailsMode.SKIP.value):
    options = SyncOptions(series_details=SeriesDetailsMode(series_details))
    result = asyncio.run(sync_provider(provider_id, options))
    return {
        "counts": result.counts(),
        "deleted": result.deleted,
        "details": result.details,
        "orphans": result.orphans,
    }


@celery_app.task(bind=True, max_retries=5)
def sync_series_details_task(self, provider_id: int, series_ids: List[int]):
    db = SessionLocal()
    try:
        provider = db.get(Provider, provider_id)
        if provider is None:
            logger.warning(f"Provider {provider_id} disappeared, dropping series details job")
            return None
        client = XtreamClient.for_provider(provider)
    finally:
        db.close()

    summary = asyncio.run(
        sync_all_series_details(provider_id, client=client, tmdb=TmdbClient(),
                                session_factory=SessionLocal, series_ids=series_ids)
    )
    if summary.failed_ids and self.request.retries < self.max_retries:
        # Only the failed series go back in the queue: 1min, 2min, 4min... capped at 15min
        countdown = min(60 * 2 ** self.request.retries, 900)
        logger.info(f"Re-enqueueing {len(summary.failed_ids)} failed series in {countdown}s")
        raise self.retry(args=[provider_id, summary.failed_ids], countdown=countdown)
    return summary.as_dict()


@celery_app.task(bind=True, max_retries=3)
def sync_movie_details_task(self, provider_id: int, movie_ids: Optional[List[int]] = None):
    db = SessionLocal()
    try:
        provider = db.get(Provider, provider_id)
        if provider is None:
            logger.warning(f"Provider {provider_id} disappeared, dropping movie details job")
            return None
        client = XtreamClient.for_provider(provider)
    finally:
        db.close()

    summary = asyncio.run(
        sync_all_movie_details(provider_id, client=client, tmdb=TmdbClient(),
                               session_factory=SessionLocal, movie_ids=movie_ids)
    )
    if summary.failed_ids and self.request.retries < self.max_retries:
        countdown = min(60 * 2 ** self.request.retries, 900)
        logger.info(f"Re-enqueueing {len(summary.failed_ids)} failed movies in {countdown}s")
        raise self.retry(args=[provider_id, summary.failed_ids], countdown=countdown)
    return summary.as_dict()
