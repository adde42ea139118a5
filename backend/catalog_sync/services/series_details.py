import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from sqlalchemy import func, select

from catalog_sync.core.config import settings
from catalog_sync.core.errors import CatalogError, SeriesNotFoundError
from catalog_sync.models.content import Episode, Season, Series
from catalog_sync.services.details_pool import run_bounded
from catalog_sync.services.reconcile import Reconciler, SeriesTreeResult, group_episodes
from catalog_sync.services.tmdb import (
    TmdbClient,
    fill_gaps,
    needs_tmdb_enrichment,
    parse_season_episodes,
    parse_series_response,
)
from catalog_sync.utils import is_blank, normalize_backdrop, to_str_or_none

logger = logging.getLogger(__name__)

# Columns TMDB can backfill on a series
TMDB_FIELDS = (
    "plot", "cast", "director", "genre", "youtube_trailer", "backdrop_path", "cover",
    "rating", "year", "tagline", "content_rating", "images",
)


@dataclass
class DetailResult:
    seasons: int = 0
    episodes: int = 0


@dataclass
class DetailsSummary:
    succeeded: int = 0
    failed: int = 0
    seasons: int = 0
    episodes: int = 0
    failed_ids: Optional[List[int]] = None

    def as_dict(self) -> Dict[str, int]:
        return {
            "succeeded": self.succeeded,
            "failed": self.failed,
            "seasons": self.seasons,
            "episodes": self.episodes,
        }


@dataclass
class _SeriesSnapshot:
    upstream_id: int
    name: str
    year: Optional[int]
    tmdb_id: Optional[str]
    fields: Dict[str, Any] = field(default_factory=dict)
    enriched_seasons: Set[int] = field(default_factory=set)


def _info_gaps(info: Dict) -> Dict:
    return {
        "plot": to_str_or_none(info.get("plot")),
        "cast": to_str_or_none(info.get("cast")),
        "director": to_str_or_none(info.get("director")),
        "genre": to_str_or_none(info.get("genre")),
        "youtube_trailer": to_str_or_none(info.get("youtube_trailer")),
        "backdrop_path": normalize_backdrop(info.get("backdrop_path")),
    }


def _load_series(session_factory, series_id: int) -> _SeriesSnapshot:
    with session_factory() as db:
        series = db.get(Series, series_id)
        if series is None:
            raise SeriesNotFoundError(series_id)
        numbers = (
            select(Season.season_number)
            .join(Episode, Episode.season_id == Season.id)
            .where(Season.series_id == series_id)
            .distinct()
        )
        stored = set(db.scalars(numbers))
        pending = set(db.scalars(numbers.where(Episode.tmdb_enriched.is_(False))))
        return _SeriesSnapshot(
            upstream_id=series.series_id,
            name=series.name,
            year=series.year,
            tmdb_id=series.tmdb_id,
            fields={name: getattr(series, name) for name in TMDB_FIELDS},
            enriched_seasons=stored - pending,
        )


async def _from_tmdb(what: str, coro) -> Any:
    try:
        return await coro
    except CatalogError as e:
        logger.warning(f"TMDB lookup of {what} failed: {e}")
        return None


def _store_series_details(session_factory, series_id: int, payload: Dict, info_attrs: Dict,
                          tmdb_attrs: Dict, season_attrs: Dict[int, Dict[int, Dict]]) -> SeriesTreeResult:
    db = session_factory()
    try:
        series = db.get(Series, series_id)
        if series is None:
            raise SeriesNotFoundError(series_id)
        fill_gaps(series, info_attrs)
        filled = fill_gaps(series, tmdb_attrs)
        if filled:
            logger.debug(f"Series {series_id}: TMDB filled {', '.join(filled)}")
        result = Reconciler(db, series.provider_id).reconcile_series_tree(series, payload)
        if season_attrs:
            _enrich_episodes(db, series_id, season_attrs)
            db.commit()
        return result
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def _enrich_episodes(db, series_id: int, season_attrs: Dict[int, Dict[int, Dict]]):
    rows = db.execute(
        select(Episode, Season.season_number)
        .join(Season, Episode.season_id == Season.id)
        .where(
            Season.series_id == series_id,
            Season.season_number.in_(list(season_attrs)),
            Episode.tmdb_enriched.is_(False),
        )
    ).all()
    for episode, number in rows:
        attrs = season_attrs[number].get(episode.episode_num)
        if attrs:
            fill_gaps(episode, attrs)
            episode.tmdb_enriched = True


async def sync_series_details(series_id: int, *, session_factory, client, tmdb: Optional[TmdbClient] = None) -> DetailResult:
    """Fetch seasons and episodes of one series and reconcile them.

    When a TMDB id is known, TMDB fills whatever the panel left empty on the
    series, and on episodes of seasons not enriched yet. All network calls
    happen before the first write, so a failed panel fetch leaves the stored
    tree untouched; TMDB failures are logged and skipped.
    """
    snapshot = await asyncio.to_thread(_load_series, session_factory, series_id)

    payload = await client.get_series_info(snapshot.upstream_id)
    payload = payload if isinstance(payload, dict) else {}
    info = payload.get("info") if isinstance(payload.get("info"), dict) else {}

    info_attrs = _info_gaps(info)
    tmdb_id = to_str_or_none(info.get("tmdb_id") or info.get("tmdb"))
    if tmdb_id is None and is_blank(snapshot.tmdb_id) and tmdb is not None:
        tmdb_id = await tmdb.find_series_id(snapshot.name, snapshot.year)
    info_attrs["tmdb_id"] = tmdb_id

    tmdb_attrs: Dict[str, Any] = {}
    season_attrs: Dict[int, Dict[int, Dict]] = {}
    known_id = to_str_or_none(snapshot.tmdb_id) or tmdb_id
    if known_id and tmdb is not None and tmdb.is_configured:
        current = {
            name: info_attrs.get(name) if is_blank(value) else value
            for name, value in snapshot.fields.items()
        }
        if needs_tmdb_enrichment(current):
            tmdb_attrs = parse_series_response(await _from_tmdb(f"series {known_id}", tmdb.get_series(known_id)))
        for number in sorted(set(group_episodes(payload)) - snapshot.enriched_seasons):
            data = await _from_tmdb(f"season {number} of series {known_id}", tmdb.get_season(known_id, number))
            episodes = parse_season_episodes(data)
            if episodes:
                season_attrs[number] = episodes

    result = await asyncio.to_thread(
        _store_series_details, session_factory, series_id, payload, info_attrs, tmdb_attrs, season_attrs
    )
    logger.debug(f"Series {series_id}: {result.seasons} seasons, {result.episodes} episodes")
    return DetailResult(seasons=result.seasons, episodes=result.episodes)


def series_ids_for_provider(db, provider_id: int, only_missing: bool = False) -> List[int]:
    query = select(Series.id).where(Series.provider_id == provider_id).order_by(Series.id)
    if only_missing:
        query = query.where(Series.episode_count == 0)
    return list(db.scalars(query))


def series_details_progress(db, provider_id: int) -> Dict[str, int]:
    total = db.scalar(select(func.count(Series.id)).where(Series.provider_id == provider_id))
    synced = db.scalar(
        select(func.count(Series.id)).where(Series.provider_id == provider_id, Series.episode_count > 0)
    )
    return {"total": total or 0, "synced": synced or 0}


async def sync_all_series_details(
    provider_id: int,
    *,
    session_factory,
    client,
    tmdb: Optional[TmdbClient] = None,
    series_ids: Optional[List[int]] = None,
    max_concurrency: Optional[int] = None,
    timeout: Optional[float] = None,
    chunk_size: Optional[int] = None,
) -> DetailsSummary:
    """Run ``sync_series_details`` over many series with bounded concurrency.

    Each series gets its own timeout; failures and timeouts are counted and
    never abort the pool.
    """
    max_concurrency = max_concurrency or settings.SERIES_DETAILS_CONCURRENCY
    timeout = settings.SERIES_DETAILS_TIMEOUT if timeout is None else timeout
    chunk_size = chunk_size or settings.SERIES_DETAILS_CHUNK_SIZE

    if series_ids is None:
        with session_factory() as db:
            series_ids = series_ids_for_provider(db, provider_id)

    summary = DetailsSummary(failed_ids=[])
    if not series_ids:
        return summary

    logger.info(f"Syncing details for {len(series_ids)} series of provider {provider_id}")

    async def worker(series_id: int) -> DetailResult:
        return await sync_series_details(series_id, session_factory=session_factory, client=client, tmdb=tmdb)

    outcomes = await run_bounded(
        series_ids, worker,
        max_concurrency=max_concurrency, timeout=timeout, chunk_size=chunk_size, label="Series",
    )
    for series_id, result in outcomes:
        if isinstance(result, DetailResult):
            summary.succeeded += 1
            summary.seasons += result.seasons
            summary.episodes += result.episodes
        else:
            summary.failed += 1
            summary.failed_ids.append(series_id)

    logger.info(
        f"Series details for provider {provider_id}: {summary.succeeded} ok, {summary.failed} failed, "
        f"{summary.seasons} seasons, {summary.episodes} episodes"
    )
    return summary
