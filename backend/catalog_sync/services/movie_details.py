"""
Per-movie detail enrichment.

The panel's ``get_vod_info`` answer is authoritative for every field it
fills; TMDB then backfills what is still empty when the movie has a TMDB id.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, select

from catalog_sync.core.config import settings
from catalog_sync.core.errors import CatalogError, MovieNotFoundError
from catalog_sync.models.content import Movie
from catalog_sync.services.details_pool import run_bounded
from catalog_sync.services.tmdb import (
    TmdbClient,
    fill_gaps,
    format_runtime,
    needs_tmdb_enrichment,
    parse_movie_response,
)
from catalog_sync.utils import (
    is_blank,
    normalize_backdrop,
    parse_decimal,
    parse_int,
    parse_year,
    to_str_or_none,
)

logger = logging.getLogger(__name__)

SNAPSHOT_FIELDS = ("tmdb_id", "plot", "cast", "director", "tagline", "content_rating", "images")


@dataclass
class MovieDetailsSummary:
    succeeded: int = 0
    failed: int = 0
    updated: int = 0
    failed_ids: Optional[List[int]] = None

    def as_dict(self) -> Dict[str, int]:
        return {"succeeded": self.succeeded, "failed": self.failed, "updated": self.updated}


def parse_vod_info(payload: Any) -> Dict[str, Any]:
    """Movie attributes from a ``get_vod_info`` answer, empty values dropped."""
    if not isinstance(payload, dict):
        return {}
    info = payload.get("info") if isinstance(payload.get("info"), dict) else {}
    movie_data = payload.get("movie_data") if isinstance(payload.get("movie_data"), dict) else {}
    attrs = {
        "title": to_str_or_none(info.get("name")),
        "plot": to_str_or_none(info.get("plot") or info.get("description")),
        "cast": to_str_or_none(info.get("cast")),
        "director": to_str_or_none(info.get("director")),
        "genre": to_str_or_none(info.get("genre")),
        "duration": to_str_or_none(info.get("duration")) or format_runtime(parse_int(info.get("runtime"))),
        "duration_secs": parse_int(info.get("duration_secs")),
        "rating": parse_decimal(info.get("rating")),
        "rating_5based": parse_decimal(info.get("rating_5based")),
        "year": parse_year(info.get("releasedate") or info.get("release_date")),
        "tmdb_id": to_str_or_none(info.get("tmdb_id")),
        "imdb_id": to_str_or_none(info.get("kinopoisk_url")),
        "youtube_trailer": to_str_or_none(info.get("youtube_trailer")),
        "backdrop_path": normalize_backdrop(info.get("backdrop_path")),
        "stream_icon": to_str_or_none(info.get("cover_big") or info.get("movie_image")),
        "container_extension": to_str_or_none(movie_data.get("container_extension")),
    }
    return {key: value for key, value in attrs.items() if not is_blank(value)}


def _load_movie(session_factory, movie_id: int):
    with session_factory() as db:
        movie = db.get(Movie, movie_id)
        if movie is None:
            raise MovieNotFoundError(movie_id)
        return movie.stream_id, {name: getattr(movie, name) for name in SNAPSHOT_FIELDS}


def _store_movie_details(session_factory, movie_id: int, vod_attrs: Dict, tmdb_attrs: Dict) -> List[str]:
    db = session_factory()
    try:
        movie = db.get(Movie, movie_id)
        if movie is None:
            raise MovieNotFoundError(movie_id)
        written = []
        for key, value in vod_attrs.items():
            if getattr(movie, key) != value:
                setattr(movie, key, value)
                written.append(key)
        written.extend(fill_gaps(movie, tmdb_attrs))
        if written:
            db.commit()
        return written
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


async def sync_movie_details(movie_id: int, *, session_factory, client, tmdb: Optional[TmdbClient] = None) -> List[str]:
    """Enrich one movie. Returns the names of the columns that changed."""
    stream_id, current = await asyncio.to_thread(_load_movie, session_factory, movie_id)

    vod_attrs = parse_vod_info(await client.get_vod_info(stream_id))

    tmdb_attrs: Dict[str, Any] = {}
    tmdb_id = vod_attrs.get("tmdb_id") or to_str_or_none(current["tmdb_id"])
    if tmdb_id and tmdb is not None and tmdb.is_configured:
        merged = {name: vod_attrs.get(name, value) for name, value in current.items()}
        if needs_tmdb_enrichment(merged):
            try:
                tmdb_attrs = parse_movie_response(await tmdb.get_movie(tmdb_id))
            except CatalogError as e:
                logger.warning(f"TMDB lookup of movie {tmdb_id} failed: {e}")

    written = await asyncio.to_thread(_store_movie_details, session_factory, movie_id, vod_attrs, tmdb_attrs)
    if written:
        logger.debug(f"Movie {movie_id}: updated {', '.join(written)}")
    return written


def movie_ids_for_provider(db, provider_id: int, only_missing: bool = False) -> List[int]:
    query = select(Movie.id).where(Movie.provider_id == provider_id).order_by(Movie.id)
    if only_missing:
        query = query.where(or_(Movie.plot.is_(None), Movie.cast.is_(None), Movie.director.is_(None)))
    return list(db.scalars(query))


async def sync_all_movie_details(
    provider_id: int,
    *,
    session_factory,
    client,
    tmdb: Optional[TmdbClient] = None,
    movie_ids: Optional[List[int]] = None,
    max_concurrency: Optional[int] = None,
    timeout: Optional[float] = None,
    chunk_size: Optional[int] = None,
) -> MovieDetailsSummary:
    """Run ``sync_movie_details`` over the provider's movies lacking details."""
    max_concurrency = max_concurrency or settings.MOVIE_DETAILS_CONCURRENCY
    timeout = settings.MOVIE_DETAILS_TIMEOUT if timeout is None else timeout
    chunk_size = chunk_size or settings.SERIES_DETAILS_CHUNK_SIZE

    if movie_ids is None:
        with session_factory() as db:
            movie_ids = movie_ids_for_provider(db, provider_id, only_missing=True)

    summary = MovieDetailsSummary(failed_ids=[])
    if not movie_ids:
        return summary

    logger.info(f"Syncing details for {len(movie_ids)} movies of provider {provider_id}")

    async def worker(movie_id: int) -> List[str]:
        return await sync_movie_details(movie_id, session_factory=session_factory, client=client, tmdb=tmdb)

    outcomes = await run_bounded(
        movie_ids, worker,
        max_concurrency=max_concurrency, timeout=timeout, chunk_size=chunk_size, label="Movie",
    )
    for movie_id, result in outcomes:
        if isinstance(result, list):
            summary.succeeded += 1
            if result:
                summary.updated += 1
        else:
            summary.failed += 1
            summary.failed_ids.append(movie_id)

    logger.info(
        f"Movie details for provider {provider_id}: {summary.succeeded} ok, "
        f"{summary.updated} updated, {summary.failed} failed"
    )
    return summary
