"""
Reconciliation of upstream catalog listings into local tables.

A listing is upserted by its natural key so local primary keys survive every
resync, category associations of the touched rows are rebuilt, and rows whose
key disappeared upstream are deleted. Live channels, movies and series share
one routine parameterized by an ``EntitySpec``; categories and the
season/episode tree of a single series have their own routines.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from sqlalchemy import String, Table, delete, func, select, update
from sqlalchemy.orm import Session

from catalog_sync.core.config import settings
from catalog_sync.core.errors import CatalogError, StageError
from catalog_sync.models.category import Category, CategoryType
from catalog_sync.models.content import (
    Episode,
    LiveChannel,
    Movie,
    Season,
    Series,
    live_channel_categories,
    movie_categories,
    series_categories,
)
from catalog_sync.utils import (
    chunked,
    is_blank,
    normalize_backdrop,
    parse_date,
    parse_decimal,
    parse_int,
    parse_year,
    to_str_or_none,
    unique_by,
    utcnow,
)

logger = logging.getLogger(__name__)

ADULT_KEYWORDS = (
    "adult", "adulto", "adultos",
    "xxx",
    "18+", "+18",
    "porn", "porno", "pornograph",
    "erotic", "erotico", "erotica",
    "onlyfans",
)

CATEGORY_JOIN_TABLES = {
    CategoryType.LIVE.value: (live_channel_categories, "live_channel_id"),
    CategoryType.VOD.value: (movie_categories, "movie_id"),
    CategoryType.SERIES.value: (series_categories, "series_id"),
}


def is_adult_category(name: Optional[str]) -> bool:
    if not isinstance(name, str):
        return False
    normalized = name.lower()
    return any(keyword in normalized for keyword in ADULT_KEYWORDS)


def build_live_row(item: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name": to_str_or_none(item.get("name")) or "Unknown",
        "num": parse_int(item.get("num")),
        "stream_icon": to_str_or_none(item.get("stream_icon")),
        "epg_channel_id": to_str_or_none(item.get("epg_channel_id")),
        "tv_archive": parse_int(item.get("tv_archive")) == 1,
        "tv_archive_duration": parse_int(item.get("tv_archive_duration")),
        "direct_source": to_str_or_none(item.get("direct_source")),
        "added": to_str_or_none(item.get("added")),
    }


def build_movie_row(item: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name": to_str_or_none(item.get("name")) or "Unknown",
        "title": to_str_or_none(item.get("title")),
        "year": parse_year(item.get("year")),
        "stream_icon": to_str_or_none(item.get("stream_icon")),
        "rating": parse_decimal(item.get("rating")),
        "rating_5based": parse_decimal(item.get("rating_5based")),
        "genre": to_str_or_none(item.get("genre")),
        "cast": to_str_or_none(item.get("cast")),
        "director": to_str_or_none(item.get("director")),
        "plot": to_str_or_none(item.get("plot")),
        "container_extension": to_str_or_none(item.get("container_extension")),
        "duration_secs": parse_int(item.get("duration_secs")),
        "duration": to_str_or_none(item.get("duration")),
        "tmdb_id": to_str_or_none(item.get("tmdb_id") or item.get("tmdb")),
        "imdb_id": to_str_or_none(item.get("imdb_id")),
        "backdrop_path": normalize_backdrop(item.get("backdrop_path")),
        "youtube_trailer": to_str_or_none(item.get("youtube_trailer")),
    }


def build_series_row(item: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name": to_str_or_none(item.get("name")) or "Unknown",
        "title": to_str_or_none(item.get("title")),
        "year": parse_year(item.get("year") or item.get("releaseDate")),
        "cover": to_str_or_none(item.get("cover")),
        "rating": parse_decimal(item.get("rating")),
        "rating_5based": parse_decimal(item.get("rating_5based")),
        "genre": to_str_or_none(item.get("genre")),
        "cast": to_str_or_none(item.get("cast")),
        "director": to_str_or_none(item.get("director")),
        "plot": to_str_or_none(item.get("plot")),
        "backdrop_path": normalize_backdrop(item.get("backdrop_path")),
        "youtube_trailer": to_str_or_none(item.get("youtube_trailer")),
        "tmdb_id": to_str_or_none(item.get("tmdb_id") or item.get("tmdb")),
    }


@dataclass(frozen=True)
class EntitySpec:
    """How one content type maps from an upstream listing onto its table."""

    kind: str
    model: type
    key_column: str
    upstream_key: str
    build_row: Callable[[Dict[str, Any]], Dict[str, Any]]
    join_table: Table
    join_column: str
    category_type: str
    # Never overwritten by a listing upsert
    preserved: Tuple[str, ...] = ()
    # Keep the local value when upstream sends nothing
    enrichable: Tuple[str, ...] = ()


LIVE_SPEC = EntitySpec(
    kind="live",
    model=LiveChannel,
    key_column="stream_id",
    upstream_key="stream_id",
    build_row=build_live_row,
    join_table=live_channel_categories,
    join_column="live_channel_id",
    category_type=CategoryType.LIVE.value,
)

MOVIE_SPEC = EntitySpec(
    kind="movies",
    model=Movie,
    key_column="stream_id",
    upstream_key="stream_id",
    build_row=build_movie_row,
    join_table=movie_categories,
    join_column="movie_id",
    category_type=CategoryType.VOD.value,
    enrichable=(
        "plot", "cast", "director", "genre", "youtube_trailer", "backdrop_path",
        "tmdb_id", "imdb_id", "tagline", "content_rating",
        "stream_icon", "rating", "year", "duration_secs", "duration",
    ),
)

SERIES_SPEC = EntitySpec(
    kind="series",
    model=Series,
    key_column="series_id",
    upstream_key="series_id",
    build_row=build_series_row,
    join_table=series_categories,
    join_column="series_id",
    category_type=CategoryType.SERIES.value,
    preserved=("season_count", "episode_count"),
    enrichable=(
        "plot", "cast", "director", "genre", "youtube_trailer", "backdrop_path",
        "tmdb_id", "cover", "rating", "year",
    ),
)

EPISODE_ENRICHABLE = ("title", "plot", "cover", "duration_secs", "duration")


@dataclass
class ReconcileResult:
    upserted: int = 0
    deleted: int = 0


@dataclass
class SeriesTreeResult:
    seasons: int = 0
    episodes: int = 0


def as_listing(payload: Any) -> List[Dict[str, Any]]:
    """Panels return ``[]``, ``{}`` or ``null`` for empty listings."""
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]
    if isinstance(payload, dict):
        return [item for item in payload.values() if isinstance(item, dict)]
    return []


def dialect_insert(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
        return insert
    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
        return insert
    raise NotImplementedError(f"Upsert not supported for dialect {dialect}")


def _category_external_ids(item: Dict[str, Any]) -> List[str]:
    ids = item.get("category_ids")
    if not isinstance(ids, list) or not ids:
        ids = [item.get("category_id")]
    return [str(i) for i in ids if not is_blank(i)]


class Reconciler:
    def __init__(self, db: Session, provider_id: int, batch_size: Optional[int] = None):
        self.db = db
        self.provider_id = provider_id
        self.batch_size = batch_size or settings.SYNC_BATCH_SIZE
        self._insert = dialect_insert(db)

    def category_lookup(self, category_type: str) -> Dict[str, int]:
        rows = self.db.execute(
            select(Category.external_id, Category.id).where(
                Category.provider_id == self.provider_id,
                Category.type == category_type,
            )
        )
        return {external_id: id_ for external_id, id_ in rows}

    def _upsert(
        self,
        model: type,
        rows: List[Dict[str, Any]],
        conflict_cols: Sequence[str],
        returning: Sequence[str],
        preserved: Iterable[str] = (),
        enrichable: Iterable[str] = (),
    ) -> List[Tuple]:
        table = model.__table__
        skip = {"id", "created_at", *conflict_cols, *preserved}
        enrichable = set(enrichable)

        stmt = self._insert(table).values(rows)
        excluded = stmt.excluded
        set_clause = {}
        for column in table.c:
            if column.name in skip or column.name not in rows[0]:
                continue
            new = getattr(excluded, column.name)
            if column.name in enrichable:
                if isinstance(column.type, String):
                    new = func.nullif(new, "")
                new = func.coalesce(new, column)
            set_clause[column.name] = new
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c[c] for c in conflict_cols],
            set_=set_clause,
        ).returning(*[table.c[c] for c in returning])
        return list(self.db.execute(stmt))

    def _rebuild_joins(self, spec: EntitySpec, batch: List[Dict[str, Any]], key_to_id: Dict[int, int],
                       lookup: Dict[str, int]):
        join_col = spec.join_table.c[spec.join_column]
        self.db.execute(delete(spec.join_table).where(join_col.in_(list(key_to_id.values()))))

        pairs: Set[Tuple[int, int]] = set()
        for item in batch:
            entity_id = key_to_id.get(parse_int(item.get(spec.upstream_key)))
            if entity_id is None:
                continue
            for external_id in _category_external_ids(item):
                category_id = lookup.get(external_id)
                # Listings may reference categories the panel no longer lists
                if category_id is not None:
                    pairs.add((entity_id, category_id))
        if pairs:
            self.db.execute(
                spec.join_table.insert(),
                [{spec.join_column: e, "category_id": c} for e, c in sorted(pairs)],
            )

    def reconcile(self, spec: EntitySpec, listing: Iterable[Dict[str, Any]]) -> ReconcileResult:
        items = [item for item in listing if parse_int(item.get(spec.upstream_key)) is not None]
        items = unique_by(items, key=lambda item: parse_int(item.get(spec.upstream_key)))
        lookup = self.category_lookup(spec.category_type)
        now = utcnow()

        seen: Set[int] = set()
        for batch in chunked(items, self.batch_size):
            rows = []
            for item in batch:
                row = spec.build_row(item)
                row.update({
                    "provider_id": self.provider_id,
                    spec.key_column: parse_int(item.get(spec.upstream_key)),
                    "created_at": now,
                    "updated_at": now,
                })
                rows.append(row)
            returned = self._upsert(
                spec.model,
                rows,
                conflict_cols=("provider_id", spec.key_column),
                returning=("id", spec.key_column),
                preserved=spec.preserved,
                enrichable=spec.enrichable,
            )
            key_to_id = {key: id_ for id_, key in returned}
            self._rebuild_joins(spec, batch, key_to_id, lookup)
            seen.update(key_to_id)

        deleted = self._delete_absent(spec, seen)
        self.db.commit()
        logger.info(
            f"Reconciled {spec.kind} for provider {self.provider_id}: "
            f"{len(seen)} upserted, {deleted} removed"
        )
        return ReconcileResult(upserted=len(seen), deleted=deleted)

    def _delete_absent(self, spec: EntitySpec, seen: Set[int]) -> int:
        model = spec.model
        key_col = getattr(model, spec.key_column)
        existing = self.db.execute(
            select(model.id, key_col).where(model.provider_id == self.provider_id)
        )
        orphan_ids = [id_ for id_, key in existing if key not in seen]
        join_col = spec.join_table.c[spec.join_column]
        for chunk in chunked(orphan_ids, self.batch_size):
            self.db.execute(delete(spec.join_table).where(join_col.in_(chunk)))
            self.db.execute(delete(model).where(model.id.in_(chunk)))
        return len(orphan_ids)

    def reconcile_categories(
        self,
        live: Iterable[Dict[str, Any]],
        vod: Iterable[Dict[str, Any]],
        series: Iterable[Dict[str, Any]],
    ) -> ReconcileResult:
        result = ReconcileResult()
        for category_type, listing in (
            (CategoryType.LIVE.value, live),
            (CategoryType.VOD.value, vod),
            (CategoryType.SERIES.value, series),
        ):
            upserted, deleted = self._reconcile_category_type(category_type, listing)
            result.upserted += upserted
            result.deleted += deleted
        self.db.commit()
        logger.info(
            f"Reconciled categories for provider {self.provider_id}: "
            f"{result.upserted} upserted, {result.deleted} removed"
        )
        return result

    def _reconcile_category_type(self, category_type: str, listing: Iterable[Dict[str, Any]]) -> Tuple[int, int]:
        items = [item for item in listing if to_str_or_none(item.get("category_id"))]
        items = unique_by(items, key=lambda item: to_str_or_none(item.get("category_id")))
        now = utcnow()

        lookup: Dict[str, int] = {}
        for batch in chunked(items, self.batch_size):
            rows = []
            for item in batch:
                name = to_str_or_none(item.get("category_name")) or "Unknown"
                rows.append({
                    "provider_id": self.provider_id,
                    "external_id": to_str_or_none(item.get("category_id")),
                    "type": category_type,
                    "name": name,
                    "is_adult": is_adult_category(name),
                    "created_at": now,
                    "updated_at": now,
                })
            returned = self._upsert(
                Category,
                rows,
                conflict_cols=("provider_id", "external_id", "type"),
                returning=("id", "external_id"),
            )
            lookup.update({external_id: id_ for id_, external_id in returned})

        # Parents are resolved once every category of the type has an id
        parents = []
        for item in items:
            parent_external = to_str_or_none(item.get("parent_id"))
            parent_id = lookup.get(parent_external) if parent_external not in (None, "0") else None
            category_id = lookup[to_str_or_none(item.get("category_id"))]
            if parent_id == category_id:
                parent_id = None
            parents.append({"id": category_id, "parent_id": parent_id})
        if parents:
            self.db.execute(update(Category), parents)

        existing = self.db.execute(
            select(Category.id, Category.external_id).where(
                Category.provider_id == self.provider_id,
                Category.type == category_type,
            )
        )
        orphan_ids = [id_ for id_, external_id in existing if external_id not in lookup]
        join_table, _ = CATEGORY_JOIN_TABLES[category_type]
        for chunk in chunked(orphan_ids, self.batch_size):
            self.db.execute(delete(join_table).where(join_table.c.category_id.in_(chunk)))
            self.db.execute(
                update(Category).where(Category.parent_id.in_(chunk)).values(parent_id=None)
            )
            self.db.execute(delete(Category).where(Category.id.in_(chunk)))
        return len(lookup), len(orphan_ids)

    def reconcile_series_tree(self, series: Series, info: Dict[str, Any]) -> SeriesTreeResult:
        """Upsert the seasons and episodes of one series from ``get_series_info``.

        Seasons only present as keys of the episodes map are created too.
        Seasons and episodes missing upstream are deleted, and the series'
        season/episode counters are refreshed.
        """
        now = utcnow()
        seasons_data = info.get("seasons") if isinstance(info.get("seasons"), list) else []
        seasons: Dict[int, Dict[str, Any]] = {}
        for season in seasons_data:
            if not isinstance(season, dict):
                continue
            number = parse_int(season.get("season_number"))
            if number is None or number in seasons:
                continue
            seasons[number] = {
                "series_id": series.id,
                "season_number": number,
                "name": to_str_or_none(season.get("name")),
                "cover": to_str_or_none(season.get("cover") or season.get("cover_big")),
                "air_date": parse_date(season.get("air_date")),
                "overview": to_str_or_none(season.get("overview")),
                "episode_count": parse_int(season.get("episode_count")) or 0,
                "created_at": now,
                "updated_at": now,
            }
        episodes_by_season = group_episodes(info)
        for number in episodes_by_season:
            if number not in seasons:
                seasons[number] = {
                    "series_id": series.id,
                    "season_number": number,
                    "name": f"Season {number}",
                    "cover": None,
                    "air_date": None,
                    "overview": None,
                    "episode_count": 0,
                    "created_at": now,
                    "updated_at": now,
                }

        season_ids: Dict[int, int] = {}
        if seasons:
            returned = self._upsert(
                Season,
                list(seasons.values()),
                conflict_cols=("series_id", "season_number"),
                returning=("id", "season_number"),
            )
            season_ids = {number: id_ for id_, number in returned}
        self.db.execute(
            delete(Season).where(
                Season.series_id == series.id,
                Season.season_number.notin_(list(season_ids)),
            )
        )

        episode_total = 0
        for number, season_id in season_ids.items():
            episode_total += self._reconcile_episodes(season_id, episodes_by_season.get(number, []), now)

        series.season_count = len(season_ids)
        series.episode_count = episode_total
        self.db.commit()
        return SeriesTreeResult(seasons=len(season_ids), episodes=episode_total)

    def _reconcile_episodes(self, season_id: int, episodes: List[Dict[str, Any]], now) -> int:
        episodes = [ep for ep in episodes if parse_int(ep.get("episode_num")) is not None]
        episodes = unique_by(episodes, key=lambda ep: parse_int(ep.get("episode_num")), keep_first=True)
        rows = []
        for ep in episodes:
            info = ep.get("info") if isinstance(ep.get("info"), dict) else {}
            rows.append({
                "season_id": season_id,
                "episode_id": parse_int(ep.get("id")),
                "episode_num": parse_int(ep.get("episode_num")),
                "title": to_str_or_none(ep.get("title")),
                "plot": to_str_or_none(info.get("plot")),
                "cover": to_str_or_none(info.get("cover_big") or info.get("movie_image")),
                "duration_secs": parse_int(info.get("duration_secs")),
                "duration": to_str_or_none(info.get("duration")),
                "container_extension": to_str_or_none(ep.get("container_extension")),
                "tmdb_enriched": False,
                "created_at": now,
                "updated_at": now,
            })

        numbers = []
        for batch in chunked(rows, self.batch_size):
            returned = self._upsert(
                Episode,
                batch,
                conflict_cols=("season_id", "episode_num"),
                returning=("id", "episode_num"),
                preserved=("tmdb_enriched",),
                enrichable=EPISODE_ENRICHABLE,
            )
            numbers.extend(number for _, number in returned)
        self.db.execute(
            delete(Episode).where(
                Episode.season_id == season_id,
                Episode.episode_num.notin_(numbers),
            )
        )
        self.db.execute(update(Season).where(Season.id == season_id).values(episode_count=len(numbers)))
        return len(numbers)


def group_episodes(info: Dict[str, Any]) -> Dict[int, List[Dict[str, Any]]]:
    """Episodes of a ``get_series_info`` payload keyed by season number."""
    episodes_map = info.get("episodes")
    if isinstance(episodes_map, list):
        # Some panels send episodes as a list of per-season lists
        grouped: Dict[str, List] = {}
        for group in episodes_map:
            for ep in group if isinstance(group, list) else [group]:
                if isinstance(ep, dict):
                    grouped.setdefault(str(ep.get("season")), []).append(ep)
        episodes_map = grouped
    elif not isinstance(episodes_map, dict):
        episodes_map = {}

    by_season: Dict[int, List[Dict[str, Any]]] = {}
    for season_key, episodes in episodes_map.items():
        number = parse_int(season_key)
        if number is None:
            continue
        by_season.setdefault(number, []).extend(
            ep for ep in (episodes if isinstance(episodes, list) else []) if isinstance(ep, dict)
        )
    return by_season


async def _fetch(stage: str, coro):
    try:
        return await coro
    except CatalogError as e:
        logger.error(f"Fetching {stage} failed: {e}")
        raise StageError(stage, e) from e


def _reconcile_categories(provider_id, session_factory, batch_size, live, vod, series) -> ReconcileResult:
    db = session_factory()
    try:
        return Reconciler(db, provider_id, batch_size).reconcile_categories(
            as_listing(live), as_listing(vod), as_listing(series)
        )
    except Exception as e:
        db.rollback()
        raise StageError("categories", e) from e
    finally:
        db.close()


async def sync_categories(provider_id: int, client, session_factory, batch_size: Optional[int] = None) -> ReconcileResult:
    """Fetch all three category lists, then reconcile them together.

    A failed fetch raises ``StageError`` before anything is written. The
    database work runs in a worker thread so the event loop stays free.
    """
    live = await _fetch("categories", client.get_live_categories())
    vod = await _fetch("categories", client.get_vod_categories())
    series = await _fetch("categories", client.get_series_categories())

    return await asyncio.to_thread(
        _reconcile_categories, provider_id, session_factory, batch_size, live, vod, series
    )


def _reconcile_listing(spec: EntitySpec, listing, provider_id: int, session_factory, batch_size: Optional[int]) -> ReconcileResult:
    db = session_factory()
    try:
        return Reconciler(db, provider_id, batch_size).reconcile(spec, as_listing(listing))
    except Exception as e:
        db.rollback()
        logger.exception(f"Reconciling {spec.kind} for provider {provider_id} failed")
        raise StageError(spec.kind, e) from e
    finally:
        db.close()


async def _sync_listing(spec: EntitySpec, fetch, provider_id: int, session_factory, batch_size: Optional[int]) -> ReconcileResult:
    listing = await _fetch(spec.kind, fetch())
    return await asyncio.to_thread(_reconcile_listing, spec, listing, provider_id, session_factory, batch_size)


async def sync_live_channels(provider_id: int, client, session_factory, batch_size: Optional[int] = None) -> ReconcileResult:
    return await _sync_listing(LIVE_SPEC, client.get_live_streams, provider_id, session_factory, batch_size)


async def sync_movies(provider_id: int, client, session_factory, batch_size: Optional[int] = None) -> ReconcileResult:
    return await _sync_listing(MOVIE_SPEC, client.get_vod_streams, provider_id, session_factory, batch_size)


async def sync_series(provider_id: int, client, session_factory, batch_size: Optional[int] = None) -> ReconcileResult:
    return await _sync_listing(SERIES_SPEC, client.get_series, provider_id, session_factory, batch_size)
