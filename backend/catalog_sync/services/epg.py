import asyncio
import base64
import binascii
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import delete, select

from catalog_sync.core.cache import TTLCache
from catalog_sync.core.config import settings
from catalog_sync.core.errors import ProviderNotFoundError
from catalog_sync.models.content import LiveChannel
from catalog_sync.models.epg import EpgProgram
from catalog_sync.models.provider import Provider
from catalog_sync.schemas import EpgProgramOut, NowNext
from catalog_sync.services.reconcile import dialect_insert
from catalog_sync.services.xtream import XtreamClient
from catalog_sync.utils import chunked, parse_int, to_str_or_none, unique_by, utcnow

logger = logging.getLogger(__name__)

UPSERT_BATCH_SIZE = 500


def decode_base64_field(value: Any) -> Optional[str]:
    """Xtream sends EPG titles and descriptions base64 encoded; plain text passes through."""
    if not isinstance(value, str) or not value:
        return None
    try:
        decoded = base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        decoded = value
    return decoded.strip() or None


def parse_timestamp(unix_ts: Any, fallback: Any) -> Optional[datetime]:
    ts = parse_int(unix_ts) if isinstance(unix_ts, (int, str)) else None
    if ts is not None and ts > 0:
        try:
            return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(fallback, str) or not fallback.strip():
        return None
    try:
        return datetime.strptime(fallback.strip()[:19], "%Y-%m-%d %H:%M:%S")
    except ValueError:
        return None


def parse_short_epg(payload: Any) -> List[Dict[str, Any]]:
    """Programs from a ``get_short_epg`` response, invalid entries dropped."""
    if not isinstance(payload, dict) or not isinstance(payload.get("epg_listings"), list):
        return []
    programs = []
    for item in payload["epg_listings"]:
        if not isinstance(item, dict):
            continue
        program = {
            "epg_channel_id": to_str_or_none(item.get("channel_id") or item.get("epg_id")),
            "title": decode_base64_field(item.get("title")),
            "description": decode_base64_field(item.get("description")),
            "start_time": parse_timestamp(item.get("start_timestamp"), item.get("start")),
            "end_time": parse_timestamp(item.get("stop_timestamp"), item.get("end")),
            "category": to_str_or_none(item.get("category")),
            "icon": to_str_or_none(item.get("icon")),
            "lang": to_str_or_none(item.get("lang")),
        }
        if program["epg_channel_id"] and program["title"] and program["start_time"] and program["end_time"]:
            programs.append(program)
    return programs


def needs_sync(provider: Provider, now: Optional[datetime] = None) -> bool:
    if provider.epg_synced_at is None:
        return True
    interval = provider.epg_sync_interval_hours or settings.EPG_SYNC_INTERVAL_HOURS
    return (now or utcnow()) - provider.epg_synced_at >= timedelta(hours=interval)


class EPGService:
    """Short-EPG ingestion plus cached now/next lookups.

    The now/next cache lives in-process by default. With a Redis client it is
    shared between workers; Redis errors fall back to querying the database.
    """

    def __init__(self, session_factory, *, cache: Optional[TTLCache] = None, redis_client=None,
                 now_ttl: Optional[int] = None):
        self.session_factory = session_factory
        self.now_ttl = settings.EPG_NOW_TTL if now_ttl is None else now_ttl
        self.cache = cache if cache is not None else TTLCache(self.now_ttl)
        self.redis = redis_client

    async def sync_channel(self, provider: Provider, client, stream_id, epg_channel_id: str,
                           limit: Optional[int] = None) -> int:
        data = await client.get_short_epg(stream_id, limit=limit or settings.EPG_SHORT_LIMIT)
        programs = parse_short_epg(data)
        # Programs are stored under the channel's own EPG id, whatever the listing says
        for program in programs:
            program["epg_channel_id"] = epg_channel_id
        count = await asyncio.to_thread(self.upsert_programs, provider.id, programs)
        logger.debug(f"EPG sync: {count} programs for channel {epg_channel_id}")
        return count

    def upsert_programs(self, provider_id: int, programs: List[Dict[str, Any]]) -> int:
        programs = unique_by(programs, key=lambda p: (p["epg_channel_id"], p["start_time"]))
        if not programs:
            return 0
        now = utcnow()
        with self.session_factory() as db:
            insert = dialect_insert(db)
            table = EpgProgram.__table__
            for batch in chunked(programs, UPSERT_BATCH_SIZE):
                rows = [{**p, "provider_id": provider_id, "created_at": now, "updated_at": now} for p in batch]
                stmt = insert(table).values(rows)
                stmt = stmt.on_conflict_do_update(
                    index_elements=[table.c.provider_id, table.c.epg_channel_id, table.c.start_time],
                    set_={
                        name: getattr(stmt.excluded, name)
                        for name in ("title", "description", "end_time", "category", "icon", "lang", "updated_at")
                    },
                )
                db.execute(stmt)
            db.commit()
        return len(programs)

    async def sync_channels(self, provider: Provider, client, channels: Iterable,
                            concurrency: Optional[int] = None, timeout: Optional[float] = None) -> Tuple[int, int]:
        """Sync many channels, ``concurrency`` at a time. Returns (synced channels, programs)."""
        concurrency = concurrency or settings.EPG_CONCURRENCY
        timeout = settings.EPG_CHANNEL_TIMEOUT if timeout is None else timeout
        channels = [c for c in channels if c.epg_channel_id and c.stream_id]
        semaphore = asyncio.Semaphore(concurrency)

        async def run_one(channel):
            async with semaphore:
                return await asyncio.wait_for(
                    self.sync_channel(provider, client, channel.stream_id, channel.epg_channel_id),
                    timeout=timeout,
                )

        results = await asyncio.gather(*(run_one(c) for c in channels), return_exceptions=True)
        synced, programs, failed = 0, 0, 0
        for channel, result in zip(channels, results):
            if isinstance(result, BaseException):
                failed += 1
                logger.warning(f"EPG sync failed for channel {channel.epg_channel_id}, provider {provider.id}: {result!r}")
            else:
                synced += 1
                programs += result
        logger.info(f"EPG sync for provider {provider.id}: {synced} channels, {programs} programs, {failed} failed")
        return synced, programs

    def cleanup(self, provider_id: int, hours: Optional[int] = None, now: Optional[datetime] = None) -> int:
        hours = settings.EPG_CLEANUP_HOURS if hours is None else hours
        cutoff = (now or utcnow()) - timedelta(hours=hours)
        with self.session_factory() as db:
            result = db.execute(
                delete(EpgProgram).where(EpgProgram.provider_id == provider_id, EpgProgram.end_time < cutoff)
            )
            db.commit()
        removed = result.rowcount or 0
        logger.debug(f"Cleaned up {removed} old EPG programs for provider {provider_id}")
        return removed

    def needs_sync(self, provider: Provider, now: Optional[datetime] = None) -> bool:
        return needs_sync(provider, now)

    async def ensure_epg_available(self, provider: Provider, client, now: Optional[datetime] = None,
                                   force: bool = False) -> Optional[Tuple[int, int]]:
        """Sync every channel with an EPG id when the provider's EPG is stale.

        Returns ``None`` when the stored EPG is still fresh.
        """
        if not force and not self.needs_sync(provider, now):
            return None
        with self.session_factory() as db:
            channels = list(db.scalars(
                select(LiveChannel).where(
                    LiveChannel.provider_id == provider.id,
                    LiveChannel.epg_channel_id.isnot(None),
                )
            ))
        result = await self.sync_channels(provider, client, channels)
        with self.session_factory() as db:
            stored = db.get(Provider, provider.id)
            if stored is None:
                logger.warning(f"Provider {provider.id} disappeared during EPG sync")
            else:
                stored.epg_synced_at = utcnow()
                db.commit()
        return result

    def _query_now_and_next(self, provider_id: int, epg_channel_id: str, now: datetime) -> NowNext:
        with self.session_factory() as db:
            programs = list(db.scalars(
                select(EpgProgram)
                .where(
                    EpgProgram.provider_id == provider_id,
                    EpgProgram.epg_channel_id == epg_channel_id,
                    EpgProgram.end_time > now,
                )
                .order_by(EpgProgram.start_time)
                .limit(2)
            ))
            programs = [EpgProgramOut.model_validate(p) for p in programs]
        if not programs:
            return NowNext()
        first = programs[0]
        if first.start_time <= now:
            return NowNext(current=first, next=programs[1] if len(programs) > 1 else None)
        # Nothing airing yet; the earliest upcoming program is next
        return NowNext(current=None, next=first)

    def get_now_and_next(self, provider_id: int, epg_channel_id: Optional[str],
                         now: Optional[datetime] = None) -> NowNext:
        """Current and next program of a channel.

        Lookups at the current time are cached for ``now_ttl`` seconds; an
        explicit ``now`` always queries the database.
        """
        if not epg_channel_id:
            return NowNext()
        if now is not None:
            return self._query_now_and_next(provider_id, epg_channel_id, now)

        key = f"epg:now:{provider_id}:{epg_channel_id}"
        cached = self._cache_get(key)
        if cached is not None:
            return cached
        result = self._query_now_and_next(provider_id, epg_channel_id, utcnow())
        self._cache_set(key, result)
        return result

    def _cache_get(self, key: str) -> Optional[NowNext]:
        if self.redis is not None:
            try:
                data = self.redis.get(key)
                return NowNext.model_validate_json(data) if data else None
            except Exception as e:
                logger.warning(f"EPG cache read failed for {key}: {e}")
                return None
        return self.cache.get(key)

    def _cache_set(self, key: str, value: NowNext):
        if self.redis is not None:
            try:
                self.redis.setex(key, self.now_ttl, value.model_dump_json())
            except Exception as e:
                logger.warning(f"EPG cache write failed for {key}: {e}")
            return
        self.cache.set(key, value)

    def get_current_programs_batch(self, provider_id: int, epg_channel_ids: Iterable[Optional[str]],
                                   now: Optional[datetime] = None) -> Dict[str, EpgProgramOut]:
        channel_ids = sorted({c for c in epg_channel_ids if c})
        if not channel_ids:
            return {}
        now = now or utcnow()
        with self.session_factory() as db:
            programs = db.scalars(
                select(EpgProgram)
                .where(
                    EpgProgram.provider_id == provider_id,
                    EpgProgram.epg_channel_id.in_(channel_ids),
                    EpgProgram.start_time <= now,
                    EpgProgram.end_time > now,
                )
                .order_by(EpgProgram.start_time)
            )
            return {p.epg_channel_id: EpgProgramOut.model_validate(p) for p in programs}

    def enrich_channels_with_epg(self, channels: List, provider_id: int,
                                 now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Pair each channel with its currently airing program (or ``None``)."""
        current = self.get_current_programs_batch(provider_id, [c.epg_channel_id for c in channels], now)
        return [
            {"channel": channel, "current_program": current.get(channel.epg_channel_id)}
            for channel in channels
        ]


def build_epg_service(session_factory) -> EPGService:
    redis_client = None
    if settings.EPG_CACHE_BACKEND == "redis":
        from catalog_sync.core.redis import get_redis
        redis_client = get_redis()
    return EPGService(session_factory, redis_client=redis_client)


async def sync_provider_epg(provider_id: int, *, session_factory, client=None,
                            service: Optional[EPGService] = None, force: bool = False) -> Dict[str, Any]:
    """Refresh a provider's EPG when due, then prune programs that ended long ago."""
    service = service or build_epg_service(session_factory)
    with session_factory() as db:
        provider = db.get(Provider, provider_id)
        if provider is None:
            raise ProviderNotFoundError(provider_id)
        db.expunge(provider)
    client = client or XtreamClient.for_provider(provider)

    result = await service.ensure_epg_available(provider, client, force=force)
    removed = service.cleanup(provider_id)
    synced, programs = result if result is not None else (0, 0)
    return {"synced": result is not None, "channels": synced, "programs": programs, "removed": removed}
