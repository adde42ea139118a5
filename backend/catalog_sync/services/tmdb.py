"""
TMDB client used to fill gaps in metadata the Xtream panel left empty.

The upstream panel is the primary source: enrichment only ever writes to
attributes that are currently empty (see ``fill_gaps``).
"""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from catalog_sync.core.config import settings
from catalog_sync.core.errors import (
    CatalogError,
    NotConfiguredError,
    ParseError,
    RateLimitedError,
    UpstreamHTTPError,
    UpstreamTransportError,
)
from catalog_sync.utils import is_blank, parse_date, to_str_or_none

logger = logging.getLogger(__name__)


class TmdbClient:
    def __init__(
        self,
        api_token: Optional[str] = None,
        *,
        enabled: Optional[bool] = None,
        base_url: Optional[str] = None,
        image_base_url: Optional[str] = None,
        language: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_backoff: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_token = settings.TMDB_API_TOKEN if api_token is None else api_token
        self.enabled = settings.TMDB_ENABLED if enabled is None else enabled
        self.base_url = (base_url or settings.TMDB_BASE_URL).rstrip("/")
        self.image_base_url = (image_base_url or settings.TMDB_IMAGE_BASE_URL).rstrip("/")
        self.language = language or settings.TMDB_LANGUAGE
        self.timeout = settings.TMDB_TIMEOUT if timeout is None else timeout
        self.max_retries = settings.TMDB_MAX_RETRIES if max_retries is None else max_retries
        self.retry_backoff = settings.TMDB_RETRY_BACKOFF if retry_backoff is None else retry_backoff
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.enabled and self.api_token)

    def _wait(self, retry_state) -> float:
        error = retry_state.outcome.exception()
        retry_after = getattr(error, "retry_after", None)
        return retry_after if retry_after is not None else self.retry_backoff

    async def _request(self, path: str, **params) -> Dict:
        if not self.is_configured:
            raise NotConfiguredError("TMDB integration is disabled or has no API token")

        params = {"language": self.language, **{k: v for k, v in params.items() if v is not None}}
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(RateLimitedError),
            stop=stop_after_attempt(self.max_retries + 1),
            wait=self._wait,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._request_once(path, params)

    async def _request_once(self, path: str, params: Dict[str, Any]) -> Dict:
        headers = {
            "Authorization": f"Bearer {self.api_token}",
            "Accept": "application/json",
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.get(f"{self.base_url}{path}", params=params, headers=headers)
            except httpx.TransportError as e:
                raise UpstreamTransportError(type(e).__name__) from e

        if response.status_code == 429:
            retry_after = response.headers.get("retry-after")
            logger.warning(f"TMDB rate limited on {path} (retry-after={retry_after})")
            raise RateLimitedError(_seconds(retry_after))
        if not response.is_success:
            raise UpstreamHTTPError(response.status_code, url=path)
        try:
            return response.json()
        except ValueError as e:
            raise ParseError(f"Invalid JSON from TMDB {path}") from e

    async def get_movie(self, tmdb_id) -> Dict:
        return await self._request(
            f"/movie/{tmdb_id}",
            append_to_response="credits,videos,release_dates,images",
            include_image_language="null",
        )

    async def get_series(self, tmdb_id) -> Dict:
        return await self._request(
            f"/tv/{tmdb_id}",
            append_to_response="credits,videos,content_ratings,images",
            include_image_language="null",
        )

    async def get_season(self, tmdb_id, season_number: int) -> Dict:
        return await self._request(f"/tv/{tmdb_id}/season/{season_number}")

    async def search_movie(self, query: str, year: Optional[int] = None) -> Dict:
        return await self._request("/search/movie", query=query, year=year)

    async def search_series(self, query: str, year: Optional[int] = None) -> Dict:
        return await self._request("/search/tv", query=query, first_air_date_year=year)

    async def find_series_id(self, name: Optional[str], year: Optional[int] = None) -> Optional[str]:
        """First search hit for ``name``; ``None`` when nothing matches or TMDB is unavailable."""
        if not name or not self.is_configured:
            return None
        try:
            data = await self.search_series(name, year)
        except CatalogError as e:
            logger.warning(f"TMDB search failed for series '{name}': {e}")
            return None
        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list) or not results:
            return None
        first = results[0]
        if not isinstance(first, dict) or first.get("id") is None:
            return None
        return str(first["id"])

    def image_url(self, path: Optional[str], size: str = "w500") -> Optional[str]:
        return image_url(path, size, self.image_base_url)


def image_url(path: Optional[str], size: str = "w500", base_url: Optional[str] = None) -> Optional[str]:
    if not path:
        return None
    return f"{(base_url or settings.TMDB_IMAGE_BASE_URL).rstrip('/')}/{size}{path}"


def parse_movie_response(data: Any) -> Dict[str, Any]:
    if not isinstance(data, dict) or "id" not in data:
        return {}
    return _compact({
        "plot": data.get("overview"),
        "rating": _rating(data.get("vote_average")),
        "duration": format_runtime(data.get("runtime")),
        "duration_secs": _runtime_secs(data.get("runtime")),
        "genre": _genres(data.get("genres")),
        "year": _year(data.get("release_date")),
        "director": _directors(data.get("credits")),
        "cast": _cast(data.get("credits")),
        "youtube_trailer": _trailer(data.get("videos")),
        "backdrop_path": _backdrop(data.get("backdrop_path")),
        "stream_icon": image_url(data.get("poster_path"), "w500"),
        "tagline": data.get("tagline"),
        "content_rating": _movie_certification(data.get("release_dates")),
        "images": _images(data.get("images")),
    })


def parse_series_response(data: Any) -> Dict[str, Any]:
    if not isinstance(data, dict) or "id" not in data:
        return {}
    return _compact({
        "plot": data.get("overview"),
        "rating": _rating(data.get("vote_average")),
        "genre": _genres(data.get("genres")),
        "year": _year(data.get("first_air_date")),
        # Creators stand in for directors on TV shows
        "director": _names(data.get("created_by"), 2),
        "cast": _cast(data.get("credits")),
        "youtube_trailer": _trailer(data.get("videos")),
        "backdrop_path": _backdrop(data.get("backdrop_path")),
        "cover": image_url(data.get("poster_path"), "w500"),
        "tagline": data.get("tagline"),
        "content_rating": _series_certification(data.get("content_ratings")),
        "images": _images(data.get("images")),
    })


def parse_season_episodes(data: Any) -> Dict[int, Dict[str, Any]]:
    """Map of episode number to parsed episode attributes."""
    if not isinstance(data, dict) or not isinstance(data.get("episodes"), list):
        return {}
    return {
        ep.get("episode_number"): parse_episode_response(ep)
        for ep in data["episodes"]
        if isinstance(ep, dict)
    }


def parse_episode_response(data: Any) -> Dict[str, Any]:
    if not isinstance(data, dict) or "id" not in data:
        return {}
    return _compact({
        "tmdb_id": to_str_or_none(data.get("id")),
        "title": data.get("name"),
        "plot": data.get("overview"),
        "rating": _rating(data.get("vote_average")),
        "cover": image_url(data.get("still_path"), "w500"),
        "air_date": parse_date(data.get("air_date")),
        "duration_secs": _runtime_secs(data.get("runtime")),
        "duration": format_runtime(data.get("runtime")),
    })


def fill_gaps(target, attrs: Dict[str, Any]) -> List[str]:
    """Copy ``attrs`` onto ``target`` only where the current value is empty.

    Returns the names of the attributes that were written.
    """
    written = []
    for key, value in attrs.items():
        if is_blank(value) or not hasattr(target, key):
            continue
        if is_blank(getattr(target, key)):
            setattr(target, key, value)
            written.append(key)
    return written


def needs_tmdb_enrichment(current: Dict[str, Any]) -> bool:
    """True when plot, cast or director is missing, or there is no extended metadata at all."""
    if any(is_blank(current.get(name)) for name in ("plot", "cast", "director")):
        return True
    return all(is_blank(current.get(name)) for name in ("tagline", "content_rating", "images"))


def format_runtime(minutes: Any) -> Optional[str]:
    if not isinstance(minutes, int) or isinstance(minutes, bool) or minutes <= 0:
        return None
    hours, mins = divmod(minutes, 60)
    return f"{hours}h {mins}min" if hours else f"{mins}min"


def _compact(attrs: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in attrs.items() if not is_blank(v)}


def _seconds(value: Optional[str]) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


def _rating(vote_average: Any) -> Optional[Decimal]:
    if isinstance(vote_average, bool) or not isinstance(vote_average, (int, float)) or vote_average == 0:
        return None
    return Decimal(str(float(vote_average)))


def _runtime_secs(minutes: Any) -> Optional[int]:
    if not isinstance(minutes, int) or isinstance(minutes, bool) or minutes <= 0:
        return None
    return minutes * 60


def _year(release_date: Any) -> Optional[int]:
    if not isinstance(release_date, str) or not release_date:
        return None
    try:
        return int(release_date.split("-")[0])
    except ValueError:
        return None


def _names(people: Any, limit: int) -> Optional[str]:
    if not isinstance(people, list):
        return None
    names = [p.get("name") for p in people[:limit] if isinstance(p, dict) and p.get("name")]
    return ", ".join(names) or None


def _genres(genres: Any) -> Optional[str]:
    return _names(genres, 3)


def _cast(credits: Any) -> Optional[str]:
    if not isinstance(credits, dict):
        return None
    return _names(credits.get("cast"), 5)


def _directors(credits: Any) -> Optional[str]:
    if not isinstance(credits, dict) or not isinstance(credits.get("crew"), list):
        return None
    directors = [c for c in credits["crew"] if isinstance(c, dict) and c.get("job") == "Director"]
    return _names(directors, 2)


def _trailer(videos: Any) -> Optional[str]:
    if not isinstance(videos, dict) or not isinstance(videos.get("results"), list):
        return None
    youtube = [v for v in videos["results"] if isinstance(v, dict) and v.get("site") == "YouTube"]
    for video in youtube:
        if video.get("type") in ("Trailer", "Teaser") and video.get("official") is True:
            return video.get("key")
    # Fall back to any YouTube video
    return youtube[0].get("key") if youtube else None


def _backdrop(path: Any) -> Optional[List[str]]:
    url = image_url(path, "w1280") if isinstance(path, str) else None
    return [url] if url else None


def _images(images: Any) -> Optional[List[str]]:
    if not isinstance(images, dict):
        return None
    backdrops = [image_url(i.get("file_path"), "w780") for i in (images.get("backdrops") or [])[:6]]
    posters = [image_url(i.get("file_path"), "w500") for i in (images.get("posters") or [])[:4]]
    urls = [u for u in backdrops + posters if u]
    return urls or None


def _region() -> str:
    return settings.TMDB_LANGUAGE.split("-")[-1].upper()


def _by_region(results: List[Dict], extract) -> Optional[str]:
    for country in (_region(), "US"):
        for result in results:
            if result.get("iso_3166_1") == country:
                value = extract(result)
                if value:
                    return value
    for result in results:
        value = extract(result)
        if value:
            return value
    return None


def _movie_certification(release_dates: Any) -> Optional[str]:
    if not isinstance(release_dates, dict) or not isinstance(release_dates.get("results"), list):
        return None

    def extract(result):
        for date in result.get("release_dates") or []:
            if date.get("certification"):
                return date["certification"]
        return None

    return _by_region(release_dates["results"], extract)


def _series_certification(content_ratings: Any) -> Optional[str]:
    if not isinstance(content_ratings, dict) or not isinstance(content_ratings.get("results"), list):
        return None
    return _by_region(content_ratings["results"], lambda result: result.get("rating") or None)
