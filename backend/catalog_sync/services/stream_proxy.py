"""
Short-term byte cache in front of upstream stream segments and API bodies.

Entries are keyed by the MD5 of the URL and live for ``PROXY_CACHE_TTL``
seconds. A background loop evicts expired entries; reads never wait on it.
"""
import asyncio
import hashlib
import logging
import posixpath
from dataclasses import dataclass
from typing import Dict, Optional
from urllib.parse import urlsplit

import httpx

from catalog_sync.core.cache import TTLCache
from catalog_sync.core.config import settings
from catalog_sync.core.errors import UpstreamHTTPError, UpstreamTransportError

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".ts": "video/mp2t",
    ".mp4": "video/mp4",
    ".mkv": "video/x-matroska",
    ".avi": "video/x-msvideo",
    ".webm": "video/webm",
    ".flv": "video/x-flv",
    ".json": "application/json",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"


def cache_key(url: str) -> str:
    return hashlib.md5(url.encode("utf-8")).hexdigest()


def content_type_for_url(url: str) -> str:
    extension = posixpath.splitext(urlsplit(url).path)[1].lower()
    return CONTENT_TYPES.get(extension, DEFAULT_CONTENT_TYPE)


def stream_headers(content_type: str = "video/mp2t") -> Dict[str, str]:
    return {
        "Content-Type": content_type,
        "Cache-Control": "no-cache, no-store, must-revalidate",
        "Pragma": "no-cache",
        "Expires": "0",
        "X-Accel-Buffering": "no",
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Methods": "GET, OPTIONS",
        "Access-Control-Allow-Headers": "Range, Accept-Encoding",
    }


def _short(url: str, length: int = 80) -> str:
    return url if len(url) <= length else f"{url[:length]}..."


@dataclass
class ProxyResponse:
    content: bytes
    content_type: str
    cached: bool


class StreamProxy:
    def __init__(
        self,
        cache: Optional[TTLCache] = None,
        *,
        ttl: Optional[float] = None,
        connect_timeout: Optional[float] = None,
        receive_timeout: Optional[float] = None,
        max_redirects: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.ttl = settings.PROXY_CACHE_TTL if ttl is None else ttl
        self.cache = cache if cache is not None else TTLCache(self.ttl)
        self.connect_timeout = settings.PROXY_CONNECT_TIMEOUT if connect_timeout is None else connect_timeout
        self.receive_timeout = settings.PROXY_RECEIVE_TIMEOUT if receive_timeout is None else receive_timeout
        self.max_redirects = settings.PROXY_MAX_REDIRECTS if max_redirects is None else max_redirects
        self._transport = transport

    async def fetch(self, url: str) -> ProxyResponse:
        key = cache_key(url)
        content_type = content_type_for_url(url)

        data = self.cache.get(key)
        if data is not None:
            logger.debug(f"StreamProxy: cache hit for {_short(url)}")
            return ProxyResponse(content=data, content_type=content_type, cached=True)

        logger.debug(f"StreamProxy: cache miss, fetching {_short(url)}")
        data = await self._fetch_upstream(url)
        if data:
            self.cache.set(key, data, ttl=self.ttl)
            logger.debug(f"StreamProxy: cached {len(data)} bytes for {_short(url)}")
        return ProxyResponse(content=data, content_type=content_type, cached=False)

    async def _fetch_upstream(self, url: str) -> bytes:
        headers = {
            "User-Agent": settings.XTREAM_USER_AGENT,
            "Accept": "*/*",
            # Raw bytes only; never let the transport decode the body
            "Accept-Encoding": "identity",
        }
        timeout = httpx.Timeout(self.receive_timeout, connect=self.connect_timeout)
        async with httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            max_redirects=self.max_redirects,
            transport=self._transport,
        ) as client:
            try:
                response = await client.get(url, headers=headers)
            except httpx.RequestError as e:
                logger.warning(f"StreamProxy: {type(e).__name__} for {_short(url)}")
                raise UpstreamTransportError(type(e).__name__) from e

        if not response.is_success:
            logger.warning(f"StreamProxy: HTTP {response.status_code} for {_short(url)}")
            raise UpstreamHTTPError(response.status_code, url=url)
        return response.content

    def sweep(self) -> int:
        return self.cache.sweep()

    async def run_sweeper(self, interval: Optional[float] = None):
        """Evict expired entries every ``interval`` seconds until cancelled."""
        interval = settings.PROXY_SWEEP_INTERVAL if interval is None else interval
        logger.info(f"StreamProxy sweeper started ({self.ttl}s TTL, every {interval}s)")
        while True:
            await asyncio.sleep(interval)
            evicted = self.sweep()
            if evicted:
                logger.debug(f"StreamProxy: evicted {evicted} expired entries")


stream_proxy = StreamProxy()
