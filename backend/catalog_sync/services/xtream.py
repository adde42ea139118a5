import json
import logging
from typing import Any, Dict, List, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from catalog_sync.core.config import settings
from catalog_sync.core.errors import (
    ParseError,
    RateLimitedError,
    UpstreamHTTPError,
    UpstreamTransportError,
)

logger = logging.getLogger(__name__)

STREAM_PATHS = {"live": "live", "movie": "movie", "series": "series"}


class XtreamClient:
    """Async client for the Xtream Codes ``player_api.php`` JSON API.

    Rate limits (429) and transport failures are retried with exponential
    backoff plus jitter; any other non-2xx status fails immediately.
    """

    def __init__(
        self,
        url: str,
        username: str,
        password: str,
        *,
        timeout: float = None,
        max_retries: int = None,
        retry_base_delay: float = None,
        retry_jitter: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = url.rstrip("/")
        self.username = username
        self.password = password
        self.api_url = f"{self.base_url}/player_api.php"
        self.timeout = settings.XTREAM_TIMEOUT if timeout is None else timeout
        self.max_retries = settings.XTREAM_MAX_RETRIES if max_retries is None else max_retries
        self.retry_base_delay = settings.XTREAM_RETRY_BASE_DELAY if retry_base_delay is None else retry_base_delay
        self.retry_jitter = settings.XTREAM_RETRY_JITTER if retry_jitter is None else retry_jitter
        self._transport = transport

    @classmethod
    def for_provider(cls, provider, **kwargs) -> "XtreamClient":
        return cls(provider.url, provider.username, provider.password, **kwargs)

    def _get_params(self, action: Optional[str], **kwargs) -> Dict[str, str]:
        params = {
            "username": self.username,
            "password": self.password,
        }
        if action:
            params["action"] = action
        params.update({k: str(v) for k, v in kwargs.items() if v is not None})
        return params

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            headers={"User-Agent": settings.XTREAM_USER_AGENT},
            transport=self._transport,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_exception_type((RateLimitedError, UpstreamTransportError)),
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.retry_base_delay) + wait_random(0, self.retry_jitter),
            before_sleep=self._log_retry,
            reraise=True,
        )

    def _log_retry(self, retry_state):
        error = retry_state.outcome.exception()
        logger.warning(
            f"Xtream request failed ({error.code}), "
            f"retry {retry_state.attempt_number}/{self.max_retries} "
            f"in {retry_state.next_action.sleep:.1f}s"
        )

    async def _request(self, action: Optional[str] = None, **kwargs) -> Any:
        params = self._get_params(action, **kwargs)
        async for attempt in self._retrying():
            with attempt:
                return await self._request_once(action, params)

    async def _request_once(self, action: Optional[str], params: Dict[str, str]) -> Any:
        async with self._client() as client:
            try:
                response = await client.get(self.api_url, params=params)
            except httpx.TransportError as e:
                raise UpstreamTransportError(type(e).__name__) from e

        if response.status_code == 429:
            raise RateLimitedError(_retry_after(response))
        if not response.is_success:
            logger.error(f"HTTP {response.status_code} for {action or 'account_info'}")
            raise UpstreamHTTPError(response.status_code, url=self.api_url)
        return _decode_body(response)

    async def get_account_info(self) -> Dict:
        return await self._request()

    async def get_live_categories(self) -> List[Dict]:
        return await self._request("get_live_categories")

    async def get_vod_categories(self) -> List[Dict]:
        return await self._request("get_vod_categories")

    async def get_series_categories(self) -> List[Dict]:
        return await self._request("get_series_categories")

    async def get_live_streams(self, category_id: Optional[str] = None) -> List[Dict]:
        return await self._request("get_live_streams", category_id=category_id)

    async def get_vod_streams(self, category_id: Optional[str] = None) -> List[Dict]:
        return await self._request("get_vod_streams", category_id=category_id)

    async def get_series(self, category_id: Optional[str] = None) -> List[Dict]:
        return await self._request("get_series", category_id=category_id)

    async def get_vod_info(self, vod_id) -> Dict:
        return await self._request("get_vod_info", vod_id=vod_id)

    async def get_series_info(self, series_id) -> Dict:
        return await self._request("get_series_info", series_id=series_id)

    async def get_short_epg(self, stream_id, limit: int = 20) -> Dict:
        return await self._request("get_short_epg", stream_id=stream_id, limit=limit)

    async def get_simple_data_table(self, stream_id) -> Dict:
        return await self._request("get_simple_data_table", stream_id=stream_id)

    def get_stream_url(self, stream_type: str, stream_id, extension: str) -> str:
        # stream_type: "live", "movie" or "series"
        path = STREAM_PATHS.get(stream_type)
        if path is None:
            raise ValueError(f"Unknown stream type: {stream_type}")
        return f"{self.base_url}/{path}/{self.username}/{self.password}/{stream_id}.{extension}"

    def live_stream_url(self, stream_id, extension: str = "ts") -> str:
        return self.get_stream_url("live", stream_id, extension)

    def movie_stream_url(self, stream_id, extension: str = "mp4") -> str:
        return self.get_stream_url("movie", stream_id, extension or "mp4")

    def episode_stream_url(self, episode_id, extension: str = "mp4") -> str:
        return self.get_stream_url("series", episode_id, extension or "mp4")


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("retry-after")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


def _decode_body(response: httpx.Response) -> Any:
    try:
        data = response.json()
    except ValueError as e:
        raise ParseError(f"Invalid JSON from {response.url.path}: {e}") from e
    # Some panels wrap the payload in a JSON string
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except ValueError as e:
            raise ParseError(f"Invalid nested JSON from {response.url.path}: {e}") from e
    return data
