import asyncio

import httpx
import pytest

from catalog_sync.core.cache import TTLCache
from catalog_sync.core.errors import UpstreamHTTPError, UpstreamTransportError
from catalog_sync.services.stream_proxy import StreamProxy, cache_key, content_type_for_url, stream_headers

SEGMENT_URL = "http://cdn.test/live/user/pass/100/segment_1.ts?token=abc"


class Upstream:
    def __init__(self, response=None):
        self.requests = []
        self.response = response or httpx.Response(200, content=b"\x47" * 188)

    def __call__(self, request):
        self.requests.append(request)
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def make_proxy(upstream, clock=None):
    cache = TTLCache(300, clock=clock) if clock else TTLCache(300)
    return StreamProxy(cache, ttl=300, transport=httpx.MockTransport(upstream))


def test_content_type_for_url():
    assert content_type_for_url(SEGMENT_URL) == "video/mp2t"
    assert content_type_for_url("http://cdn.test/index.M3U8") == "application/vnd.apple.mpegurl"
    assert content_type_for_url("http://cdn.test/movie/1.mkv") == "video/x-matroska"
    assert content_type_for_url("http://cdn.test/player_api.json") == "application/json"
    assert content_type_for_url("http://cdn.test/stream") == "application/octet-stream"


def test_cache_key_is_md5_of_url():
    assert cache_key("http://a") == cache_key("http://a")
    assert cache_key("http://a") != cache_key("http://b")
    assert len(cache_key("http://a")) == 32


def test_stream_headers_disable_client_caching():
    headers = stream_headers("video/mp4")

    assert headers["Content-Type"] == "video/mp4"
    assert headers["Cache-Control"].startswith("no-cache")
    assert headers["Access-Control-Allow-Origin"] == "*"


@pytest.mark.asyncio
async def test_second_fetch_is_served_from_cache():
    upstream = Upstream()
    proxy = make_proxy(upstream)

    first = await proxy.fetch(SEGMENT_URL)
    second = await proxy.fetch(SEGMENT_URL)

    assert (first.cached, second.cached) == (False, True)
    assert second.content == first.content
    assert second.content_type == "video/mp2t"
    assert len(upstream.requests) == 1
    assert upstream.requests[0].headers["Accept-Encoding"] == "identity"


@pytest.mark.asyncio
async def test_expired_entries_are_refetched():
    now = [0.0]
    upstream = Upstream()
    proxy = make_proxy(upstream, clock=lambda: now[0])

    await proxy.fetch(SEGMENT_URL)
    now[0] = 301
    assert proxy.sweep() == 1
    result = await proxy.fetch(SEGMENT_URL)

    assert result.cached is False
    assert len(upstream.requests) == 2


@pytest.mark.asyncio
async def test_empty_bodies_are_not_cached():
    upstream = Upstream(httpx.Response(200, content=b""))
    proxy = make_proxy(upstream)

    await proxy.fetch(SEGMENT_URL)
    await proxy.fetch(SEGMENT_URL)

    assert len(upstream.requests) == 2


@pytest.mark.asyncio
async def test_upstream_errors():
    with pytest.raises(UpstreamHTTPError) as exc_info:
        await make_proxy(Upstream(httpx.Response(403))).fetch(SEGMENT_URL)
    assert exc_info.value.status == 403

    refused = Upstream(httpx.ConnectError("refused"))
    with pytest.raises(UpstreamTransportError):
        await make_proxy(refused).fetch(SEGMENT_URL)



@pytest.mark.asyncio
@pytest.mark.parametrize("status", [404, 500, 503])
async def test_error_bodies_are_never_cached(status):
    upstream = Upstream(httpx.Response(status, content=b"<html>error page</html>"))
    proxy = make_proxy(upstream)

    for _ in range(2):
        with pytest.raises(UpstreamHTTPError):
            await proxy.fetch(SEGMENT_URL)

    assert len(upstream.requests) == 2
    assert len(proxy.cache) == 0


@pytest.mark.asyncio
async def test_redirects_are_followed():
    hosts = []

    def upstream(request):
        hosts.append(request.url.host)
        if request.url.host == "cdn.test":
            return httpx.Response(302, headers={"Location": "http://edge.test/segment_1.ts"})
        return httpx.Response(200, content=b"moved")

    proxy = StreamProxy(TTLCache(300), transport=httpx.MockTransport(upstream))

    first = await proxy.fetch(SEGMENT_URL)
    second = await proxy.fetch(SEGMENT_URL)

    assert first.content == b"moved"
    assert hosts == ["cdn.test", "edge.test"]
    assert second.cached is True


@pytest.mark.asyncio
async def test_redirect_chain_is_bounded():
    hops = []

    def upstream(request):
        hops.append(str(request.url))
        return httpx.Response(302, headers={"Location": f"http://cdn.test/hop/{len(hops)}"})

    proxy = StreamProxy(TTLCache(300), max_redirects=2, transport=httpx.MockTransport(upstream))

    with pytest.raises(UpstreamTransportError) as exc_info:
        await proxy.fetch(SEGMENT_URL)

    assert exc_info.value.reason == "TooManyRedirects"
    assert len(hops) == 3
    assert len(proxy.cache) == 0


@pytest.mark.asyncio
async def test_sweeper_runs_until_cancelled():
    now = [0.0]
    proxy = make_proxy(Upstream(), clock=lambda: now[0])
    await proxy.fetch(SEGMENT_URL)
    now[0] = 1000

    task = asyncio.create_task(proxy.run_sweeper(interval=0.01))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert len(proxy.cache) == 0
