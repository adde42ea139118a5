from datetime import datetime, timedelta
from types import SimpleNamespace

import httpx
import pytest
from fastapi.testclient import TestClient

from catalog_sync.api.deps import get_epg_service, get_stream_proxy
from catalog_sync.api.endpoints import sync as sync_endpoint
from catalog_sync.core.cache import TTLCache
from catalog_sync.db.session import get_db
from catalog_sync.main import app
from catalog_sync.models.epg import EpgProgram
from catalog_sync.services.epg import EPGService
from catalog_sync.services.stream_proxy import StreamProxy
from catalog_sync.utils import utcnow


@pytest.fixture
def client(session_factory):
    def override_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    def upstream(request):
        if request.url.path.endswith("missing.ts"):
            return httpx.Response(404)
        return httpx.Response(200, content=b"segment")

    proxy = StreamProxy(TTLCache(60), transport=httpx.MockTransport(upstream))
    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_epg_service] = lambda: EPGService(session_factory)
    app.dependency_overrides[get_stream_proxy] = lambda: proxy
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}


def test_trigger_sync_queues_task(client, provider, monkeypatch):
    queued = []

    def delay(*args):
        queued.append(args)
        return SimpleNamespace(id="task-1")

    monkeypatch.setattr(sync_endpoint.sync_provider_task, "delay", delay)

    response = client.post(f"/api/v1/sync/{provider.id}?series_details=enqueue")

    assert response.status_code == 200
    assert response.json()["task_id"] == "task-1"
    assert queued == [(provider.id, "enqueue")]


def test_trigger_movie_details_queues_task(client, provider, monkeypatch):
    queued = []

    def delay(*args):
        queued.append(args)
        return SimpleNamespace(id="task-2")

    monkeypatch.setattr(sync_endpoint.sync_movie_details_task, "delay", delay)

    response = client.post(f"/api/v1/sync/{provider.id}/movie-details")

    assert response.status_code == 200
    assert response.json()["task_id"] == "task-2"
    assert queued == [(provider.id,)]
    assert client.post("/api/v1/sync/999/movie-details").status_code == 404


def test_trigger_sync_rejects_bad_mode_and_unknown_provider(client, provider):
    assert client.post(f"/api/v1/sync/{provider.id}?series_details=later").status_code == 422
    assert client.post("/api/v1/sync/999").status_code == 404


def test_sync_status_and_details_progress(client, provider):
    status = client.get(f"/api/v1/sync/{provider.id}/status").json()
    progress = client.get(f"/api/v1/sync/{provider.id}/series-details").json()

    assert status["sync_status"] == "idle"
    assert status["movies_count"] == 0
    assert progress == {"total": 0, "synced": 0}
    assert client.get("/api/v1/sync/999/status").status_code == 404


def test_epg_endpoints(client, db, provider):
    now = utcnow()
    db.add(EpgProgram(provider_id=provider.id, epg_channel_id="news24.us", title="Live",
                      start_time=now - timedelta(hours=1), end_time=now + timedelta(hours=1)))
    db.commit()

    now_next = client.get(f"/api/v1/epg/{provider.id}/now/news24.us").json()
    current = client.post(f"/api/v1/epg/{provider.id}/current",
                          json={"epg_channel_ids": ["news24.us", "unknown", None]}).json()

    assert now_next["current"]["title"] == "Live"
    assert now_next["next"] is None
    assert list(current["programs"]) == ["news24.us"]
    assert datetime.fromisoformat(current["programs"]["news24.us"]["start_time"]) < now


def test_proxy_marks_cache_hits(client):
    url = "/api/v1/proxy?url=http://cdn.test/live/1/segment.ts"

    first = client.get(url)
    second = client.get(url)

    assert first.content == b"segment"
    assert first.headers["content-type"] == "video/mp2t"
    assert (first.headers["x-cache"], second.headers["x-cache"]) == ("MISS", "HIT")


def test_proxy_maps_upstream_errors(client):
    response = client.get("/api/v1/proxy?url=http://cdn.test/live/1/missing.ts")

    assert response.status_code == 502
    assert response.json()["code"] == "upstream_http_error"
