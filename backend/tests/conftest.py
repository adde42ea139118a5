"""
Pytest Fixtures

Temporary SQLite database per test plus a fake Xtream panel built on
httpx.MockTransport.
"""
import json
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest
from sqlalchemy.orm import sessionmaker

from catalog_sync.db.session import init_db, make_engine
from catalog_sync.models.provider import Provider
from catalog_sync.services.xtream import XtreamClient

XTREAM_URL = "http://xtream.test"


class FakeXtream:
    """In-memory Xtream panel. Payloads are keyed by ``action``.

    A payload may be plain JSON data, an ``httpx.Response`` or a callable
    taking the request and returning either.
    """

    def __init__(self, payloads: Optional[Dict[str, Any]] = None):
        self.payloads: Dict[str, Any] = dict(payloads or {})
        self.calls: List[str] = []
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        action = request.url.params.get("action", "")
        self.calls.append(action)
        self.requests.append(request)
        payload = self.payloads.get(action, [])
        if callable(payload):
            payload = payload(request)
        if isinstance(payload, httpx.Response):
            return payload
        return httpx.Response(200, json=payload)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client(self, **kwargs) -> XtreamClient:
        options = {"max_retries": 0, "retry_base_delay": 0, "retry_jitter": 0}
        options.update(kwargs)
        return XtreamClient(XTREAM_URL, "user", "pass", transport=self.transport, **options)


def json_string_response(data: Any) -> httpx.Response:
    """Body that is itself a JSON-encoded string, as some panels send."""
    return httpx.Response(200, content=json.dumps(json.dumps(data)).encode())


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'catalog.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_provider(db) -> Callable[..., Provider]:
    def _make(**overrides) -> Provider:
        fields = {"name": "Test Provider", "url": XTREAM_URL, "username": "user", "password": "pass"}
        fields.update(overrides)
        provider = Provider(**fields)
        db.add(provider)
        db.commit()
        db.refresh(provider)
        return provider
    return _make


@pytest.fixture
def provider(make_provider) -> Provider:
    return make_provider()


@pytest.fixture
def fake_xtream() -> FakeXtream:
    return FakeXtream()


@pytest.fixture
def catalog_payloads() -> Dict[str, Any]:
    """A small but complete panel: categories of every type plus listings."""
    return {
        "get_live_categories": [
            {"category_id": "1", "category_name": "News", "parent_id": 0},
            {"category_id": "2", "category_name": "Adultos +18", "parent_id": 0},
        ],
        "get_vod_categories": [
            {"category_id": "10", "category_name": "Action", "parent_id": 0},
            {"category_id": "11", "category_name": "Action Classics", "parent_id": "10"},
        ],
        "get_series_categories": [
            {"category_id": "20", "category_name": "Drama", "parent_id": 0},
        ],
        "get_live_streams": [
            {"stream_id": 100, "name": "News 24", "epg_channel_id": "news24.us", "category_id": "1", "tv_archive": 1},
            {"stream_id": 101, "name": "Late Night", "epg_channel_id": None, "category_id": "2"},
        ],
        "get_vod_streams": [
            {"stream_id": 200, "name": "Die Hard", "year": "1988", "rating": "8.2", "category_id": "10",
             "container_extension": "mkv"},
            {"stream_id": 201, "name": "Speed", "category_ids": [10, 11], "container_extension": "mp4"},
        ],
        "get_series": [
            {"series_id": 300, "name": "The Wire", "category_id": "20", "year": "2002"},
        ],
    }
