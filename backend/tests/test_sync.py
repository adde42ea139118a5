import asyncio
import time

import httpx
import pytest

from catalog_sync.core.errors import ProviderNotFoundError, StageError, SyncTimeoutError
from catalog_sync.models.content import Movie
from catalog_sync.models.provider import Provider, SyncStatus
from catalog_sync.models.user_data import ContentType, Favorite
from catalog_sync.services.reconcile import ReconcileResult, Reconciler
from catalog_sync.services.tmdb import TmdbClient
from catalog_sync.tasks.sync import SeriesDetailsMode, SyncOptions, _set_status, sync_provider
from tests.conftest import FakeXtream


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def __call__(self, provider_id, status, counts=None):
        self.events.append((provider_id, status, counts))
        return True

    @property
    def statuses(self):
        return [status for _, status, _ in self.events]


@pytest.fixture
def notifier():
    return RecordingNotifier()


def stored_provider(session_factory, provider_id) -> Provider:
    with session_factory() as db:
        provider = db.get(Provider, provider_id)
        db.expunge(provider)
        return provider


@pytest.mark.asyncio
async def test_full_sync_completes_with_counts(session_factory, provider, catalog_payloads, notifier, db):
    db.add(Favorite(user_id=1, content_type=ContentType.MOVIE.value, content_id=999))
    db.commit()
    fake = FakeXtream(catalog_payloads)

    result = await sync_provider(provider.id, session_factory=session_factory, client=fake.client(),
                                 notifier=notifier)

    assert result.counts() == {"live": 2, "movies": 2, "series": 1}
    assert result.details is None
    assert result.orphans == {"favorites": 1, "watch_history": 0}
    stored = stored_provider(session_factory, provider.id)
    assert stored.sync_status == SyncStatus.COMPLETED.value
    assert (stored.live_channels_count, stored.movies_count, stored.series_count) == (2, 2, 1)
    assert stored.live_synced_at is not None
    assert stored.vod_synced_at == stored.series_synced_at
    assert notifier.statuses == ["syncing", "completed"]
    assert notifier.events[-1][2] == {"live": 2, "movies": 2, "series": 1}


@pytest.mark.asyncio
async def test_category_failure_stops_before_content(session_factory, provider, catalog_payloads, notifier):
    catalog_payloads["get_live_categories"] = httpx.Response(500)
    fake = FakeXtream(catalog_payloads)

    with pytest.raises(StageError) as exc_info:
        await sync_provider(provider.id, session_factory=session_factory, client=fake.client(), notifier=notifier)

    assert exc_info.value.stage == "categories"
    assert fake.calls == ["get_live_categories"]
    assert stored_provider(session_factory, provider.id).sync_status == SyncStatus.FAILED.value
    assert notifier.statuses == ["syncing", "failed"]


@pytest.mark.asyncio
async def test_content_failure_marks_provider_failed(session_factory, provider, catalog_payloads, notifier):
    catalog_payloads["get_vod_streams"] = httpx.Response(502)
    fake = FakeXtream(catalog_payloads)

    with pytest.raises(StageError) as exc_info:
        await sync_provider(provider.id, session_factory=session_factory, client=fake.client(), notifier=notifier)

    assert exc_info.value.stage == "movies"
    assert exc_info.value.to_dict()["cause"]["status"] == 502
    stored = stored_provider(session_factory, provider.id)
    assert stored.sync_status == SyncStatus.FAILED.value
    assert stored.movies_count == 0
    assert stored.vod_synced_at is None
    assert notifier.statuses[-1] == "failed"


@pytest.mark.asyncio
async def test_content_timeout(session_factory, provider, catalog_payloads, notifier):
    fake = FakeXtream(catalog_payloads)
    client = fake.client()

    async def hang(category_id=None):
        await asyncio.sleep(5)
        return []

    client.get_series = hang

    with pytest.raises(SyncTimeoutError):
        await sync_provider(provider.id, session_factory=session_factory, client=client, notifier=notifier,
                            content_timeout=0.1)

    assert stored_provider(session_factory, provider.id).sync_status == SyncStatus.FAILED.value



@pytest.mark.asyncio
async def test_slow_reconcile_hits_content_timeout(session_factory, provider, catalog_payloads, notifier, monkeypatch):
    def slow_reconcile(self, spec, listing):
        time.sleep(1.0)
        return ReconcileResult()

    monkeypatch.setattr(Reconciler, "reconcile", slow_reconcile)

    started = time.monotonic()
    with pytest.raises(SyncTimeoutError):
        await sync_provider(provider.id, session_factory=session_factory, client=FakeXtream(catalog_payloads).client(),
                            notifier=notifier, content_timeout=0.2)

    assert time.monotonic() - started < 0.8
    assert stored_provider(session_factory, provider.id).sync_status == SyncStatus.FAILED.value


@pytest.mark.asyncio
async def test_content_stages_write_concurrently(session_factory, provider, catalog_payloads, notifier, monkeypatch):
    def slow_reconcile(self, spec, listing):
        time.sleep(0.4)
        return ReconcileResult(upserted=len(listing))

    monkeypatch.setattr(Reconciler, "reconcile", slow_reconcile)

    started = time.monotonic()
    result = await sync_provider(provider.id, session_factory=session_factory,
                                 client=FakeXtream(catalog_payloads).client(), notifier=notifier)

    # Three stages of 0.4s each overlap instead of adding up
    assert time.monotonic() - started < 1.0
    assert result.counts() == {"live": 2, "movies": 2, "series": 1}
    assert stored_provider(session_factory, provider.id).sync_status == SyncStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_provider_deleted_mid_sync_keeps_original_error(session_factory, provider, catalog_payloads):
    statuses = []

    def deleting_notifier(provider_id, status, counts=None):
        statuses.append(status)
        if status == SyncStatus.SYNCING.value:
            with session_factory() as db:
                db.delete(db.get(Provider, provider_id))
                db.commit()
        return True

    with pytest.raises(StageError) as excinfo:
        await sync_provider(provider.id, session_factory=session_factory,
                            client=FakeXtream(catalog_payloads).client(), notifier=deleting_notifier)

    assert excinfo.value.stage == "categories"
    assert statuses == ["syncing", "failed"]


def test_set_status_on_missing_provider_only_warns(session_factory, caplog):
    with caplog.at_level("WARNING"):
        _set_status(session_factory, 4242, SyncStatus.FAILED)

    assert "Provider 4242 disappeared" in caplog.text


@pytest.mark.asyncio
async def test_enqueue_mode_schedules_detail_jobs(session_factory, provider, catalog_payloads, notifier):
    scheduled = []

    def enqueuer(provider_id, batch_size):
        scheduled.append((provider_id, batch_size))
        return 2

    options = SyncOptions(series_details=SeriesDetailsMode.ENQUEUE, details_batch_size=25)
    result = await sync_provider(provider.id, options, session_factory=session_factory,
                                 client=FakeXtream(catalog_payloads).client(), notifier=notifier,
                                 enqueuer=enqueuer)

    assert scheduled == [(provider.id, 25)]
    assert result.details == {"batch_size": 25, "jobs": 2}
    assert stored_provider(session_factory, provider.id).sync_status == SyncStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_immediate_mode_fetches_series_details(session_factory, provider, catalog_payloads, notifier):
    catalog_payloads["get_series_info"] = {
        "info": {"plot": "Baltimore."},
        "episodes": {"1": [{"id": "9001", "episode_num": 1, "title": "The Target"}]},
    }
    fake = FakeXtream(catalog_payloads)

    result = await sync_provider(provider.id, SyncOptions(series_details="immediate"),
                                 session_factory=session_factory, client=fake.client(),
                                 tmdb=TmdbClient(enabled=False), notifier=notifier)

    assert result.details == {"succeeded": 1, "failed": 0, "seasons": 1, "episodes": 1}
    assert fake.calls.count("get_series_info") == 1


@pytest.mark.asyncio
async def test_resync_removes_vanished_movies(session_factory, provider, catalog_payloads, notifier, db):
    await sync_provider(provider.id, session_factory=session_factory,
                        client=FakeXtream(catalog_payloads).client(), notifier=notifier)
    catalog_payloads["get_vod_streams"] = catalog_payloads["get_vod_streams"][:1]

    result = await sync_provider(provider.id, session_factory=session_factory,
                                 client=FakeXtream(catalog_payloads).client(), notifier=notifier)

    assert result.movies == 1
    assert result.deleted["movies"] == 1
    assert [m.stream_id for m in db.query(Movie).all()] == [200]


@pytest.mark.asyncio
async def test_unknown_provider(session_factory, notifier):
    with pytest.raises(ProviderNotFoundError):
        await sync_provider(404, session_factory=session_factory, client=FakeXtream().client(), notifier=notifier)
    assert notifier.events == []
