from datetime import timedelta

from catalog_sync.models.user_data import ContentType, WatchHistory
from catalog_sync.tasks import cleanup as cleanup_tasks
from catalog_sync.tasks import epg as epg_tasks
from catalog_sync.tasks import sync as sync_tasks
from catalog_sync.utils import utcnow


def test_check_epg_task_queues_due_active_providers(session_factory, make_provider, monkeypatch):
    due = make_provider(name="Never synced")
    make_provider(name="Fresh", epg_synced_at=utcnow() - timedelta(hours=1))
    make_provider(name="Disabled", is_active=False)
    queued = []
    monkeypatch.setattr(epg_tasks, "SessionLocal", session_factory)
    monkeypatch.setattr(epg_tasks.sync_epg_task, "delay", lambda provider_id: queued.append(provider_id))

    assert epg_tasks.check_epg_task() == 1
    assert queued == [due.id]


def test_cleanup_orphans_task(session_factory, db, monkeypatch):
    db.add(WatchHistory(user_id=3, content_type=ContentType.MOVIE.value, content_id=42))
    db.commit()
    monkeypatch.setattr(cleanup_tasks, "SessionLocal", session_factory)

    assert cleanup_tasks.cleanup_orphans_task() == {"favorites": 0, "watch_history": 1}


def test_movie_details_task_drops_missing_provider(session_factory, monkeypatch):
    monkeypatch.setattr(sync_tasks, "SessionLocal", session_factory)

    assert sync_tasks.sync_movie_details_task(4242) is None
