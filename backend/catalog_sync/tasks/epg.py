import asyncio
import logging

from sqlalchemy import select

from catalog_sync.core.celery_app import celery_app
from catalog_sync.db.session import SessionLocal
from catalog_sync.models.provider import Provider
from catalog_sync.services.epg import needs_sync, sync_provider_epg

logger = logging.getLogger(__name__)


@celery_app.task
def sync_epg_task(provider_id: int, force: bool = False):
    return asyncio.run(sync_provider_epg(provider_id, session_factory=SessionLocal, force=force))


@celery_app.task
def check_epg_task():
    """Queue an EPG refresh for every active provider whose guide is stale"""
    db = SessionLocal()
    try:
        providers = db.scalars(select(Provider).where(Provider.is_active.is_(True))).all()
        due = [p.id for p in providers if needs_sync(p)]
    finally:
        db.close()

    for provider_id in due:
        sync_epg_task.delay(provider_id)
    if due:
        logger.info(f"Queued EPG sync for providers {due}")
    return len(due)
