from catalog_sync.core.celery_app import celery_app
from catalog_sync.db.session import SessionLocal
from catalog_sync.services.cleanup import cleanup_orphaned_user_data


@celery_app.task
def cleanup_orphans_task():
    db = SessionLocal()
    try:
        return cleanup_orphaned_user_data(db)
    finally:
        db.close()
