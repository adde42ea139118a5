from celery import Celery
from celery.signals import setup_logging as celery_setup_logging
from catalog_sync.core.config import settings
from catalog_sync.core.logging import setup_logging

celery_app = Celery("worker", broker=settings.REDIS_URL, backend=settings.REDIS_URL)

celery_app.conf.update(task_track_started=True)

# Configure Celery Beat schedule
celery_app.conf.beat_schedule = {
    'check-epg-every-30-minutes': {
        'task': 'catalog_sync.tasks.epg.check_epg_task',
        'schedule': 1800.0,
    },
    'cleanup-orphans-every-hour': {
        'task': 'catalog_sync.tasks.cleanup.cleanup_orphans_task',
        'schedule': 3600.0,
    },
}
celery_app.conf.timezone = settings.TIMEZONE


@celery_setup_logging.connect
def _configure_worker_logging(**kwargs):
    setup_logging()


# Import tasks to register them
from catalog_sync.tasks import sync  # noqa
from catalog_sync.tasks import epg  # noqa
from catalog_sync.tasks import cleanup  # noqa
