"""
Removal of favorites and watch history that point at deleted catalog rows.

User data references catalog rows by ``(content_type, content_id)`` without a
foreign key, so every content sync is followed by this sweep.
"""
import logging
from typing import Dict

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from catalog_sync.models.content import Episode, LiveChannel, Movie, Series
from catalog_sync.models.user_data import ContentType, Favorite, WatchHistory

logger = logging.getLogger(__name__)

# Both tables may point at any of the four variants.
TARGETS = {
    ContentType.LIVE_CHANNEL: LiveChannel,
    ContentType.MOVIE: Movie,
    ContentType.SERIES: Series,
    ContentType.EPISODE: Episode,
}


def _sweep(db: Session, model, targets=TARGETS) -> int:
    removed = 0
    for content_type, target in targets.items():
        result = db.execute(
            delete(model)
            .where(model.content_type == content_type.value)
            .where(model.content_id.notin_(select(target.id)))
            .execution_options(synchronize_session=False)
        )
        removed += result.rowcount or 0
    return removed


def cleanup_orphaned_user_data(db: Session) -> Dict[str, int]:
    favorites = _sweep(db, Favorite)
    history = _sweep(db, WatchHistory)
    db.commit()
    if favorites or history:
        logger.info(f"Removed {favorites} orphaned favorites and {history} orphaned history entries")
    return {"favorites": favorites, "watch_history": history}
