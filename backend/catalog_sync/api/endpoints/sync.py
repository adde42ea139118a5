from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from catalog_sync.db.session import get_db
from catalog_sync.models.provider import Provider
from catalog_sync.schemas import ProviderSyncStatus, SeriesDetailsProgress, SyncTriggerResponse
from catalog_sync.services.series_details import series_details_progress
from catalog_sync.tasks.sync import SeriesDetailsMode, sync_movie_details_task, sync_provider_task

router = APIRouter()


def _get_provider(db: Session, provider_id: int) -> Provider:
    provider = db.get(Provider, provider_id)
    if provider is None:
        raise HTTPException(status_code=404, detail="Provider not found")
    return provider


@router.post("/{provider_id}", response_model=SyncTriggerResponse)
def trigger_provider_sync(provider_id: int, series_details: SeriesDetailsMode = SeriesDetailsMode.SKIP,
                          db: Session = Depends(get_db)):
    _get_provider(db, provider_id)
    task = sync_provider_task.delay(provider_id, series_details.value)
    return SyncTriggerResponse(message="Provider sync started", task_id=task.id)


@router.get("/{provider_id}/status", response_model=ProviderSyncStatus)
def get_provider_sync_status(provider_id: int, db: Session = Depends(get_db)):
    return _get_provider(db, provider_id)


@router.get("/{provider_id}/series-details", response_model=SeriesDetailsProgress)
def get_series_details_progress(provider_id: int, db: Session = Depends(get_db)):
    _get_provider(db, provider_id)
    return series_details_progress(db, provider_id)


@router.post("/{provider_id}/movie-details", response_model=SyncTriggerResponse)
def trigger_movie_details_sync(provider_id: int, db: Session = Depends(get_db)):
    _get_provider(db, provider_id)
    task = sync_movie_details_task.delay(provider_id)
    return SyncTriggerResponse(message="Movie details sync started", task_id=task.id)
