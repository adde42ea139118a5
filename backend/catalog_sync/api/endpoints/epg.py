from fastapi import APIRouter, Depends
from catalog_sync.api.deps import get_epg_service
from catalog_sync.schemas import CurrentProgramsRequest, CurrentProgramsResponse, NowNext
from catalog_sync.services.epg import EPGService

router = APIRouter()


@router.get("/{provider_id}/now/{epg_channel_id}", response_model=NowNext)
def get_now_and_next(provider_id: int, epg_channel_id: str, service: EPGService = Depends(get_epg_service)):
    return service.get_now_and_next(provider_id, epg_channel_id)


@router.post("/{provider_id}/current", response_model=CurrentProgramsResponse)
def get_current_programs(provider_id: int, body: CurrentProgramsRequest,
                         service: EPGService = Depends(get_epg_service)):
    programs = service.get_current_programs_batch(provider_id, body.epg_channel_ids)
    return CurrentProgramsResponse(programs=programs)
