from fastapi import APIRouter
from catalog_sync.api.endpoints import sync, epg, proxy

api_router = APIRouter()
api_router.include_router(sync.router, prefix="/sync", tags=["sync"])
api_router.include_router(epg.router, prefix="/epg", tags=["epg"])
api_router.include_router(proxy.router, prefix="/proxy", tags=["proxy"])
