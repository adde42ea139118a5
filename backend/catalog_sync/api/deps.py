from typing import Optional

from catalog_sync.db.session import SessionLocal
from catalog_sync.services.epg import EPGService, build_epg_service
from catalog_sync.services.stream_proxy import StreamProxy, stream_proxy

_epg_service: Optional[EPGService] = None


def get_epg_service() -> EPGService:
    global _epg_service
    if _epg_service is None:
        _epg_service = build_epg_service(SessionLocal)
    return _epg_service


def get_stream_proxy() -> StreamProxy:
    return stream_proxy
