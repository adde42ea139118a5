from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from catalog_sync.api.deps import get_stream_proxy
from catalog_sync.services.stream_proxy import StreamProxy, stream_headers

router = APIRouter()


@router.get("")
async def proxy_stream(url: str = Query(..., min_length=1), proxy: StreamProxy = Depends(get_stream_proxy)):
    result = await proxy.fetch(url)
    headers = stream_headers(result.content_type)
    headers["X-Cache"] = "HIT" if result.cached else "MISS"
    return Response(content=result.content, media_type=result.content_type, headers=headers)
