import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware
from catalog_sync.api.api import api_router
from catalog_sync.api.deps import get_stream_proxy
from catalog_sync.core.config import settings
from catalog_sync.core.errors import (
    CatalogError,
    MovieNotFoundError,
    ProviderNotFoundError,
    RateLimitedError,
    SeriesNotFoundError,
    UpstreamHTTPError,
    UpstreamTransportError,
)
from catalog_sync.core.logging import setup_logging
from catalog_sync.db.session import init_db

setup_logging()
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    MovieNotFoundError: 404,
    ProviderNotFoundError: 404,
    SeriesNotFoundError: 404,
    RateLimitedError: 429,
    UpstreamHTTPError: 502,
    UpstreamTransportError: 504,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # Startup
    init_db()
    sweeper = asyncio.create_task(get_stream_proxy().run_sweeper())
    yield
    # Shutdown - stop the proxy cache sweeper
    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Trust proxy headers (X-Forwarded-Proto, X-Forwarded-For) from reverse proxies like HAProxy/nginx
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=["*"])


@app.exception_handler(CatalogError)
async def catalog_error_handler(request: Request, exc: CatalogError):
    status_code = ERROR_STATUS.get(type(exc), 500)
    if status_code == 500:
        logger.error(f"Unhandled catalog error on {request.url.path}: {exc}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


app.include_router(api_router, prefix=settings.API_V1_STR)


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
