"""
Error types raised by the catalog clients and the sync pipeline.

Every error carries a stable ``code`` so it can be reported in provider
status events and API responses without leaking exception reprs.
"""
from typing import Any, Optional


class CatalogError(Exception):
    code = "error"

    def to_dict(self) -> dict:
        return {"code": self.code, "message": str(self)}


class UpstreamHTTPError(CatalogError):
    code = "upstream_http_error"

    def __init__(self, status: int, url: Optional[str] = None):
        self.status = status
        self.url = url
        super().__init__(f"Upstream returned HTTP {status}")

    def to_dict(self) -> dict:
        return {"code": self.code, "status": self.status, "message": str(self)}


class UpstreamTransportError(CatalogError):
    code = "upstream_transport_error"

    def __init__(self, reason: Any):
        self.reason = reason
        super().__init__(f"Transport error: {reason}")


class RateLimitedError(CatalogError):
    code = "rate_limited"

    def __init__(self, retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__("Upstream rate limit exceeded")


class ParseError(CatalogError):
    code = "parse_error"


class NotConfiguredError(CatalogError):
    code = "not_configured"


class SyncTimeoutError(CatalogError):
    code = "timeout"


class ProviderNotFoundError(CatalogError):
    code = "not_found"

    def __init__(self, provider_id: int):
        self.provider_id = provider_id
        super().__init__(f"Provider {provider_id} not found")


class StageError(CatalogError):
    """A sync stage (categories, live, movies, series, details) failed."""

    code = "stage_failed"

    def __init__(self, stage: str, cause: Exception):
        self.stage = stage
        self.cause = cause
        super().__init__(f"{stage} sync failed: {cause}")

    def to_dict(self) -> dict:
        cause = self.cause.to_dict() if isinstance(self.cause, CatalogError) else {"message": str(self.cause)}
        return {"code": self.code, "stage": self.stage, "cause": cause}


class SeriesNotFoundError(CatalogError):
    code = "not_found"

    def __init__(self, series_id: int):
        self.series_id = series_id
        super().__init__(f"Series {series_id} not found")


class MovieNotFoundError(CatalogError):
    code = "not_found"

    def __init__(self, movie_id: int):
        self.movie_id = movie_id
        super().__init__(f"Movie {movie_id} not found")
