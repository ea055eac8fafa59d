"""FastAPI application for invoice parsing.

Production-ready API with:
- Health and readiness checks for Kubernetes
- Invoice parsing from portal URLs or QR code content
- Cache inspection and invalidation
- Prometheus metrics for monitoring

Based on FastAPI best practices:
https://fastapi.tiangolo.com/
"""

import logging
import time

from fastapi import FastAPI, HTTPException, Request, Response, status
from pydantic import BaseModel, Field

from nfe_crawler.api import metrics
from nfe_crawler.cache.base import CacheStats
from nfe_crawler.crawler.service import is_invoice_key
from nfe_crawler.parser.schema import ServiceResponse
from nfe_crawler.parser.service import create_invoice_parser_service
from nfe_crawler.shared.config import get_settings

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="NFe Invoice Parser",
    description="Parses Brazilian NFe/NFC-e invoices from government portal pages",
    version=settings.service_version,
)

parser_service = create_invoice_parser_service(settings)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Middleware to collect request metrics.

    Tracks:
    - Request count by method, endpoint, and status
    - Request duration by method and endpoint
    """
    # Skip metrics for /metrics endpoint itself
    if request.url.path == "/metrics":
        return await call_next(request)

    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    metrics.http_requests_total.labels(
        method=request.method,
        endpoint=request.url.path,
        status=response.status_code,
    ).inc()

    metrics.http_request_duration_seconds.labels(
        method=request.method,
        endpoint=request.url.path,
    ).observe(duration)

    return response


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool


class ParseRequest(BaseModel):
    """Invoice parse request; exactly one of url or qr_data is expected."""

    url: str | None = None
    qr_data: str | None = None
    force_refresh: bool = False
    owner_id: str | None = None
    timeout: float | None = Field(default=None, gt=0)


class CacheClearResponse(BaseModel):
    """Cache invalidation response."""

    invoice_key: str
    removed: bool


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check() -> HealthResponse:
    """Health check endpoint for liveness probe.

    Returns:
        Health status information
    """
    return HealthResponse(
        status="healthy", version=settings.service_version, service=settings.service_name
    )


@app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
def readiness_check() -> ReadinessResponse:
    """Readiness check endpoint for Kubernetes readiness probe.

    Returns:
        Readiness status
    """
    return ReadinessResponse(ready=True)


@app.get("/metrics", tags=["Monitoring"])
def get_metrics() -> Response:
    """Prometheus metrics endpoint.

    Returns:
        Prometheus metrics in text format
    """
    metrics_data, content_type = metrics.get_metrics()
    return Response(content=metrics_data, media_type=content_type)


@app.post("/api/v1/invoices/parse", response_model=ServiceResponse, tags=["Invoices"])
def parse_invoice(request: ParseRequest) -> ServiceResponse:
    """Parse an invoice from a portal URL or QR code content.

    Pipeline failures are reported in the body with ``success: false`` and
    an error code, not through the HTTP status.

    ## Usage Example

    ```bash
    curl -X POST "http://localhost:8000/api/v1/invoices/parse" \\
      -H "Content-Type: application/json" \\
      -d '{"url": "https://sat.sef.sc.gov.br/nfce/consulta?p=..."}'
    ```

    Args:
        request: URL or QR payload plus parsing options

    Returns:
        Parsed invoice with cache metadata, or a structured error

    Raises:
        HTTPException: If neither url nor qr_data is provided
    """
    if request.url:
        return parser_service.parse_from_url(
            request.url,
            force_refresh=request.force_refresh,
            owner_id=request.owner_id,
            timeout=request.timeout,
        )

    if request.qr_data:
        return parser_service.parse_from_qr_code(
            request.qr_data,
            force_refresh=request.force_refresh,
            owner_id=request.owner_id,
            timeout=request.timeout,
        )

    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST, detail="Either url or qr_data is required"
    )


@app.get("/api/v1/cache/stats", response_model=CacheStats, tags=["Cache"])
def cache_stats() -> CacheStats:
    """Return cache hit/miss counters and size."""
    return parser_service.cache.get_stats()


@app.delete(
    "/api/v1/cache/{invoice_key}", response_model=CacheClearResponse, tags=["Cache"]
)
def clear_cached_invoice(invoice_key: str) -> CacheClearResponse:
    """Drop a cached invoice so the next request re-parses it.

    Raises:
        HTTPException: If the key is not 44 digits
    """
    if not is_invoice_key(invoice_key):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invoice key must be 44 digits",
        )

    removed = parser_service.cache.has(invoice_key)
    parser_service.cache.clear(invoice_key)
    logger.info(f"Cache entry cleared for invoice {invoice_key} (existed={removed})")
    return CacheClearResponse(invoice_key=invoice_key, removed=removed)
