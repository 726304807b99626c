"""
Main Application - Storefront HTTP API.

Serves the catalog, order and download endpoints to browser wallets. Payment
reconciliation runs in the separate chain listener process (app.daemon).
"""

import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import generate_latest

from app.api.routes import router
from app.api.status_routes import router as status_router
from app.config import settings
from app.db.migration_runner import run_migrations
from app.db.session import close_engines
from app.observability import get_logger, log_context, metrics, setup_logging, setup_tracing
from app.observability.tracing import instrument_fastapi

setup_logging()
logger = get_logger(__name__)

# Headers the download response sets that browser clients need to read
DOWNLOAD_HEADERS = [
    "Content-Disposition",
    "X-Catalog-Title",
    "X-Payment-Request-Id",
    "X-Fulfilled-Hash",
]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info(
        "storefront_api_starting",
        version=settings.api_version,
        receiver_contract=settings.payment_receiver_contract or None,
        nonce_tracking=settings.download_nonce_tracking,
    )
    if settings.run_migrations_on_startup:
        run_migrations()
    yield
    await close_engines()
    logger.info("storefront_api_stopped")


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    lifespan=lifespan,
)

setup_tracing()
instrument_fastapi(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
    expose_headers=DOWNLOAD_HEADERS,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """422 with the pydantic errors; ctx may hold exceptions, so encode it as strings."""
    errors = jsonable_encoder(exc.errors(), custom_encoder={Exception: str})
    logger.warning(
        "request_validation_failed",
        path=request.url.path,
        fields=[".".join(str(part) for part in error["loc"]) for error in errors],
    )
    return JSONResponse(status_code=422, content={"detail": errors})


@app.middleware("http")
async def observe_request(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Time each request, label metrics by route template, and tag logs with the request id."""
    started = time.perf_counter()
    method = request.method
    in_progress = metrics.http_requests_in_progress.labels(method=method)
    with log_context(request_id=request.headers.get("X-Request-ID")):
        in_progress.inc()
        try:
            response = await call_next(request)
        except Exception as exc:
            metrics.record_error(type(exc).__name__, "http_request")
            logger.exception("request_failed", method=method, path=request.url.path)
            raise
        finally:
            in_progress.dec()

        route = request.scope.get("route")
        endpoint = getattr(route, "path", "unmatched")
        duration = time.perf_counter() - started
        metrics.record_http_request(endpoint, method, response.status_code, duration)
        logger.info(
            "request_completed",
            method=method,
            endpoint=endpoint,
            status_code=response.status_code,
            duration_seconds=round(duration, 4),
        )
        return response


app.include_router(router)
app.include_router(status_router)


@app.get("/")
async def root() -> dict[str, str]:
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "status": "running",
    }


@app.get("/metrics")
async def metrics_endpoint() -> Response:
    """Prometheus text exposition; 404 when metrics are disabled."""
    if not settings.metrics_enabled:
        return PlainTextResponse("", status_code=404)
    return PlainTextResponse(generate_latest())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
