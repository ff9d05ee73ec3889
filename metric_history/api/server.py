"""FastAPI application: initialisation, middleware, error mapping, lifecycle."""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Tuple

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .dependencies import init_dependencies, shutdown_dependencies
from .models import ProblemDetail
from .routes import health, maintenance, metrics, snapshots
from ..schema import (
    CheckpointError,
    MetricStoreError,
    SnapshotDecodeError,
    SnapshotValidationError,
    SnapshotWriteError,
    StorageUnavailableError,
    WorkerClosedError,
)
from ..telemetry import get_logger


# ------------------------------------------------------------------
# Lifespan (startup / shutdown)
# ------------------------------------------------------------------

@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: open the store worker.  Shutdown: close it."""
    await init_dependencies()
    yield
    await shutdown_dependencies()


# ------------------------------------------------------------------
# Application
# ------------------------------------------------------------------

app = FastAPI(
    title="Metric History API",
    version="1.0.0",
    description="Persistent time-series storage for Kafka cluster-health snapshots.",
    lifespan=_lifespan,
)


# ------------------------------------------------------------------
# Middleware
# ------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_logger = get_logger("metric_history.api")


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Log every request with method, path, status, and duration."""
    start = time.monotonic()
    correlation_id = request.headers.get("X-Correlation-ID", "")
    try:
        response = await call_next(request)
    except Exception:
        _logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _problem(500, "Internal server error", "Unexpected failure")
    elapsed = round((time.monotonic() - start) * 1000, 2)
    _logger.info(
        "%s %s -> %d (%sms)",
        request.method, request.url.path, response.status_code, elapsed,
        extra={"correlation_id": correlation_id} if correlation_id else None,
    )
    if correlation_id:
        response.headers["X-Correlation-ID"] = correlation_id
    return response


# ------------------------------------------------------------------
# Error mapping
# ------------------------------------------------------------------

_STATUS_BY_ERROR = (
    (SnapshotWriteError, 409, "Snapshot write failed"),
    (SnapshotValidationError, 422, "Invalid snapshot"),
    (StorageUnavailableError, 503, "Storage unavailable"),
    (WorkerClosedError, 503, "Storage unavailable"),
    (CheckpointError, 503, "Checkpoint blocked"),
    (SnapshotDecodeError, 500, "Stored data is corrupt"),
)


def _problem(status: int, title: str, detail: str) -> JSONResponse:
    body = ProblemDetail(
        type=f"https://httpstatuses.io/{status}",
        title=title,
        status=status,
        detail=detail,
    )
    return JSONResponse(
        status_code=status,
        content=body.model_dump(),
        media_type="application/problem+json",
    )


def _classify(exc: MetricStoreError) -> Tuple[int, str]:
    for error_type, status, title in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status, title
    return 500, "Metric store error"


@app.exception_handler(MetricStoreError)
async def metric_store_error_handler(request: Request, exc: MetricStoreError) -> JSONResponse:
    status, title = _classify(exc)
    if status >= 500:
        _logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return _problem(status, title, str(exc))


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _problem(exc.status_code, "Request failed", str(exc.detail))


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return _problem(400, "Bad request", str(exc))


# ------------------------------------------------------------------
# Routers
# ------------------------------------------------------------------

app.include_router(snapshots.router, prefix="/api/v1")
app.include_router(maintenance.router, prefix="/api/v1/maintenance")
app.include_router(metrics.router, prefix="/api/v1/metrics")
app.include_router(health.router, prefix="/api/v1/health")
