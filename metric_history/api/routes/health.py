"""Health-check endpoint."""

from __future__ import annotations

import time

from fastapi import APIRouter

from ..dependencies import get_worker
from ..models import HealthResponse
from ...schema import MetricStoreError

router = APIRouter(tags=["health"])

_start_time = time.monotonic()


@router.get(
    "/",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health() -> HealthResponse:
    """Return service health, database status, version, and uptime."""
    db_status = "connected"
    journal_mode = ""
    try:
        worker = get_worker()
        journal_mode = await worker.journal_mode()
    except MetricStoreError:
        db_status = "disconnected"

    uptime = round(time.monotonic() - _start_time, 2)
    return HealthResponse(
        status="healthy" if db_status == "connected" else "degraded",
        database=db_status,
        journal_mode=journal_mode,
        version="1.0.0",
        uptime=uptime,
    )
