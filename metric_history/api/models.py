"""API-specific Pydantic v2 response models."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict


class InsertResponse(BaseModel):
    """POST /api/v1/clusters/{cluster_id}/snapshots response."""
    model_config = ConfigDict(frozen=True)

    id: str
    cluster_id: str


class DeleteResponse(BaseModel):
    """DELETE endpoints response."""
    model_config = ConfigDict(frozen=True)

    deleted: int


class PruneResponse(BaseModel):
    """POST /api/v1/maintenance/prune response."""
    model_config = ConfigDict(frozen=True)

    deleted: int
    policy: str
    cutoff: Optional[float] = None


class CheckpointResponse(BaseModel):
    """POST /api/v1/maintenance/checkpoint response."""
    model_config = ConfigDict(frozen=True)

    status: str = "checkpointed"


class HealthResponse(BaseModel):
    """GET /api/v1/health response."""
    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    database: str = "connected"
    journal_mode: str = ""
    version: str = "1.0.0"
    uptime: float = 0.0


class ProblemDetail(BaseModel):
    """RFC 7807 error body."""
    model_config = ConfigDict(frozen=True)

    type: str = "about:blank"
    title: str
    status: int
    detail: Optional[str] = None
