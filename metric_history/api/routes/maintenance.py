"""Retention pruning and checkpoint endpoints."""

from __future__ import annotations

import time
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..dependencies import get_config, get_worker
from ..models import CheckpointResponse, PruneResponse
from ...config import StoreConfig
from ...schema import RetentionPolicy
from ...worker import MetricStoreWorker

router = APIRouter(tags=["maintenance"])


@router.post(
    "/prune",
    response_model=PruneResponse,
    summary="Delete snapshots older than the retention policy",
)
async def prune(
    policy: Optional[RetentionPolicy] = Query(
        None, description="Defaults to the configured policy",
    ),
    config: StoreConfig = Depends(get_config),
    worker: MetricStoreWorker = Depends(get_worker),
) -> PruneResponse:
    policy = policy or config.retention_policy
    now = time.time()
    deleted = await worker.prune_all_clusters(policy, now=now)
    return PruneResponse(deleted=deleted, policy=policy.value, cutoff=policy.cutoff(now))


@router.post(
    "/checkpoint",
    response_model=CheckpointResponse,
    summary="Merge the write-ahead log into the database file",
)
async def checkpoint(
    worker: MetricStoreWorker = Depends(get_worker),
) -> CheckpointResponse:
    await worker.checkpoint()
    return CheckpointResponse()
