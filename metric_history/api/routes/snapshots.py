"""Snapshot ingestion and query endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..dependencies import get_worker
from ..models import DeleteResponse, InsertResponse
from ...analysis.downsampler import bucket_seconds_for_range
from ...schema import AggregationMode, MetricSnapshot, SnapshotPage, TimestampBounds
from ...worker import MetricStoreWorker

router = APIRouter(tags=["snapshots"])


def _check_range(start: float, end: float) -> None:
    if start > end:
        raise HTTPException(status_code=422, detail="start must not be after end")


@router.post(
    "/clusters/{cluster_id}/snapshots",
    response_model=InsertResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Store one raw snapshot",
)
async def insert_snapshot(
    cluster_id: str,
    snapshot: MetricSnapshot,
    worker: MetricStoreWorker = Depends(get_worker),
) -> InsertResponse:
    await worker.insert(snapshot, cluster_id)
    return InsertResponse(id=str(snapshot.id), cluster_id=cluster_id)


@router.get(
    "/clusters/{cluster_id}/snapshots/recent",
    response_model=SnapshotPage,
    summary="Most recent snapshots, oldest first",
)
async def recent_snapshots(
    cluster_id: str,
    limit: Optional[int] = Query(None, ge=1, description="Max rows; defaults to store capacity"),
    worker: MetricStoreWorker = Depends(get_worker),
) -> SnapshotPage:
    return await worker.load_recent_snapshots(cluster_id, limit)


@router.get(
    "/clusters/{cluster_id}/snapshots",
    response_model=SnapshotPage,
    summary="Raw snapshots in an inclusive time range",
)
async def range_snapshots(
    cluster_id: str,
    start: float = Query(..., description="Inclusive lower bound, epoch seconds"),
    end: float = Query(..., description="Inclusive upper bound, epoch seconds"),
    worker: MetricStoreWorker = Depends(get_worker),
) -> SnapshotPage:
    _check_range(start, end)
    return await worker.load_snapshots(cluster_id, start, end)


@router.get(
    "/clusters/{cluster_id}/snapshots/downsampled",
    response_model=SnapshotPage,
    summary="Bucket-aggregated snapshots for wide ranges",
)
async def downsampled_snapshots(
    cluster_id: str,
    start: float = Query(...),
    end: float = Query(...),
    mode: AggregationMode = Query(AggregationMode.MEAN),
    bucket_seconds: Optional[int] = Query(
        None, ge=1, description="Bucket width; chosen from the span when omitted",
    ),
    worker: MetricStoreWorker = Depends(get_worker),
) -> SnapshotPage:
    """Aggregate the range, or return raw rows when the span is too short."""
    _check_range(start, end)
    if bucket_seconds is None:
        bucket_seconds = bucket_seconds_for_range(end - start)
        if bucket_seconds is None:
            return await worker.load_snapshots(cluster_id, start, end)
    return await worker.load_downsampled_snapshots(
        cluster_id, start, end, bucket_seconds, mode,
    )


@router.get(
    "/clusters/{cluster_id}/bounds",
    response_model=TimestampBounds,
    summary="Oldest and newest stored timestamp",
)
async def timestamp_bounds(
    cluster_id: str,
    worker: MetricStoreWorker = Depends(get_worker),
) -> TimestampBounds:
    bounds = await worker.timestamp_bounds(cluster_id)
    if bounds is None:
        raise HTTPException(status_code=404, detail=f"No data for cluster {cluster_id}")
    return bounds


@router.delete(
    "/clusters/{cluster_id}/snapshots",
    response_model=DeleteResponse,
    summary="Delete every snapshot of one cluster",
)
async def delete_cluster(
    cluster_id: str,
    worker: MetricStoreWorker = Depends(get_worker),
) -> DeleteResponse:
    return DeleteResponse(deleted=await worker.delete_cluster_data(cluster_id))


@router.delete(
    "/snapshots",
    response_model=DeleteResponse,
    summary="Delete every snapshot in the store",
)
async def delete_all(
    worker: MetricStoreWorker = Depends(get_worker),
) -> DeleteResponse:
    return DeleteResponse(deleted=await worker.delete_all_data())
