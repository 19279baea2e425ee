"""Import job listing, detail, progress and lifecycle endpoints."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import AsyncGenerator, Literal

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from starlette.concurrency import run_in_threadpool

from land_importer.api.dependencies.pipeline import get_pipeline
from land_importer.api.schemas.imports import MessageResponse
from land_importer.core.errors import NotFoundError
from land_importer.domain.enums import TERMINAL_STATUSES, ImportJobStatus, ImportJobType
from land_importer.domain.models import (
    DataPreview,
    ErrorReport,
    ImportJob,
    JobPage,
    JobQuery,
    ProgressSnapshot,
)
from land_importer.services.pipeline import ImportPipeline

logger = logging.getLogger(__name__)

router = APIRouter()

STREAM_INTERVAL_SECONDS = 2.0
STREAM_MAX_IDLE_TICKS = 150  # 5 minutes at 2s intervals


@router.get(
    "",
    summary="List import jobs",
    response_model=JobPage,
)
def list_jobs(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=500),
    status: ImportJobStatus | None = Query(None),
    type: ImportJobType | None = Query(None),
    user_id: str | None = Query(None),
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    search: str | None = Query(None, description="Matches job id, file name or user id"),
    sort_by: str = Query("created_at", description="Any job field, snake_case or camelCase"),
    sort_order: Literal["asc", "desc"] = Query("desc"),
    pipeline: ImportPipeline = Depends(get_pipeline),
) -> JobPage:
    """Return one page of jobs, newest first by default."""
    query = JobQuery(
        page=page,
        limit=limit,
        status=status,
        type=type,
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return pipeline.jobs.list(query)


@router.get("/{job_id}", summary="Fetch an import job", response_model=ImportJob)
def get_job(job_id: str, pipeline: ImportPipeline = Depends(get_pipeline)) -> ImportJob:
    return pipeline.jobs.get(job_id)


@router.get(
    "/{job_id}/progress",
    summary="Progress snapshot with estimated time remaining",
    response_model=ProgressSnapshot,
)
def get_progress(job_id: str, pipeline: ImportPipeline = Depends(get_pipeline)) -> ProgressSnapshot:
    return pipeline.jobs.progress(job_id)


@router.get(
    "/{job_id}/errors",
    summary="Paginated validation and mapping issues",
    response_model=ErrorReport,
)
def get_errors(
    job_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=1000),
    pipeline: ImportPipeline = Depends(get_pipeline),
) -> ErrorReport:
    return pipeline.jobs.errors(job_id, page, limit)


@router.get(
    "/{job_id}/preview",
    summary="First rows of the uploaded file with inferred column types",
    response_model=DataPreview,
)
def get_preview(
    job_id: str,
    rows: int = Query(10, ge=1, le=100),
    pipeline: ImportPipeline = Depends(get_pipeline),
) -> DataPreview:
    return pipeline.jobs.preview(job_id, rows)


@router.get("/{job_id}/stream", summary="Server-Sent Events stream for real-time progress")
async def stream_job_progress(
    job_id: str,
    pipeline: ImportPipeline = Depends(get_pipeline),
) -> StreamingResponse:
    """Stream progress snapshots via Server-Sent Events (SSE).

    Each ``data:`` event carries a JSON ProgressSnapshot. The stream closes
    with an ``event: close`` once the job reaches a terminal status.

    Example client usage:
    ```javascript
    const eventSource = new EventSource('/api/imports/jobs/{job_id}/stream');
    eventSource.onmessage = (e) => {
      const data = JSON.parse(e.data);
      console.log('Progress:', data.progress_percentage);
    };
    ```
    """
    # Verify job exists before starting stream
    await run_in_threadpool(pipeline.jobs.get, job_id)

    async def event_generator() -> AsyncGenerator[str, None]:
        last_processed = -1
        idle_ticks = 0
        while True:
            try:
                snapshot = await run_in_threadpool(pipeline.jobs.progress, job_id)
            except NotFoundError:
                yield 'event: error\ndata: {"error": "Import job not found"}\n\n'
                break

            if snapshot.processed_rows != last_processed:
                last_processed = snapshot.processed_rows
                idle_ticks = 0
            else:
                idle_ticks += 1

            yield f"data: {snapshot.model_dump_json()}\n\n"

            if snapshot.status in TERMINAL_STATUSES:
                yield "event: close\ndata: {}\n\n"
                break
            if idle_ticks > STREAM_MAX_IDLE_TICKS:
                yield "event: timeout\ndata: {}\n\n"
                break

            await asyncio.sleep(STREAM_INTERVAL_SECONDS)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


@router.put("/{job_id}/cancel", summary="Cancel a job", response_model=ImportJob)
def cancel_job(job_id: str, pipeline: ImportPipeline = Depends(get_pipeline)) -> ImportJob:
    return pipeline.jobs.cancel(job_id)


@router.put("/{job_id}/retry", summary="Reset a failed job for another attempt", response_model=ImportJob)
def retry_job(job_id: str, pipeline: ImportPipeline = Depends(get_pipeline)) -> ImportJob:
    return pipeline.jobs.retry(job_id)


@router.delete("/{job_id}", summary="Delete a job and its stored file", response_model=MessageResponse)
def delete_job(job_id: str, pipeline: ImportPipeline = Depends(get_pipeline)) -> MessageResponse:
    pipeline.jobs.delete(job_id)
    return MessageResponse(message="Import job deleted successfully")
