"""Upload, validate and process endpoints plus import-wide reports."""

from __future__ import annotations

import json
import logging
from datetime import datetime

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    Response,
    UploadFile,
    status,
)
from starlette.concurrency import run_in_threadpool

from land_importer.api.dependencies.pipeline import get_pipeline
from land_importer.api.schemas.imports import (
    BulkDeleteRequest,
    BulkDeleteResponse,
    CleanupRequest,
    CleanupResponse,
)
from land_importer.domain.enums import ExportFormat
from land_importer.domain.models import (
    ImportJob,
    ImportStatistics,
    ImportTemplate,
    ProcessOptions,
    ValidationResult,
)
from land_importer.services.pipeline import ImportPipeline
from land_importer.services.reports import import_template, template_csv

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/upload",
    summary="Upload a CSV file and create an import job",
    status_code=status.HTTP_201_CREATED,
    response_model=ImportJob,
)
async def upload_file(
    file: UploadFile = File(...),
    type: str | None = Form(None, description="land_registry, property_data, market_data or custom"),
    user_id: str | None = Form(None),
    configuration: str | None = Form(None, description="JSON object overriding the import configuration"),
    pipeline: ImportPipeline = Depends(get_pipeline),
) -> ImportJob:
    """Store the file, count its rows and snapshot the configuration into a new job."""
    overrides = None
    if configuration:
        try:
            overrides = json.loads(configuration)
        except json.JSONDecodeError as e:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"configuration must be valid JSON: {e.msg}",
            ) from e
        if not isinstance(overrides, dict):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="configuration must be a JSON object",
            )

    await file.seek(0)
    content = await file.read()
    return await run_in_threadpool(
        pipeline.intake.upload,
        content,
        file.filename,
        file.content_type,
        type,
        user_id,
        overrides,
    )


@router.post(
    "/validate/{job_id}",
    summary="Validate an uploaded file against the job's rules",
    response_model=ValidationResult,
)
def validate_job(
    job_id: str,
    pipeline: ImportPipeline = Depends(get_pipeline),
) -> ValidationResult:
    return pipeline.validation.validate(job_id)


@router.post(
    "/process/{job_id}",
    summary="Start processing a validated job",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=ImportJob,
)
def process_job(
    job_id: str,
    options: ProcessOptions | None = None,
    pipeline: ImportPipeline = Depends(get_pipeline),
) -> ImportJob:
    """Returns as soon as the run is queued; poll the job or its progress for the outcome."""
    return pipeline.jobs.process(job_id, options)


@router.get(
    "/statistics",
    summary="Aggregate import statistics",
    response_model=ImportStatistics,
)
def get_statistics(
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    pipeline: ImportPipeline = Depends(get_pipeline),
) -> ImportStatistics:
    return pipeline.jobs.statistics(start_date, end_date)


@router.get(
    "/template",
    summary="Describe the expected CSV layout",
    response_model=ImportTemplate,
)
def get_template() -> ImportTemplate:
    return import_template()


@router.get("/template/download", summary="Download the CSV template")
def download_template() -> Response:
    template = import_template()
    return Response(
        content=template_csv(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{template.filename}"'},
    )


@router.get("/export/{job_id}", summary="Export a job's loaded records")
def export_job(
    job_id: str,
    format: ExportFormat = Query(ExportFormat.CSV),
    pipeline: ImportPipeline = Depends(get_pipeline),
) -> Response:
    export = pipeline.jobs.export(job_id, format)
    return Response(
        content=export.content,
        media_type=export.media_type,
        headers={"Content-Disposition": f'attachment; filename="{export.filename}"'},
    )


@router.post(
    "/bulk-delete",
    summary="Delete several jobs, skipping any that cannot be deleted",
    response_model=BulkDeleteResponse,
)
def bulk_delete(
    payload: BulkDeleteRequest,
    pipeline: ImportPipeline = Depends(get_pipeline),
) -> BulkDeleteResponse:
    return BulkDeleteResponse(deleted_count=pipeline.jobs.bulk_delete(payload.job_ids))


@router.post(
    "/cleanup",
    summary="Delete terminal jobs older than a cutoff",
    response_model=CleanupResponse,
)
def cleanup(
    payload: CleanupRequest,
    pipeline: ImportPipeline = Depends(get_pipeline),
) -> CleanupResponse:
    return CleanupResponse(cleaned_count=pipeline.jobs.cleanup(payload.older_than_days))
