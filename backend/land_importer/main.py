"""FastAPI application bootstrap."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from land_importer.api.routers import health, imports, jobs, rules
from land_importer.core.config import get_settings
from land_importer.core.errors import (
    ImportPipelineError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    TransientIOError,
)
from land_importer.services.pipeline import ImportPipeline, build_pipeline

logger = logging.getLogger(__name__)

ERROR_STATUS = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidInputError, status.HTTP_400_BAD_REQUEST),
    (InvalidStateError, status.HTTP_400_BAD_REQUEST),
    (TransientIOError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def status_for(error: ImportPipelineError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(error, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def pipeline_error_handler(request: Request, exc: ImportPipelineError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}", exc_info=exc)
    return JSONResponse(status_code=status_code, content={"detail": exc.message})


def create_app(pipeline: ImportPipeline | None = None) -> FastAPI:
    """Instantiate the FastAPI app; build the pipeline from settings unless one is given."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = pipeline is None
        app.state.pipeline = pipeline or build_pipeline(settings)
        try:
            yield
        finally:
            if owned:
                app.state.pipeline.close()

    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
    if pipeline is not None:
        app.state.pipeline = pipeline

    logger.info(f"[CORS] Allowed origins: {settings.cors_origins}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition"],
    )
    app.add_exception_handler(ImportPipelineError, pipeline_error_handler)

    app.include_router(health.router)
    app.include_router(imports.router, prefix="/api/imports", tags=["imports"])
    app.include_router(jobs.router, prefix="/api/imports/jobs", tags=["jobs"])
    app.include_router(rules.router, prefix="/api/imports", tags=["rules"])

    return app


app = create_app()
