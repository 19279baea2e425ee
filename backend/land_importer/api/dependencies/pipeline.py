"""Pipeline dependency."""

from fastapi import Request

from land_importer.services.pipeline import ImportPipeline


def get_pipeline(request: Request) -> ImportPipeline:
    """FastAPI dependency returning the pipeline created at app startup."""
    return request.app.state.pipeline
