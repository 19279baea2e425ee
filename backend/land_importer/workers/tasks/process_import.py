"""Celery task running one processing pass for an import job."""

from __future__ import annotations

import logging

from land_importer.services.pipeline import get_worker_pipeline
from land_importer.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="land_importer.workers.tasks.process_import")
def process_import_task(self, job_id: str) -> dict[str, str]:
    """Execute the run; the engine records every outcome on the job itself."""
    pipeline = get_worker_pipeline()
    logger.info(f"Worker {self.request.hostname} picked up job {job_id}")
    pipeline.processing.run(job_id)
    job = pipeline.registry.get(job_id)
    return {"job_id": job_id, "status": job.status.value}
