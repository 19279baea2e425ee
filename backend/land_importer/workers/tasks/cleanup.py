"""Periodic maintenance: retention sweep and stalled-job recovery."""

from __future__ import annotations

import logging

from land_importer.services.pipeline import get_worker_pipeline
from land_importer.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="land_importer.workers.tasks.cleanup_expired_jobs")
def cleanup_expired_jobs(older_than_days: int) -> int:
    cleaned = get_worker_pipeline().jobs.cleanup(older_than_days)
    logger.info(f"Retention sweep removed {cleaned} job(s)")
    return cleaned


@celery_app.task(name="land_importer.workers.tasks.fail_stalled_jobs")
def fail_stalled_jobs() -> int:
    return get_worker_pipeline().jobs.fail_stalled()
