#!/usr/bin/env python3
"""Fail jobs left in validating/processing by a dead worker and report queue depth."""

from land_importer.core.config import get_settings
from land_importer.services.pipeline import build_pipeline
from land_importer.utils.redis_client import create_redis_client

settings = get_settings()

pipeline = build_pipeline(settings)
try:
    failed = pipeline.jobs.fail_stalled()
    print(f"Marked {failed} stalled job(s) as failed")
finally:
    pipeline.close()

if settings.runner_backend == "celery":
    redis_client = create_redis_client(settings.celery_broker_url or settings.redis_url)
    for queue_name in ("imports", "webhooks"):
        print(f"Tasks in '{queue_name}' queue: {redis_client.llen(queue_name)}")
