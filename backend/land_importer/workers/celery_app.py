"""Celery application for processing runs, webhook delivery and retention cleanup."""

import ssl

from celery import Celery
from celery.schedules import crontab

from land_importer.core.config import get_settings
from land_importer.utils.redis_client import normalize_redis_url

settings = get_settings()

# Upgrade redis:// to rediss:// for providers that only speak TLS
broker_url = normalize_redis_url(settings.celery_broker_url or settings.redis_url)
backend_url = normalize_redis_url(settings.celery_result_url or settings.redis_url)
is_ssl = broker_url.startswith("rediss://") or backend_url.startswith("rediss://")

# The Redis result backend reads ssl_cert_reqs from the URL during initialization
if is_ssl:
    ssl_param = "ssl_cert_reqs=none"
    if "ssl_cert_reqs" not in broker_url:
        separator = "&" if "?" in broker_url else "?"
        broker_url = f"{broker_url}{separator}{ssl_param}"
    if "ssl_cert_reqs" not in backend_url:
        separator = "&" if "?" in backend_url else "?"
        backend_url = f"{backend_url}{separator}{ssl_param}"

celery_app = Celery(
    "land_importer",
    broker=broker_url,
    backend=backend_url,
    include=[
        "land_importer.workers.tasks.process_import",
        "land_importer.workers.tasks.webhook_dispatch_async",
        "land_importer.workers.tasks.cleanup",
    ],
)

# Task routing by queue - routes tasks to specific queues
celery_app.conf.task_routes = {
    "land_importer.workers.tasks.process_import": {"queue": "imports"},
    "land_importer.workers.tasks.webhook_dispatch_async": {"queue": "webhooks"},
    "land_importer.workers.tasks.cleanup_expired_jobs": {"queue": "imports"},
    "land_importer.workers.tasks.fail_stalled_jobs": {"queue": "imports"},
}
celery_app.conf.task_default_queue = "imports"

celery_app.conf.beat_schedule = {
    "cleanup-expired-import-jobs": {
        "task": "land_importer.workers.tasks.cleanup_expired_jobs",
        "schedule": crontab(hour=3, minute=0),
        "args": (settings.retention_days,),
    },
    "fail-stalled-import-jobs": {
        "task": "land_importer.workers.tasks.fail_stalled_jobs",
        "schedule": crontab(minute="*/10"),
    },
}

celery_config = {
    "task_serializer": "json",
    "accept_content": ["json"],
    "result_serializer": "json",
    "timezone": "UTC",
    "enable_utc": True,
    "task_acks_late": True,  # Acknowledge after task completion
    "task_reject_on_worker_lost": True,  # Re-queue if worker dies
    "worker_prefetch_multiplier": 1,  # Fair task distribution
    "worker_concurrency": settings.max_concurrent_jobs,
    # Hard limit sits above the per-job processing deadline
    "task_time_limit": settings.default_timeout_minutes * 60 + 300,
    "result_expires": 3600,
    "broker_connection_retry_on_startup": True,
    "worker_hijack_root_logger": False,
    "result_backend_always_retry": True,
    "result_backend_max_retries": 3,
}

if is_ssl:
    ssl_dict = {"ssl_cert_reqs": ssl.CERT_NONE}
    celery_config["broker_use_ssl"] = ssl_dict
    celery_config["redis_backend_use_ssl"] = ssl_dict
    celery_config["broker_transport_options"] = ssl_dict.copy()
    celery_config["result_backend_transport_options"] = ssl_dict.copy()

celery_app.conf.update(celery_config)
