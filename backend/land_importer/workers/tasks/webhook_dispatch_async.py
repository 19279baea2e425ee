"""Celery task for asynchronous webhook dispatch."""

from __future__ import annotations

import logging
from typing import Any

from land_importer.services.webhook_dispatch import dispatch_event
from land_importer.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="land_importer.workers.tasks.webhook_dispatch_async")
def dispatch_webhook_async(
    self,
    url: str,
    payload: dict[str, Any],
    secret: str | None = None,
) -> dict[str, Any]:
    """Dispatch webhook asynchronously via Celery.

    This allows webhook delivery to be non-blocking for the import pipeline.

    Args:
        url: Webhook endpoint
        payload: Event envelope to send
        secret: Optional signing secret

    Returns:
        Dispatch result dictionary
    """
    result = dispatch_event(url, payload, secret)
    logger.info(
        f"Async webhook {payload.get('event')} dispatched: "
        f"success={result.get('success')}, status={result.get('status')}"
    )
    return result
