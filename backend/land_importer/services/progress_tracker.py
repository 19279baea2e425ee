"""Job progress snapshots kept in Redis for dashboards and other instances."""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from typing import Any

from redis import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

PROGRESS_PREFIX = "jobs:progress:"
PROGRESS_CHANNEL = "jobs:events"
PROGRESS_TTL = timedelta(hours=24)


def _key(job_id: str) -> str:
    return f"{PROGRESS_PREFIX}{job_id}"


class ProgressTracker:
    def __init__(self, client: Redis) -> None:
        # Expects a client created with decode_responses=True
        self.client = client

    def publish(self, event: str, payload: dict[str, Any]) -> None:
        """Merge the event into the job's snapshot and broadcast it."""
        job_id = payload.get("job_id")
        if not job_id:
            return
        snapshot = self.fetch(job_id)
        snapshot.update(payload)
        snapshot["event"] = event
        message = json.dumps(snapshot, default=str)
        try:
            self.client.set(_key(job_id), message, ex=int(PROGRESS_TTL.total_seconds()))
            self.client.publish(PROGRESS_CHANNEL, message)
        except RedisError as e:
            # Redis availability should not break ingestion.
            logger.warning(f"Could not publish progress for job {job_id}: {e}")

    def fetch(self, job_id: str) -> dict[str, Any]:
        """Return the latest snapshot, or an empty dict when none is stored."""
        try:
            raw = self.client.get(_key(job_id))
        except RedisError:
            return {}
        if not raw:
            return {}
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return {}

    def clear(self, job_id: str) -> None:
        try:
            self.client.delete(_key(job_id))
        except RedisError as e:
            logger.warning(f"Could not clear progress for job {job_id}: {e}")
