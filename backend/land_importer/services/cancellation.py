"""Out-of-band cancellation flags, keyed by job id and checked between batches."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from datetime import timedelta

from redis import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

CANCEL_PREFIX = "jobs:cancel:"
CANCEL_TTL = timedelta(hours=24)


class CancellationSignals(ABC):
    @abstractmethod
    def request(self, job_id: str) -> None: ...

    @abstractmethod
    def is_requested(self, job_id: str) -> bool: ...

    @abstractmethod
    def clear(self, job_id: str) -> None: ...


class InMemoryCancellationSignals(CancellationSignals):
    def __init__(self) -> None:
        self._requested: set[str] = set()
        self._lock = threading.Lock()

    def request(self, job_id: str) -> None:
        with self._lock:
            self._requested.add(job_id)

    def is_requested(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._requested

    def clear(self, job_id: str) -> None:
        with self._lock:
            self._requested.discard(job_id)


class RedisCancellationSignals(CancellationSignals):
    """Flags visible to Celery workers on other hosts."""

    def __init__(self, client: Redis) -> None:
        self.client = client

    def _key(self, job_id: str) -> str:
        return f"{CANCEL_PREFIX}{job_id}"

    def request(self, job_id: str) -> None:
        try:
            self.client.set(self._key(job_id), "1", ex=int(CANCEL_TTL.total_seconds()))
        except RedisError as e:
            # cancel() still flips the registry status; the worker stops at its next guarded commit
            logger.warning(f"Could not set cancellation flag for job {job_id}: {e}")

    def is_requested(self, job_id: str) -> bool:
        try:
            return bool(self.client.exists(self._key(job_id)))
        except RedisError as e:
            logger.warning(f"Could not read cancellation flag for job {job_id}: {e}")
            return False

    def clear(self, job_id: str) -> None:
        try:
            self.client.delete(self._key(job_id))
        except RedisError as e:
            logger.warning(f"Could not clear cancellation flag for job {job_id}: {e}")
