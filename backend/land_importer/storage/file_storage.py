"""Stored-upload abstraction: bytes under a job-scoped key.

Two backends: the local filesystem (single instance, default) and Redis, for
deployments where the API and the Celery workers do not share a disk.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path

from redis import Redis
from redis.exceptions import RedisError

from land_importer.core.errors import NotFoundError, TransientIOError

logger = logging.getLogger(__name__)


def storage_key(job_id: str, original_name: str | None) -> str:
    """Build the job-scoped key an upload is stored under."""
    suffix = Path(original_name or "upload.csv").suffix.lower() or ".csv"
    return f"{job_id}{suffix}"


class FileStorage(ABC):
    """Write-once byte store. Files are never mutated after intake."""

    @abstractmethod
    def save(self, key: str, content: bytes) -> None: ...

    @abstractmethod
    def read(self, key: str) -> bytes: ...

    @abstractmethod
    def delete(self, key: str) -> None: ...


class LocalFileStorage(FileStorage):
    def __init__(self, uploads_dir: str | Path) -> None:
        self.root = Path(uploads_dir).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if path.parent != self.root:
            raise ValueError(f"Storage key escapes uploads directory: {key}")
        return path

    def save(self, key: str, content: bytes) -> None:
        path = self._path(key)
        try:
            path.write_bytes(content)
        except OSError as e:
            logger.error(f"OS error saving upload {key}: {e}", exc_info=True)
            raise TransientIOError(f"Failed to save file: {str(e)}") from e
        logger.info(f"Stored upload {key} ({len(content)} bytes) at {path}")

    def read(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise NotFoundError(f"Stored file not found: {key}") from e
        except OSError as e:
            raise TransientIOError(f"Failed to read stored file {key}: {str(e)}") from e

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            raise TransientIOError(f"Failed to delete stored file {key}: {str(e)}") from e


class RedisFileStorage(FileStorage):
    """Keep uploads in Redis so separate worker instances can read them."""

    KEY_PREFIX = "files:upload:"

    def __init__(self, client: Redis, ttl_seconds: int | None = None) -> None:
        # Needs a client created with decode_responses=False
        self.client = client
        self.ttl_seconds = ttl_seconds

    def _key(self, key: str) -> str:
        return f"{self.KEY_PREFIX}{key}"

    def save(self, key: str, content: bytes) -> None:
        try:
            self.client.set(self._key(key), content, ex=self.ttl_seconds)
        except RedisError as e:
            logger.error(f"Failed to store upload {key} in Redis: {e}", exc_info=True)
            raise TransientIOError(f"Failed to save file: {str(e)}") from e
        logger.info(f"Stored upload {key} in Redis ({len(content)} bytes)")

    def read(self, key: str) -> bytes:
        try:
            content = self.client.get(self._key(key))
        except RedisError as e:
            raise TransientIOError(f"Failed to read stored file {key}: {str(e)}") from e
        if content is None:
            raise NotFoundError(f"Stored file not found: {key}")
        return content

    def delete(self, key: str) -> None:
        try:
            self.client.delete(self._key(key))
        except RedisError as e:
            raise TransientIOError(f"Failed to delete stored file {key}: {str(e)}") from e
