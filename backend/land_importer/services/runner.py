"""Executors for processing runs."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable

from land_importer.core.errors import TransientIOError

logger = logging.getLogger(__name__)

PROCESS_IMPORT_TASK = "land_importer.workers.tasks.process_import"

RunFn = Callable[[str], None]


class JobRunner(ABC):
    @abstractmethod
    def submit(self, job_id: str) -> None:
        """Schedule a processing run; raise TransientIOError if it cannot be queued."""

    def shutdown(self, wait: bool = True) -> None:
        pass


class InlineJobRunner(JobRunner):
    """Run synchronously in the caller's thread (CLI use and deterministic tests)."""

    def __init__(self, run: RunFn) -> None:
        self.run = run

    def submit(self, job_id: str) -> None:
        self.run(job_id)


class ThreadPoolJobRunner(JobRunner):
    """At most ``max_workers`` runs execute at once; the rest wait in the executor queue."""

    def __init__(self, run: RunFn, max_workers: int = 4) -> None:
        self.run = run
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="import-job")
        self._futures: dict[str, Future] = {}
        self._lock = threading.Lock()

    def submit(self, job_id: str) -> None:
        try:
            future = self._executor.submit(self.run, job_id)
        except RuntimeError as e:
            raise TransientIOError(f"Job runner is not accepting work: {str(e)}") from e
        with self._lock:
            self._futures[job_id] = future
        future.add_done_callback(lambda done: self._finished(job_id, done))
        logger.debug(f"Queued processing run for job {job_id}")

    def _finished(self, job_id: str, future: Future) -> None:
        with self._lock:
            if self._futures.get(job_id) is future:
                del self._futures[job_id]
        error = future.exception()
        if error is not None:
            logger.error(f"Processing run for job {job_id} raised: {error}", exc_info=error)

    def wait(self, job_id: str, timeout: float | None = None) -> None:
        """Block until the job's current run, if any, has finished."""
        with self._lock:
            future = self._futures.get(job_id)
        if future is not None:
            future.exception(timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class CeleryJobRunner(JobRunner):
    """Hand runs to the ``imports`` Celery queue."""

    def __init__(self, celery_app) -> None:
        self.celery_app = celery_app

    def submit(self, job_id: str) -> None:
        try:
            result = self.celery_app.send_task(PROCESS_IMPORT_TASK, args=[job_id], queue="imports")
        except Exception as e:
            logger.error(f"Failed to enqueue processing for job {job_id}: {e}", exc_info=True)
            raise TransientIOError(f"Failed to enqueue processing task: {str(e)}") from e
        logger.info(f"Enqueued processing task {result.id} for job {job_id}")
