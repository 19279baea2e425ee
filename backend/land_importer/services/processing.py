"""Batched transform/load runs for validated jobs."""

from __future__ import annotations

import logging
import time
from typing import Callable

from land_importer.core.errors import (
    JobTimeoutError,
    NotFoundError,
    RowMappingError,
    StaleJobStateError,
)
from land_importer.domain.enums import ImportJobStatus, ValidationSeverity
from land_importer.domain.models import ImportJob, ProcessOptions, ValidationIssue, utcnow
from land_importer.services.cancellation import CancellationSignals
from land_importer.services.csv_parsing import iter_rows
from land_importer.services.events import EventSink
from land_importer.services.record_sink import RecordSink
from land_importer.services.registry import JobRegistry
from land_importer.services.transforms import CustomTransform, RowMapper
from land_importer.storage.file_storage import FileStorage
from land_importer.utils.batching import chunked

logger = logging.getLogger(__name__)

PROCESSING_ONLY = frozenset({ImportJobStatus.PROCESSING})


def progress_percentage(processed_rows: int, total_rows: int) -> float:
    if total_rows <= 0:
        return 100.0
    return round(processed_rows / total_rows * 100, 2)


class ProcessingEngine:
    """Execute one processing run for a job already moved to ``processing``.

    The run owns the job's counters until it reaches a terminal status. It
    stops between batches when the job's cancellation flag is raised or its
    deadline passes, and stops without further writes as soon as a guarded
    registry update reports the job is no longer ``processing``.
    ``run`` never raises; failures are recorded on the job.
    """

    def __init__(
        self,
        registry: JobRegistry,
        storage: FileStorage,
        sink: RecordSink,
        events: EventSink,
        signals: CancellationSignals,
        custom_transforms: dict[str, CustomTransform] | None = None,
        discard_partial_on_cancel: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.registry = registry
        self.storage = storage
        self.sink = sink
        self.events = events
        self.signals = signals
        self.custom_transforms = custom_transforms if custom_transforms is not None else {}
        self.discard_partial_on_cancel = discard_partial_on_cancel
        self.clock = clock

    def run(self, job_id: str) -> None:
        try:
            job = self.registry.get(job_id)
        except NotFoundError:
            logger.warning(f"Job {job_id} disappeared before its run started")
            return
        if job.status != ImportJobStatus.PROCESSING:
            logger.info(f"Skipping run for job {job_id}: status is {job.status.value}")
            self.signals.clear(job_id)
            return

        try:
            self._execute(job)
        except StaleJobStateError as e:
            logger.info(f"Run for job {job_id} stopped: status changed to {e.actual}")
            self._after_external_stop(job_id)
        except NotFoundError as e:
            if self._job_exists(job_id):
                logger.error(f"Processing job {job_id} failed: {e.message}", exc_info=True)
                self._fail(job_id, e.message)
            else:
                logger.info(f"Run for job {job_id} stopped: job was deleted mid-run")
                self._discard_orphans(job_id)
        except Exception as e:
            message = getattr(e, "message", None) or str(e)
            if isinstance(e, JobTimeoutError):
                logger.warning(f"Job {job_id} timed out: {message}")
            else:
                logger.error(f"Processing job {job_id} failed: {message}", exc_info=True)
            self._fail(job_id, message)
        finally:
            self.signals.clear(job_id)

    def _execute(self, job: ImportJob) -> None:
        job_id = job.id
        options = ProcessOptions.model_validate(job.metadata.get("process_options") or {})
        batch_size = options.batch_size or job.configuration.batch_size
        timeout_minutes = options.timeout_minutes or job.configuration.timeout_minutes
        deadline = self.clock() + timeout_minutes * 60
        mapper = RowMapper(job.configuration.mappings, self.custom_transforms)

        logger.info(
            f"Processing job {job_id}: {job.total_rows} row(s), batch size {batch_size}, "
            f"skip_errors={options.skip_errors}"
        )
        processed = job.processed_rows
        rows = enumerate(iter_rows(self.storage.read(job.filename)), start=1)

        for batch in chunked(rows, batch_size):
            if self.signals.is_requested(job_id):
                self._cancel_observed(job_id)
                return
            if self.clock() > deadline:
                raise JobTimeoutError(
                    f"Processing timed out after {timeout_minutes} minute(s) "
                    f"({processed}/{job.total_rows} rows processed)"
                )

            records, issues = [], []
            for row_number, row in batch:
                try:
                    records.append((row_number, mapper.map_row(row_number, row)))
                except RowMappingError as e:
                    if not options.skip_errors:
                        raise
                    logger.debug(f"Skipping row {row_number} of job {job_id}: {e.message}")
                    issues.append(
                        ValidationIssue(
                            row=row_number,
                            column=e.column,
                            value=None if e.value is None else str(e.value),
                            message=e.message,
                            severity=ValidationSeverity.ERROR,
                            rule=f"mapping:{e.mapping_id}",
                        )
                    )

            self.sink.write(job_id, records)

            processed = min(processed + len(batch), job.total_rows)
            changes: dict = {"processed_rows": processed}
            if issues:
                changes["error_rows"] = job.error_rows + len(issues)
                changes["valid_rows"] = max(job.valid_rows - len(issues), 0)
            job = self.registry.update(job_id, expect=PROCESSING_ONLY, **changes)
            if issues:
                self.registry.append_issues(job_id, issues)

            self.events.publish(
                "import.progress",
                {
                    "job_id": job_id,
                    "processed_rows": processed,
                    "total_rows": job.total_rows,
                    "progress_percentage": progress_percentage(processed, job.total_rows),
                },
            )

        job = self.registry.update(
            job_id,
            expect=PROCESSING_ONLY,
            status=ImportJobStatus.COMPLETED,
            end_time=utcnow(),
        )
        logger.info(f"Job {job_id} completed: {job.processed_rows} row(s) in {job.duration:.2f}s")
        self.events.publish(
            "import.completed",
            {"job_id": job_id, "processed_rows": job.processed_rows, "duration": job.duration},
        )

    def _cancel_observed(self, job_id: str) -> None:
        try:
            job = self.registry.update(
                job_id,
                expect=PROCESSING_ONLY,
                status=ImportJobStatus.CANCELLED,
                end_time=utcnow(),
            )
        except StaleJobStateError:
            # cancel() already recorded the transition and published the event
            self._after_external_stop(job_id)
            return
        logger.info(f"Job {job_id} cancelled after {job.processed_rows} row(s)")
        self.events.publish(
            "import.cancelled",
            {"job_id": job_id, "processed_rows": job.processed_rows},
        )
        self._discard_partial(job_id)

    def _after_external_stop(self, job_id: str) -> None:
        try:
            job = self.registry.get(job_id)
        except NotFoundError:
            return
        if job.status == ImportJobStatus.CANCELLED:
            self._discard_partial(job_id)

    def _job_exists(self, job_id: str) -> bool:
        try:
            self.registry.get(job_id)
        except NotFoundError:
            return False
        return True

    def _discard_orphans(self, job_id: str) -> None:
        # Batches written after delete() cleared the sink belong to no job
        try:
            removed = self.sink.discard(job_id)
        except Exception as e:
            logger.error(f"Could not discard records of deleted job {job_id}: {e}", exc_info=True)
            return
        if removed:
            logger.info(f"Discarded {removed} record(s) written for deleted job {job_id}")

    def _discard_partial(self, job_id: str) -> None:
        if not self.discard_partial_on_cancel:
            return
        try:
            removed = self.sink.discard(job_id)
        except Exception as e:
            logger.error(f"Could not discard partial records for job {job_id}: {e}", exc_info=True)
            return
        logger.info(f"Discarded {removed} partial record(s) of cancelled job {job_id}")

    def _fail(self, job_id: str, message: str) -> None:
        try:
            self.registry.update(
                job_id,
                expect=PROCESSING_ONLY,
                status=ImportJobStatus.PROCESSING_FAILED,
                end_time=utcnow(),
                error_message=message,
            )
        except (StaleJobStateError, NotFoundError) as e:
            logger.info(f"Failure of job {job_id} not recorded: {e}")
            return
        self.events.publish("import.failed", {"job_id": job_id, "error": message})
