"""Job lifecycle commands and read-side queries."""

from __future__ import annotations

import logging
import re
from collections import Counter
from datetime import datetime, timedelta

from land_importer.core.errors import (
    ImportPipelineError,
    InvalidInputError,
    InvalidStateError,
    StaleJobStateError,
    TransientIOError,
)
from land_importer.domain.enums import (
    ImportJobStatus,
    PHASE_LABELS,
    RUNNING_STATUSES,
    TERMINAL_STATUSES,
    ValidationSeverity,
)
from land_importer.domain.models import (
    DailyStat,
    DataPreview,
    ErrorReport,
    ErrorReportSummary,
    ImportJob,
    ImportStatistics,
    JobPage,
    JobQuery,
    MostCommonError,
    Pagination,
    ProcessOptions,
    ProgressSnapshot,
    utcnow,
)
from land_importer.services.cancellation import CancellationSignals
from land_importer.services.csv_parsing import infer_data_types, read_preview
from land_importer.services.events import EventSink
from land_importer.services.processing import progress_percentage
from land_importer.services.record_sink import RecordSink
from land_importer.services.registry import SORTABLE_FIELDS, JobRegistry
from land_importer.services.reports import ExportFile, export_records
from land_importer.services.runner import JobRunner
from land_importer.storage.file_storage import FileStorage

logger = logging.getLogger(__name__)

NON_TERMINAL_STATUSES = frozenset(ImportJobStatus) - TERMINAL_STATUSES
_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def normalize_sort_field(name: str) -> str:
    """Accept ``createdAt`` as well as ``created_at``."""
    field = _CAMEL_BOUNDARY.sub("_", name.strip()).lower()
    if field not in SORTABLE_FIELDS:
        raise InvalidInputError(f"Cannot sort by '{name}'")
    return field


class JobService:
    def __init__(
        self,
        registry: JobRegistry,
        storage: FileStorage,
        sink: RecordSink,
        events: EventSink,
        signals: CancellationSignals,
        runner: JobRunner,
    ) -> None:
        self.registry = registry
        self.storage = storage
        self.sink = sink
        self.events = events
        self.signals = signals
        self.runner = runner

    # Commands

    def process(self, job_id: str, options: ProcessOptions | None = None) -> ImportJob:
        """Move a validated job to ``processing`` and hand it to the runner."""
        options = options or ProcessOptions()
        job = self.registry.get(job_id)
        if job.status != ImportJobStatus.VALIDATED:
            raise InvalidStateError("job must be validated before processing")

        self.signals.clear(job_id)
        metadata = {**job.metadata, "process_options": options.model_dump(exclude_none=True)}
        self.registry.update(
            job_id,
            expect={ImportJobStatus.VALIDATED},
            status=ImportJobStatus.PROCESSING,
            metadata=metadata,
        )
        try:
            self.runner.submit(job_id)
        except TransientIOError as e:
            try:
                self.registry.update(
                    job_id,
                    expect={ImportJobStatus.PROCESSING},
                    status=ImportJobStatus.PROCESSING_FAILED,
                    end_time=utcnow(),
                    error_message=e.message,
                )
            except StaleJobStateError as stale:
                logger.info(f"Job {job_id} moved on before the enqueue failure was recorded: {stale.message}")
            raise
        logger.info(f"Job {job_id} submitted for processing")
        return self.registry.get(job_id)

    def cancel(self, job_id: str) -> ImportJob:
        job = self.registry.get(job_id)
        if job.status in TERMINAL_STATUSES:
            raise InvalidStateError(f"cannot cancel a job that is already {job.status.value}")

        self.signals.request(job_id)
        job = self.registry.update(
            job_id,
            expect=NON_TERMINAL_STATUSES,
            status=ImportJobStatus.CANCELLED,
            end_time=utcnow(),
        )
        logger.info(f"Job {job_id} cancelled at {job.processed_rows}/{job.total_rows} row(s)")
        self.events.publish("import.cancelled", {"job_id": job_id, "processed_rows": job.processed_rows})
        return job

    def retry(self, job_id: str) -> ImportJob:
        """Reset a failed job to ``uploaded`` so it can be validated and processed again."""
        job = self.registry.get(job_id)
        if job.status != ImportJobStatus.PROCESSING_FAILED:
            raise InvalidStateError("only processing_failed jobs can be retried")
        retry_count = int(job.metadata.get("retry_count", 0))
        if retry_count >= job.configuration.retry_attempts:
            raise InvalidStateError(
                f"retry limit reached: the job's configuration sets retry_attempts="
                f"{job.configuration.retry_attempts} and {retry_count} retries were used"
            )

        job = self.registry.update(
            job_id,
            expect={ImportJobStatus.PROCESSING_FAILED},
            status=ImportJobStatus.UPLOADED,
            processed_rows=0,
            valid_rows=0,
            error_rows=0,
            warning_rows=0,
            end_time=None,
            error_message=None,
            validation_summary=None,
            metadata={**job.metadata, "retry_count": retry_count + 1},
        )
        self.registry.replace_issues(job_id, [])
        try:
            self.sink.discard(job_id)
        except TransientIOError as e:
            logger.warning(f"Could not discard records of job {job_id} before retry: {e.message}")
        logger.info(f"Job {job_id} reset for retry {retry_count + 1}")
        return job

    def delete(self, job_id: str) -> None:
        job = self.registry.get(job_id)
        if job.status in RUNNING_STATUSES:
            raise InvalidStateError("cannot delete running job")

        self.storage.delete(job.filename)
        self.sink.discard(job_id)
        self.registry.delete(job_id)
        self.signals.clear(job_id)
        logger.info(f"Deleted job {job_id} ({job.original_name})")
        self.events.publish("import.deleted", {"job_id": job_id})

    def bulk_delete(self, job_ids: list[str]) -> int:
        deleted = 0
        for job_id in job_ids:
            try:
                self.delete(job_id)
            except ImportPipelineError as e:
                logger.warning(f"Skipping job {job_id} in bulk delete: {e.message}")
                continue
            deleted += 1
        return deleted

    def cleanup(self, older_than_days: int) -> int:
        """Delete terminal jobs created before the cutoff; return how many were removed."""
        if older_than_days < 0:
            raise InvalidInputError("older_than_days must not be negative")
        cutoff = utcnow() - timedelta(days=older_than_days)
        candidates = [
            job for job in self.registry.jobs_between(end=cutoff) if job.status in TERMINAL_STATUSES
        ]
        cleaned = 0
        for job in candidates:
            try:
                self.delete(job.id)
            except ImportPipelineError as e:
                logger.warning(f"Cleanup could not delete job {job.id}: {e.message}")
                continue
            cleaned += 1
        logger.info(f"Cleanup removed {cleaned} of {len(candidates)} job(s) older than {older_than_days} day(s)")
        return cleaned

    def fail_stalled(self, grace_minutes: int = 5) -> int:
        """Fail running jobs whose worker stopped reporting (crashed process, lost task).

        A job is stalled when its last update is older than its own timeout
        plus ``grace_minutes``.
        """
        now = utcnow()
        failed = 0
        for running, target in (
            (ImportJobStatus.PROCESSING, ImportJobStatus.PROCESSING_FAILED),
            (ImportJobStatus.VALIDATING, ImportJobStatus.VALIDATION_FAILED),
        ):
            for job in self._jobs_in(running):
                idle_limit = job.configuration.timeout_minutes + grace_minutes
                if now - job.updated_at < timedelta(minutes=idle_limit):
                    continue
                message = f"Job stalled: no progress reported for over {idle_limit} minute(s)"
                changes: dict = {"status": target, "error_message": message}
                if target == ImportJobStatus.PROCESSING_FAILED:
                    changes["end_time"] = now
                try:
                    self.registry.update(job.id, expect={running}, **changes)
                except StaleJobStateError:
                    continue
                failed += 1
                logger.warning(f"Marked stalled job {job.id} as {target.value}")
                if target == ImportJobStatus.PROCESSING_FAILED:
                    self.events.publish("import.failed", {"job_id": job.id, "error": message})
        return failed

    def _jobs_in(self, status: ImportJobStatus) -> list[ImportJob]:
        jobs: list[ImportJob] = []
        page = 1
        while True:
            batch, total = self.registry.search(
                JobQuery(page=page, limit=500, status=status, sort_by="created_at", sort_order="asc")
            )
            jobs.extend(batch)
            if page * 500 >= total or not batch:
                return jobs
            page += 1

    # Queries

    def get(self, job_id: str) -> ImportJob:
        return self.registry.get(job_id)

    def list(self, query: JobQuery) -> JobPage:
        query = query.model_copy(update={"sort_by": normalize_sort_field(query.sort_by)})
        jobs, total = self.registry.search(query)
        return JobPage(data=jobs, pagination=Pagination.build(query.page, query.limit, total))

    def progress(self, job_id: str) -> ProgressSnapshot:
        job = self.registry.get(job_id)
        now = utcnow()
        remaining = 0.0
        if job.processed_rows > 0 and job.status not in TERMINAL_STATUSES:
            elapsed = max((now - job.start_time).total_seconds(), 0.001)
            rate = job.processed_rows / elapsed
            remaining = round((job.total_rows - job.processed_rows) / rate, 2)
        return ProgressSnapshot(
            job_id=job.id,
            status=job.status,
            total_rows=job.total_rows,
            processed_rows=job.processed_rows,
            progress_percentage=progress_percentage(job.processed_rows, job.total_rows),
            estimated_time_remaining=remaining,
            current_phase=PHASE_LABELS[job.status],
            start_time=job.start_time,
            last_update=job.updated_at,
        )

    def errors(self, job_id: str, page: int = 1, limit: int = 50) -> ErrorReport:
        if page < 1 or limit < 1:
            raise InvalidInputError("page and limit must be positive")
        issues = self.registry.list_issues(job_id)
        offset = (page - 1) * limit
        counts = Counter(issue.message for issue in issues)
        return ErrorReport(
            job_id=job_id,
            total_errors=len(issues),
            errors=issues[offset : offset + limit],
            pagination=Pagination.build(page, limit, len(issues)),
            summary=ErrorReportSummary(
                critical_errors=sum(1 for issue in issues if issue.severity == ValidationSeverity.ERROR),
                warnings=sum(1 for issue in issues if issue.severity == ValidationSeverity.WARNING),
                most_common_errors=[
                    MostCommonError(message=message, count=count)
                    for message, count in counts.most_common(5)
                ],
            ),
        )

    def preview(self, job_id: str, rows: int = 10) -> DataPreview:
        if rows < 1:
            raise InvalidInputError("rows must be at least 1")
        job = self.registry.get(job_id)
        headers, data = read_preview(self.storage.read(job.filename), rows)
        return DataPreview(
            job_id=job_id,
            headers=headers,
            data=data,
            total_rows=job.total_rows,
            preview_rows=len(data),
            data_types=infer_data_types(headers, data),
        )

    def statistics(self, start_date: datetime | None = None, end_date: datetime | None = None) -> ImportStatistics:
        jobs = self.registry.jobs_between(start_date, end_date)
        breakdown = Counter(job.status for job in jobs)
        completed = breakdown[ImportJobStatus.COMPLETED]
        failed = breakdown[ImportJobStatus.PROCESSING_FAILED]
        durations = [job.duration for job in jobs if job.duration is not None]
        daily = Counter(job.created_at.date().isoformat() for job in jobs)

        return ImportStatistics(
            total_jobs=len(jobs),
            completed_jobs=completed,
            failed_jobs=failed,
            pending_jobs=len(jobs) - completed - failed,
            total_rows=sum(job.total_rows for job in jobs),
            processed_rows=sum(job.processed_rows for job in jobs),
            success_rate=round(completed / len(jobs) * 100, 2) if jobs else 0.0,
            average_processing_time=round(sum(durations) / len(durations), 2) if durations else 0.0,
            status_breakdown={status.value: breakdown[status] for status in ImportJobStatus},
            daily_stats=[DailyStat(date=day, count=daily[day]) for day in sorted(daily)],
        )

    def export(self, job_id: str, format: str = "csv") -> ExportFile:
        job = self.registry.get(job_id)
        return export_records(job.id, self.sink.records(job_id), format)
