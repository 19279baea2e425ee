"""Job registry: the shared, mutation-safe table of ImportJob records.

The pipeline only talks to :class:`JobRegistry`. ``InMemoryJobRegistry``
backs tests and single-process deployments; ``SqlJobRegistry`` keeps jobs
and their issues in the database so API and Celery workers share state.

Every read returns a copy. Every write is atomic per call and bumps
``updated_at``. ``update(..., expect=...)`` is the compare-and-set used by
the engines so a job cancelled mid-run is never overwritten by a worker.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Iterable

from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session, sessionmaker

from land_importer.core.errors import NotFoundError, StaleJobStateError
from land_importer.db import models as orm
from land_importer.db.session import session_scope
from land_importer.domain.enums import ImportJobStatus
from land_importer.domain.models import (
    ImportJob,
    JobConfiguration,
    JobQuery,
    ValidationIssue,
    ValidationSummary,
    utcnow,
)

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = frozenset(
    {
        "id",
        "filename",
        "original_name",
        "file_size",
        "type",
        "status",
        "total_rows",
        "processed_rows",
        "valid_rows",
        "error_rows",
        "warning_rows",
        "start_time",
        "end_time",
        "user_id",
        "created_at",
        "updated_at",
    }
)

JOB_NOT_FOUND = "Import job not found"


def _next_updated_at(previous: datetime) -> datetime:
    now = utcnow()
    return now if now >= previous else previous


def _check_expected(job_id: str, status: ImportJobStatus, expect: Iterable[ImportJobStatus] | None) -> None:
    if expect is None:
        return
    expected = set(expect)
    if status not in expected:
        raise StaleJobStateError(job_id, status.value, {s.value for s in expected})


class JobRegistry(ABC):
    @abstractmethod
    def create(self, job: ImportJob) -> ImportJob: ...

    @abstractmethod
    def get(self, job_id: str) -> ImportJob:
        """Return a snapshot of the job or raise NotFoundError."""

    @abstractmethod
    def update(
        self,
        job_id: str,
        *,
        expect: Iterable[ImportJobStatus] | None = None,
        **changes: Any,
    ) -> ImportJob:
        """Apply ``changes`` atomically; raise StaleJobStateError if status not in ``expect``."""

    @abstractmethod
    def delete(self, job_id: str) -> None: ...

    @abstractmethod
    def search(self, query: JobQuery) -> tuple[list[ImportJob], int]:
        """Filter, sort (ties broken by id) and paginate; return the page and the total."""

    @abstractmethod
    def jobs_between(self, start: datetime | None = None, end: datetime | None = None) -> list[ImportJob]: ...

    @abstractmethod
    def replace_issues(self, job_id: str, issues: list[ValidationIssue]) -> None: ...

    @abstractmethod
    def append_issues(self, job_id: str, issues: list[ValidationIssue]) -> None: ...

    @abstractmethod
    def list_issues(self, job_id: str) -> list[ValidationIssue]: ...


def _matches(job: ImportJob, query: JobQuery) -> bool:
    if query.status is not None and job.status != query.status:
        return False
    if query.type is not None and job.type != query.type:
        return False
    if query.user_id is not None and job.user_id != query.user_id:
        return False
    if query.start_date is not None and job.created_at < _aware(query.start_date):
        return False
    if query.end_date is not None and job.created_at > _aware(query.end_date):
        return False
    if query.search:
        needle = query.search.lower()
        haystack = (job.id, job.original_name, job.user_id)
        if not any(needle in value.lower() for value in haystack):
            return False
    return True


def _sort_key(field: str):
    def key(job: ImportJob):
        value = getattr(job, field)
        if hasattr(value, "value"):
            value = value.value
        return (value is None, value)

    return key


class InMemoryJobRegistry(JobRegistry):
    def __init__(self) -> None:
        self._jobs: dict[str, ImportJob] = {}
        self._issues: dict[str, list[ValidationIssue]] = {}
        self._lock = threading.RLock()

    def _require(self, job_id: str) -> ImportJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError(JOB_NOT_FOUND)
        return job

    def create(self, job: ImportJob) -> ImportJob:
        with self._lock:
            self._jobs[job.id] = job.model_copy(deep=True)
            self._issues[job.id] = []
            return job.model_copy(deep=True)

    def get(self, job_id: str) -> ImportJob:
        with self._lock:
            return self._require(job_id).model_copy(deep=True)

    def update(self, job_id, *, expect=None, **changes) -> ImportJob:
        with self._lock:
            current = self._require(job_id)
            _check_expected(job_id, current.status, expect)
            changes["updated_at"] = _next_updated_at(current.updated_at)
            updated = current.model_copy(update=changes, deep=True)
            self._jobs[job_id] = updated
            return updated.model_copy(deep=True)

    def delete(self, job_id: str) -> None:
        with self._lock:
            self._require(job_id)
            del self._jobs[job_id]
            self._issues.pop(job_id, None)

    def search(self, query: JobQuery) -> tuple[list[ImportJob], int]:
        with self._lock:
            jobs = [job for job in self._jobs.values() if _matches(job, query)]
        jobs.sort(key=lambda job: job.id)
        jobs.sort(key=_sort_key(query.sort_by), reverse=query.sort_order == "desc")
        offset = (query.page - 1) * query.limit
        page = jobs[offset : offset + query.limit]
        return [job.model_copy(deep=True) for job in page], len(jobs)

    def jobs_between(self, start=None, end=None) -> list[ImportJob]:
        with self._lock:
            jobs = list(self._jobs.values())
        if start is not None:
            jobs = [job for job in jobs if job.created_at >= _aware(start)]
        if end is not None:
            jobs = [job for job in jobs if job.created_at <= _aware(end)]
        return [job.model_copy(deep=True) for job in jobs]

    def replace_issues(self, job_id: str, issues: list[ValidationIssue]) -> None:
        with self._lock:
            self._require(job_id)
            self._issues[job_id] = list(issues)

    def append_issues(self, job_id: str, issues: list[ValidationIssue]) -> None:
        with self._lock:
            self._require(job_id)
            self._issues.setdefault(job_id, []).extend(issues)

    def list_issues(self, job_id: str) -> list[ValidationIssue]:
        with self._lock:
            self._require(job_id)
            return list(self._issues.get(job_id, []))


def _aware(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything in the pipeline is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _to_record(row: orm.ImportJob) -> ImportJob:
    return ImportJob(
        id=row.id,
        filename=row.filename,
        original_name=row.original_name,
        file_size=row.file_size,
        type=row.type,
        status=row.status,
        total_rows=row.total_rows,
        processed_rows=row.processed_rows,
        valid_rows=row.valid_rows,
        error_rows=row.error_rows,
        warning_rows=row.warning_rows,
        start_time=_aware(row.start_time),
        end_time=_aware(row.end_time),
        user_id=row.user_id,
        configuration=JobConfiguration.model_validate(row.configuration or {}),
        metadata=dict(row.meta or {}),
        error_message=row.error_message,
        validation_summary=(
            ValidationSummary.model_validate(row.validation_summary)
            if row.validation_summary
            else None
        ),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _column_values(job: ImportJob) -> dict[str, Any]:
    return {
        "id": job.id,
        "filename": job.filename,
        "original_name": job.original_name,
        "file_size": job.file_size,
        "type": job.type.value,
        "status": job.status.value,
        "total_rows": job.total_rows,
        "processed_rows": job.processed_rows,
        "valid_rows": job.valid_rows,
        "error_rows": job.error_rows,
        "warning_rows": job.warning_rows,
        "start_time": job.start_time,
        "end_time": job.end_time,
        "user_id": job.user_id,
        "configuration": job.configuration.model_dump(mode="json"),
        "meta": job.metadata,
        "error_message": job.error_message,
        "validation_summary": (
            job.validation_summary.model_dump(mode="json") if job.validation_summary else None
        ),
        "created_at": job.created_at,
        "updated_at": job.updated_at,
    }


def _issue_row(job_id: str, position: int, issue: ValidationIssue) -> orm.ImportIssue:
    return orm.ImportIssue(
        job_id=job_id,
        position=position,
        row=issue.row,
        column=issue.column,
        value=issue.value,
        message=issue.message,
        severity=issue.severity.value,
        rule=issue.rule,
    )


class SqlJobRegistry(JobRegistry):
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self.session_factory = session_factory

    def _locked(self, db: Session, job_id: str) -> orm.ImportJob:
        row = db.scalar(select(orm.ImportJob).where(orm.ImportJob.id == job_id).with_for_update())
        if row is None:
            raise NotFoundError(JOB_NOT_FOUND)
        return row

    def create(self, job: ImportJob) -> ImportJob:
        with session_scope(self.session_factory) as db:
            db.add(orm.ImportJob(**_column_values(job)))
        return job.model_copy(deep=True)

    def get(self, job_id: str) -> ImportJob:
        with session_scope(self.session_factory) as db:
            row = db.get(orm.ImportJob, job_id)
            if row is None:
                raise NotFoundError(JOB_NOT_FOUND)
            return _to_record(row)

    def update(self, job_id, *, expect=None, **changes) -> ImportJob:
        with session_scope(self.session_factory) as db:
            row = self._locked(db, job_id)
            current = _to_record(row)
            _check_expected(job_id, current.status, expect)
            changes["updated_at"] = _next_updated_at(current.updated_at)
            updated = current.model_copy(update=changes, deep=True)
            for column, value in _column_values(updated).items():
                setattr(row, column, value)
            return updated

    def delete(self, job_id: str) -> None:
        with session_scope(self.session_factory) as db:
            row = self._locked(db, job_id)
            db.execute(delete(orm.ImportIssue).where(orm.ImportIssue.job_id == job_id))
            db.delete(row)

    def _conditions(self, query: JobQuery) -> list:
        conditions = []
        if query.status is not None:
            conditions.append(orm.ImportJob.status == query.status.value)
        if query.type is not None:
            conditions.append(orm.ImportJob.type == query.type.value)
        if query.user_id is not None:
            conditions.append(orm.ImportJob.user_id == query.user_id)
        if query.start_date is not None:
            conditions.append(orm.ImportJob.created_at >= _aware(query.start_date))
        if query.end_date is not None:
            conditions.append(orm.ImportJob.created_at <= _aware(query.end_date))
        if query.search:
            pattern = f"%{query.search.lower()}%"
            conditions.append(
                or_(
                    func.lower(orm.ImportJob.id).like(pattern),
                    func.lower(orm.ImportJob.original_name).like(pattern),
                    func.lower(orm.ImportJob.user_id).like(pattern),
                )
            )
        return conditions

    def search(self, query: JobQuery) -> tuple[list[ImportJob], int]:
        conditions = self._conditions(query)
        column = getattr(orm.ImportJob, query.sort_by)
        ordering = (
            column.asc().nulls_last() if query.sort_order == "asc" else column.desc().nulls_first()
        )
        with session_scope(self.session_factory) as db:
            total = db.scalar(select(func.count(orm.ImportJob.id)).where(*conditions)) or 0
            rows = db.scalars(
                select(orm.ImportJob)
                .where(*conditions)
                .order_by(ordering, orm.ImportJob.id.asc())
                .offset((query.page - 1) * query.limit)
                .limit(query.limit)
            ).all()
            return [_to_record(row) for row in rows], total

    def jobs_between(self, start=None, end=None) -> list[ImportJob]:
        statement = select(orm.ImportJob)
        if start is not None:
            statement = statement.where(orm.ImportJob.created_at >= _aware(start))
        if end is not None:
            statement = statement.where(orm.ImportJob.created_at <= _aware(end))
        with session_scope(self.session_factory) as db:
            return [_to_record(row) for row in db.scalars(statement).all()]

    def replace_issues(self, job_id: str, issues: list[ValidationIssue]) -> None:
        with session_scope(self.session_factory) as db:
            self._locked(db, job_id)
            db.execute(delete(orm.ImportIssue).where(orm.ImportIssue.job_id == job_id))
            db.add_all(_issue_row(job_id, position, issue) for position, issue in enumerate(issues))

    def append_issues(self, job_id: str, issues: list[ValidationIssue]) -> None:
        with session_scope(self.session_factory) as db:
            self._locked(db, job_id)
            start = (
                db.scalar(
                    select(func.max(orm.ImportIssue.position)).where(orm.ImportIssue.job_id == job_id)
                )
            )
            start = -1 if start is None else start
            db.add_all(
                _issue_row(job_id, start + 1 + offset, issue) for offset, issue in enumerate(issues)
            )

    def list_issues(self, job_id: str) -> list[ValidationIssue]:
        with session_scope(self.session_factory) as db:
            if db.get(orm.ImportJob, job_id) is None:
                raise NotFoundError(JOB_NOT_FOUND)
            rows = db.scalars(
                select(orm.ImportIssue)
                .where(orm.ImportIssue.job_id == job_id)
                .order_by(orm.ImportIssue.position)
            ).all()
            return [ValidationIssue.model_validate(row) for row in rows]
