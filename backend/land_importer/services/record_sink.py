"""Downstream destination for mapped records."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from land_importer.core.errors import TransientIOError
from land_importer.db.models import ImportedRecord
from land_importer.db.session import session_scope

logger = logging.getLogger(__name__)

MappedRecord = tuple[int, dict[str, Any]]


class RecordSink(ABC):
    @abstractmethod
    def write(self, job_id: str, records: list[MappedRecord]) -> None:
        """Persist one batch of (row_number, record) pairs, or raise TransientIOError."""

    @abstractmethod
    def records(self, job_id: str) -> list[dict[str, Any]]:
        """Return the job's records in row order."""

    @abstractmethod
    def discard(self, job_id: str) -> int:
        """Drop every record written for the job; return how many were removed."""


class InMemoryRecordSink(RecordSink):
    def __init__(self) -> None:
        self._records: dict[str, list[MappedRecord]] = {}
        self._lock = threading.Lock()

    def write(self, job_id: str, records: list[MappedRecord]) -> None:
        with self._lock:
            self._records.setdefault(job_id, []).extend(
                (row_number, dict(record)) for row_number, record in records
            )

    def records(self, job_id: str) -> list[dict[str, Any]]:
        with self._lock:
            stored = sorted(self._records.get(job_id, []), key=lambda item: item[0])
        return [dict(record) for _, record in stored]

    def discard(self, job_id: str) -> int:
        with self._lock:
            return len(self._records.pop(job_id, []))


class SqlRecordSink(RecordSink):
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self.session_factory = session_factory

    def write(self, job_id: str, records: list[MappedRecord]) -> None:
        if not records:
            return
        try:
            with session_scope(self.session_factory) as db:
                db.add_all(
                    ImportedRecord(job_id=job_id, row_number=row_number, payload=record)
                    for row_number, record in records
                )
        except SQLAlchemyError as e:
            logger.error(f"Database error writing {len(records)} record(s) for job {job_id}: {e}", exc_info=True)
            raise TransientIOError(f"Failed to write records: {str(e)}") from e

    def records(self, job_id: str) -> list[dict[str, Any]]:
        with session_scope(self.session_factory) as db:
            rows = db.scalars(
                select(ImportedRecord.payload)
                .where(ImportedRecord.job_id == job_id)
                .order_by(ImportedRecord.row_number)
            ).all()
        return [dict(payload) for payload in rows]

    def discard(self, job_id: str) -> int:
        try:
            with session_scope(self.session_factory) as db:
                result = db.execute(delete(ImportedRecord).where(ImportedRecord.job_id == job_id))
                return result.rowcount or 0
        except SQLAlchemyError as e:
            raise TransientIOError(f"Failed to discard records for job {job_id}: {str(e)}") from e
