"""Mapped records written downstream by the processing engine."""

from sqlalchemy import Column, Index, Integer, String
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from land_importer.db.base import Base, JSONType


class ImportedRecord(Base):
    __tablename__ = "imported_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String(36), nullable=False)
    row_number = Column(Integer, nullable=False)
    payload = Column(JSONType, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("ix_imported_records_job_row", job_id, row_number),)
