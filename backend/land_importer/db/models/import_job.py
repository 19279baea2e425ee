"""Import job rows plus the validation issues attached to them."""

from sqlalchemy import Column, Index, Integer, String, Text
from sqlalchemy.types import DateTime

from land_importer.db.base import Base, JSONType


class ImportJob(Base):
    __tablename__ = "import_jobs"

    id = Column(String(36), primary_key=True)
    filename = Column(Text, nullable=False)
    original_name = Column(Text, nullable=False)
    file_size = Column(Integer, nullable=False, default=0)
    type = Column(String(32), nullable=False, index=True)
    status = Column(String(32), nullable=False, index=True)
    total_rows = Column(Integer, nullable=False, default=0)
    processed_rows = Column(Integer, nullable=False, default=0)
    valid_rows = Column(Integer, nullable=False, default=0)
    error_rows = Column(Integer, nullable=False, default=0)
    warning_rows = Column(Integer, nullable=False, default=0)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True))
    user_id = Column(String(255), nullable=False, index=True)
    configuration = Column(JSONType, nullable=False)
    # "metadata" is reserved on declarative classes
    meta = Column(JSONType)
    error_message = Column(Text)
    validation_summary = Column(JSONType)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class ImportIssue(Base):
    """One validation or mapping failure, kept for error-report pagination."""

    __tablename__ = "import_job_issues"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String(36), nullable=False)
    position = Column(Integer, nullable=False)
    row = Column(Integer, nullable=False)
    column = Column(String(255), nullable=False)
    value = Column(Text)
    message = Column(Text, nullable=False)
    severity = Column(String(16), nullable=False)
    rule = Column(String(128), nullable=False)

    __table_args__ = (Index("ix_import_job_issues_job_position", job_id, position),)
