"""Pydantic records passed between the pipeline services.

These are the in-process shapes of jobs, rules and mappings. Both registry
backends hand out copies of them, so callers never hold a live reference to
stored state.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field

from land_importer.domain.enums import (
    DataTransformationType,
    ImportJobStatus,
    ImportJobType,
    ValidationRuleType,
    ValidationSeverity,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ValidationRule(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str | None = None
    field: str = Field(..., description="Column name, or '*' for every column")
    type: ValidationRuleType
    parameters: dict[str, Any] = Field(default_factory=dict)
    severity: ValidationSeverity = ValidationSeverity.ERROR
    enabled: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class DataMapping(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str | None = None
    source_field: str
    target_field: str
    transformation: DataTransformationType = DataTransformationType.NONE
    parameters: dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ValidationRuleCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: str | None = None
    field: str = Field(..., min_length=1)
    type: ValidationRuleType
    parameters: dict[str, Any] = Field(default_factory=dict)
    severity: ValidationSeverity = ValidationSeverity.ERROR
    enabled: bool = True


class ValidationRuleUpdate(BaseModel):
    name: str | None = Field(None, min_length=1)
    description: str | None = None
    field: str | None = Field(None, min_length=1)
    type: ValidationRuleType | None = None
    parameters: dict[str, Any] | None = None
    severity: ValidationSeverity | None = None
    enabled: bool | None = None


class DataMappingCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: str | None = None
    source_field: str = Field(..., min_length=1)
    target_field: str = Field(..., min_length=1)
    transformation: DataTransformationType = DataTransformationType.NONE
    parameters: dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True


class DataMappingUpdate(BaseModel):
    name: str | None = Field(None, min_length=1)
    description: str | None = None
    source_field: str | None = Field(None, min_length=1)
    target_field: str | None = Field(None, min_length=1)
    transformation: DataTransformationType | None = None
    parameters: dict[str, Any] | None = None
    enabled: bool | None = None


class NotificationSettings(BaseModel):
    email: bool = True
    slack: bool = False
    webhook: bool = False


class ImportConfiguration(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    max_file_size: int = Field(50 * 1024 * 1024, ge=1)
    allowed_formats: list[str] = Field(default_factory=lambda: ["csv"])
    batch_size: int = Field(1000, ge=1, le=10000)
    validation_rules: list[str] = Field(default_factory=list)
    data_mappings: list[str] = Field(default_factory=list)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    retry_attempts: int = Field(3, ge=0)
    timeout_minutes: int = Field(60, ge=1)


class JobConfiguration(ImportConfiguration):
    """Configuration captured into a job at upload time, rules and mappings resolved."""

    rules: list[ValidationRule] = Field(default_factory=list)
    mappings: list[DataMapping] = Field(default_factory=list)


class ValidationSummary(BaseModel):
    validation_passed: bool
    critical_errors: int
    warnings: int
    notices: int = 0


class ImportJob(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    filename: str
    original_name: str
    file_size: int
    type: ImportJobType = ImportJobType.LAND_REGISTRY
    status: ImportJobStatus = ImportJobStatus.UPLOADED
    total_rows: int = 0
    processed_rows: int = 0
    valid_rows: int = 0
    error_rows: int = 0
    warning_rows: int = 0
    start_time: datetime = Field(default_factory=utcnow)
    end_time: datetime | None = None
    user_id: str = "system"
    configuration: JobConfiguration = Field(default_factory=JobConfiguration)
    metadata: dict[str, Any] = Field(default_factory=dict)
    error_message: str | None = None
    validation_summary: ValidationSummary | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @computed_field
    @property
    def duration(self) -> float | None:
        """Seconds between start and the terminal transition, if any."""
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds()


class ValidationIssue(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    row: int = Field(..., ge=1, description="1-indexed data row (header excluded)")
    column: str
    value: str | None = None
    message: str
    severity: ValidationSeverity
    rule: str


class ValidationResult(BaseModel):
    job_id: str
    status: ImportJobStatus
    total_rows: int
    valid_rows: int
    error_rows: int
    warning_rows: int
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)
    notices: list[ValidationIssue] = Field(default_factory=list)
    summary: ValidationSummary


class ProcessOptions(BaseModel):
    batch_size: int | None = Field(None, ge=1, le=10000)
    skip_errors: bool = False
    timeout_minutes: int | None = Field(None, ge=1)


class JobQuery(BaseModel):
    page: int = Field(1, ge=1)
    limit: int = Field(10, ge=1, le=500)
    status: ImportJobStatus | None = None
    type: ImportJobType | None = None
    user_id: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    search: str | None = None
    sort_by: str = "created_at"
    sort_order: Literal["asc", "desc"] = "desc"


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(page=page, limit=limit, total=total, pages=math.ceil(total / limit))


class JobPage(BaseModel):
    data: list[ImportJob]
    pagination: Pagination


class ProgressSnapshot(BaseModel):
    job_id: str
    status: ImportJobStatus
    total_rows: int
    processed_rows: int
    progress_percentage: float
    estimated_time_remaining: float = Field(..., description="Seconds")
    current_phase: str
    start_time: datetime
    last_update: datetime


class MostCommonError(BaseModel):
    message: str
    count: int


class ErrorReportSummary(BaseModel):
    critical_errors: int
    warnings: int
    most_common_errors: list[MostCommonError]


class ErrorReport(BaseModel):
    job_id: str
    total_errors: int
    errors: list[ValidationIssue]
    pagination: Pagination
    summary: ErrorReportSummary


class DataPreview(BaseModel):
    job_id: str
    headers: list[str]
    data: list[dict[str, str]]
    total_rows: int
    preview_rows: int
    data_types: dict[str, str]


class DailyStat(BaseModel):
    date: str
    count: int


class ImportStatistics(BaseModel):
    total_jobs: int
    completed_jobs: int
    failed_jobs: int
    pending_jobs: int
    total_rows: int
    processed_rows: int
    success_rate: float
    average_processing_time: float = Field(..., description="Seconds")
    status_breakdown: dict[str, int]
    daily_stats: list[DailyStat]


class ImportTemplate(BaseModel):
    filename: str
    headers: list[str]
    sample_data: list[list[str]]
    description: str
    instructions: list[str]
