"""Enumerations for job lifecycle, rule and mapping kinds."""

from __future__ import annotations

from enum import Enum


class ImportJobStatus(str, Enum):
    UPLOADED = "uploaded"
    VALIDATING = "validating"
    VALIDATED = "validated"
    VALIDATION_FAILED = "validation_failed"
    PROCESSING = "processing"
    COMPLETED = "completed"
    PROCESSING_FAILED = "processing_failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {
        ImportJobStatus.COMPLETED,
        ImportJobStatus.PROCESSING_FAILED,
        ImportJobStatus.CANCELLED,
    }
)
RUNNING_STATUSES = frozenset({ImportJobStatus.VALIDATING, ImportJobStatus.PROCESSING})
VALIDATABLE_STATUSES = frozenset(
    {ImportJobStatus.UPLOADED, ImportJobStatus.VALIDATION_FAILED}
)

PHASE_LABELS = {
    ImportJobStatus.UPLOADED: "File uploaded",
    ImportJobStatus.VALIDATING: "Validating data",
    ImportJobStatus.VALIDATED: "Validation complete",
    ImportJobStatus.VALIDATION_FAILED: "Validation failed",
    ImportJobStatus.PROCESSING: "Processing data",
    ImportJobStatus.COMPLETED: "Import complete",
    ImportJobStatus.PROCESSING_FAILED: "Import failed",
    ImportJobStatus.CANCELLED: "Import cancelled",
}


class ImportJobType(str, Enum):
    LAND_REGISTRY = "land_registry"
    PROPERTY_DATA = "property_data"
    MARKET_DATA = "market_data"
    CUSTOM = "custom"


class ValidationSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class ValidationRuleType(str, Enum):
    REQUIRED = "required"
    REGEX = "regex"
    RANGE = "range"
    LENGTH = "length"
    FORMAT = "format"
    CUSTOM = "custom"


class DataTransformationType(str, Enum):
    NONE = "none"
    UPPERCASE = "uppercase"
    LOWERCASE = "lowercase"
    TRIM = "trim"
    CURRENCY = "currency"
    DATE = "date"
    CONCATENATE = "concatenate"
    SPLIT = "split"
    CUSTOM = "custom"


class ExportFormat(str, Enum):
    CSV = "csv"
    JSON = "json"
    XLSX = "xlsx"
