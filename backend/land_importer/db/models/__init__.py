"""Database models package."""
from land_importer.db.models.import_job import ImportIssue, ImportJob
from land_importer.db.models.imported_record import ImportedRecord
from land_importer.db.models.rules import DataMapping, ImportConfiguration, ValidationRule

__all__ = [
    "ImportJob",
    "ImportIssue",
    "ImportedRecord",
    "ValidationRule",
    "DataMapping",
    "ImportConfiguration",
]
