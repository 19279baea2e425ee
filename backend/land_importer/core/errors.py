"""Error taxonomy shared by the pipeline services and the HTTP layer."""

from __future__ import annotations


class ImportPipelineError(Exception):
    """Base class for every error the import pipeline raises on purpose."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidInputError(ImportPipelineError):
    """Bad upload, malformed rule or mapping, unknown query parameter."""


class NotFoundError(ImportPipelineError):
    """Unknown job, rule or mapping id."""


class InvalidStateError(ImportPipelineError):
    """Operation is not legal for the job's current status."""


class StaleJobStateError(InvalidStateError):
    """A guarded registry update found the job in an unexpected status."""

    def __init__(self, job_id: str, actual: str, expected: set[str]) -> None:
        super().__init__(
            f"job {job_id} is {actual}, expected one of: {', '.join(sorted(expected))}"
        )
        self.job_id = job_id
        self.actual = actual
        self.expected = expected


class TransientIOError(ImportPipelineError):
    """Storage or downstream write failure."""


class RowMappingError(ImportPipelineError):
    """A single row could not be projected through the data mappings."""

    def __init__(self, row: int, mapping_id: str, column: str, value, reason: str) -> None:
        super().__init__(f"Row {row}: mapping '{mapping_id}' failed on {column}: {reason}")
        self.row = row
        self.mapping_id = mapping_id
        self.column = column
        self.value = value
        self.reason = reason


class JobTimeoutError(ImportPipelineError):
    """A processing run went past its deadline."""
