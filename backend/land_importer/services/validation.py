"""Rule-driven validation of stored uploads."""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable

from land_importer.core.errors import (
    InvalidInputError,
    InvalidStateError,
    StaleJobStateError,
)
from land_importer.domain.enums import (
    ImportJobStatus,
    VALIDATABLE_STATUSES,
    ValidationRuleType,
    ValidationSeverity,
)
from land_importer.domain.models import (
    ValidationIssue,
    ValidationResult,
    ValidationRule,
    ValidationSummary,
)
from land_importer.services.csv_parsing import iter_rows, parse_date, parse_number
from land_importer.services.events import EventSink
from land_importer.services.registry import JobRegistry
from land_importer.storage.file_storage import FileStorage

logger = logging.getLogger(__name__)

CustomPredicate = Callable[[str, dict[str, str], dict[str, Any]], bool]

UK_POSTCODE = re.compile(r"^[A-Z]{1,2}[0-9R][0-9A-Z]? ?[0-9][A-Z]{2}$", re.IGNORECASE)
EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
INTEGER = re.compile(r"^[+-]?\d+$")

FORMATS = ("date", "postcode", "email", "numeric", "integer", "uuid")


def _compile(rule: ValidationRule) -> re.Pattern:
    pattern = rule.parameters.get("pattern")
    if not isinstance(pattern, str) or not pattern:
        raise InvalidInputError(f"Rule '{rule.id}': regex rules need a 'pattern' parameter")
    flags = re.IGNORECASE if "i" in str(rule.parameters.get("flags", "")) else 0
    try:
        return re.compile(pattern, flags)
    except re.error as e:
        raise InvalidInputError(f"Rule '{rule.id}': invalid pattern: {e}") from e


def _bound(params: dict[str, Any], *names: str) -> int | float | None:
    for name in names:
        if params.get(name) is not None:
            value = params[name]
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise InvalidInputError(f"'{name}' must be a number")
            return value
    return None


def check_rule(rule: ValidationRule, custom_predicates: dict[str, CustomPredicate] | None = None) -> None:
    """Raise InvalidInputError if the rule's parameters cannot be evaluated."""
    params = rule.parameters
    if not rule.field.strip():
        raise InvalidInputError("Rule field must not be empty")
    if rule.type == ValidationRuleType.REGEX:
        _compile(rule)
    elif rule.type == ValidationRuleType.RANGE:
        low, high = _bound(params, "min"), _bound(params, "max")
        if low is not None and high is not None and low > high:
            raise InvalidInputError(f"Rule '{rule.id}': min is greater than max")
    elif rule.type == ValidationRuleType.LENGTH:
        low = _bound(params, "min_length", "minLength")
        high = _bound(params, "max_length", "maxLength")
        if low is None and high is None:
            raise InvalidInputError(f"Rule '{rule.id}': length rules need min_length or max_length")
        if low is not None and high is not None and low > high:
            raise InvalidInputError(f"Rule '{rule.id}': min_length is greater than max_length")
    elif rule.type == ValidationRuleType.FORMAT:
        if params.get("format") not in FORMATS:
            raise InvalidInputError(
                f"Rule '{rule.id}': format must be one of {', '.join(FORMATS)}"
            )
    elif rule.type == ValidationRuleType.CUSTOM:
        name = params.get("name")
        if not name:
            raise InvalidInputError(f"Rule '{rule.id}': custom rules need a 'name' parameter")
        if custom_predicates is not None and name not in custom_predicates:
            raise InvalidInputError(f"No custom validator registered under '{name}'")


class RuleChecker:
    """Evaluate a fixed set of enabled rules against individual rows."""

    def __init__(
        self,
        rules: list[ValidationRule],
        custom_predicates: dict[str, CustomPredicate] | None = None,
    ) -> None:
        self.custom_predicates = custom_predicates or {}
        self.rules = [rule for rule in rules if rule.enabled]
        for rule in self.rules:
            check_rule(rule, self.custom_predicates)
        self._patterns = {
            rule.id: _compile(rule) for rule in self.rules if rule.type == ValidationRuleType.REGEX
        }

    def check_row(self, row_number: int, row: dict[str, str]) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        for rule in self.rules:
            columns = list(row) if rule.field == "*" else [rule.field]
            for column in columns:
                value = row.get(column, "")
                message = self._violation(rule, column, value, row)
                if message is not None:
                    issues.append(
                        ValidationIssue(
                            row=row_number,
                            column=column,
                            value=value,
                            message=message,
                            severity=rule.severity,
                            rule=rule.id,
                        )
                    )
        return issues

    def _violation(self, rule: ValidationRule, column: str, value: str, row: dict[str, str]) -> str | None:
        """Return a failure message, or None when the value passes."""
        params = rule.parameters
        text = value.strip()

        if rule.type == ValidationRuleType.REQUIRED:
            return None if text else f"{column} is required"

        if rule.type == ValidationRuleType.CUSTOM:
            predicate = self.custom_predicates[params["name"]]
            return None if predicate(value, row, params) else f"{column} failed {rule.name}"

        # Every other rule type lets an empty cell through
        if not text:
            return None

        if rule.type == ValidationRuleType.REGEX:
            if self._patterns[rule.id].search(value):
                return None
            return f"{column} does not match the expected pattern"

        if rule.type == ValidationRuleType.RANGE:
            low, high = _bound(params, "min"), _bound(params, "max")
            try:
                number = parse_number(text)
            except ValueError:
                return f"{column} must be a number"
            if (low is not None and number < low) or (high is not None and number > high):
                return f"{column} must be between {low if low is not None else '-inf'} and {high if high is not None else 'inf'}"
            return None

        if rule.type == ValidationRuleType.LENGTH:
            low = _bound(params, "min_length", "minLength")
            high = _bound(params, "max_length", "maxLength")
            if low is not None and len(text) < low:
                return f"{column} must be at least {low} characters"
            if high is not None and len(text) > high:
                return f"{column} must be at most {high} characters"
            return None

        if rule.type == ValidationRuleType.FORMAT:
            fmt = params["format"]
            return None if self._format_ok(fmt, text, params) else f"{column} is not a valid {fmt}"

        return None

    @staticmethod
    def _format_ok(fmt: str, text: str, params: dict[str, Any]) -> bool:
        if fmt == "date":
            try:
                parse_date(text, [params.get("date_format") or "%Y-%m-%d"])
            except ValueError:
                return False
            return True
        if fmt == "postcode":
            return bool(UK_POSTCODE.match(text))
        if fmt == "email":
            return bool(EMAIL.match(text))
        if fmt == "integer":
            return bool(INTEGER.match(text.replace(",", "")))
        if fmt == "numeric":
            try:
                parse_number(text)
            except ValueError:
                return False
            return True
        if fmt == "uuid":
            try:
                uuid.UUID(text)
            except ValueError:
                return False
            return True
        return False


@dataclass
class _Tally:
    total_rows: int = 0
    error_rows: int = 0
    warning_rows: int = 0
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)
    notices: list[ValidationIssue] = field(default_factory=list)

    def add_row(self, issues: list[ValidationIssue]) -> None:
        self.total_rows += 1
        severities = {issue.severity for issue in issues}
        if ValidationSeverity.ERROR in severities:
            self.error_rows += 1
        if ValidationSeverity.WARNING in severities:
            self.warning_rows += 1
        for issue in issues:
            if issue.severity == ValidationSeverity.ERROR:
                self.errors.append(issue)
            elif issue.severity == ValidationSeverity.WARNING:
                self.warnings.append(issue)
            else:
                self.notices.append(issue)


class ValidationEngine:
    def __init__(
        self,
        registry: JobRegistry,
        storage: FileStorage,
        events: EventSink,
        custom_predicates: dict[str, CustomPredicate] | None = None,
    ) -> None:
        self.registry = registry
        self.storage = storage
        self.events = events
        self.custom_predicates = custom_predicates if custom_predicates is not None else {}

    def validate(self, job_id: str) -> ValidationResult:
        job = self.registry.get(job_id)
        if job.status not in VALIDATABLE_STATUSES:
            raise InvalidStateError(
                f"job must be uploaded or validation_failed to validate (current status: {job.status.value})"
            )
        job = self.registry.update(
            job_id,
            expect=VALIDATABLE_STATUSES,
            status=ImportJobStatus.VALIDATING,
            error_message=None,
        )
        logger.info(f"Validating job {job_id} ({job.original_name}) with {len(job.configuration.rules)} rule(s)")

        try:
            checker = RuleChecker(job.configuration.rules, self.custom_predicates)
            tally = _Tally()
            for row_number, row in enumerate(iter_rows(self.storage.read(job.filename)), start=1):
                tally.add_row(checker.check_row(row_number, row))
        except Exception as e:
            message = getattr(e, "message", None) or str(e)
            logger.error(f"Validation of job {job_id} failed: {message}", exc_info=True)
            try:
                self.registry.update(
                    job_id,
                    expect={ImportJobStatus.VALIDATING},
                    status=ImportJobStatus.VALIDATION_FAILED,
                    error_message=message,
                )
            except StaleJobStateError:
                logger.info(f"Job {job_id} left validating before the failure could be recorded")
            raise

        status = ImportJobStatus.VALIDATED if tally.error_rows == 0 else ImportJobStatus.VALIDATION_FAILED
        summary = ValidationSummary(
            validation_passed=tally.error_rows == 0,
            critical_errors=len(tally.errors),
            warnings=len(tally.warnings),
            notices=len(tally.notices),
        )
        valid_rows = tally.total_rows - tally.error_rows

        try:
            job = self.registry.update(
                job_id,
                expect={ImportJobStatus.VALIDATING},
                status=status,
                total_rows=tally.total_rows,
                valid_rows=valid_rows,
                error_rows=tally.error_rows,
                warning_rows=tally.warning_rows,
                validation_summary=summary,
            )
        except StaleJobStateError as e:
            logger.info(f"Discarding validation result for job {job_id}: status is now {e.actual}")
            job = self.registry.get(job_id)
        else:
            self.registry.replace_issues(job_id, tally.errors + tally.warnings + tally.notices)
            self.events.publish(
                "import.validated",
                {
                    "job_id": job_id,
                    "status": status.value,
                    "valid_rows": valid_rows,
                    "error_rows": tally.error_rows,
                    "warning_rows": tally.warning_rows,
                },
            )
            logger.info(
                f"Job {job_id} {status.value}: {valid_rows} valid, {tally.error_rows} error, "
                f"{tally.warning_rows} warning row(s)"
            )

        return ValidationResult(
            job_id=job_id,
            status=job.status,
            total_rows=tally.total_rows,
            valid_rows=valid_rows,
            error_rows=tally.error_rows,
            warning_rows=tally.warning_rows,
            errors=tally.errors,
            warnings=tally.warnings,
            notices=tally.notices,
            summary=summary,
        )
