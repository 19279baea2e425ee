from __future__ import annotations

import pytest

from land_importer.core.errors import InvalidInputError, InvalidStateError, NotFoundError
from land_importer.domain.enums import ImportJobStatus, ValidationRuleType, ValidationSeverity
from land_importer.domain.models import ImportConfiguration, ValidationRule
from land_importer.services.rule_store import InMemoryRuleStore
from land_importer.services.validation import RuleChecker, check_rule


def _rule(rule_id: str, field: str, type: ValidationRuleType, **kwargs) -> ValidationRule:
    return ValidationRule(id=rule_id, name=rule_id, field=field, type=type, **kwargs)


def _store_with(*rules: ValidationRule) -> InMemoryRuleStore:
    return InMemoryRuleStore(
        configuration=ImportConfiguration(validation_rules=[rule.id for rule in rules], data_mappings=[]),
        rules=list(rules),
        mappings=[],
    )


@pytest.fixture()
def postcode_pipeline(make_pipeline):
    return make_pipeline(store=_store_with(_rule("pc", "postcode", ValidationRuleType.REQUIRED)))


def test_missing_required_value_fails_one_row(postcode_pipeline, csv_bytes) -> None:
    content = csv_bytes(["id", "postcode"], [["1", "SW1A 1AA"], ["2", ""], ["3", "M1 1AE"]])
    job = postcode_pipeline.intake.upload(content, "three.csv", "text/csv")

    result = postcode_pipeline.validation.validate(job.id)

    assert result.status == ImportJobStatus.VALIDATION_FAILED
    assert (result.total_rows, result.valid_rows, result.error_rows) == (3, 2, 1)
    assert [(issue.row, issue.column, issue.rule) for issue in result.errors] == [(2, "postcode", "pc")]
    assert result.summary.validation_passed is False

    stored = postcode_pipeline.registry.get(job.id)
    assert stored.status == ImportJobStatus.VALIDATION_FAILED
    assert stored.valid_rows + stored.error_rows == stored.total_rows
    assert postcode_pipeline.jobs.errors(job.id).total_errors == 1


def test_revalidation_replaces_previous_outcome(postcode_pipeline, csv_bytes) -> None:
    content = csv_bytes(["id", "postcode"], [["1", ""], ["2", "M1 1AE"]])
    job = postcode_pipeline.intake.upload(content, "two.csv", "text/csv")

    first = postcode_pipeline.validation.validate(job.id)
    second = postcode_pipeline.validation.validate(job.id)

    assert first.model_dump(exclude={"errors"}) == second.model_dump(exclude={"errors"})
    assert len(postcode_pipeline.registry.list_issues(job.id)) == 1


def test_template_sample_passes_default_rules(pipeline, upload, land_registry_csv, events) -> None:
    job = upload(land_registry_csv(5))

    result = pipeline.validation.validate(job.id)

    assert result.status == ImportJobStatus.VALIDATED
    assert (result.valid_rows, result.error_rows, result.warning_rows) == (5, 0, 0)
    assert events.named("import.validated")[-1]["status"] == "validated"


def test_warnings_do_not_fail_validation(pipeline, upload, land_registry_csv) -> None:
    job = upload(land_registry_csv(3, bad_rows={2: {"Price": "500"}}))

    result = pipeline.validation.validate(job.id)

    assert result.status == ImportJobStatus.VALIDATED
    assert result.warning_rows == 1
    assert result.valid_rows == 3
    assert result.warnings[0].severity == ValidationSeverity.WARNING
    assert result.summary.warnings == 1


def test_default_rules_flag_bad_postcode_and_date(pipeline, upload, land_registry_csv) -> None:
    job = upload(
        land_registry_csv(
            4,
            bad_rows={1: {"Postcode": "NOT A POSTCODE"}, 3: {"Date of Transfer": "15th Jan"}},
        )
    )

    result = pipeline.validation.validate(job.id)

    assert result.error_rows == 2
    assert {issue.rule for issue in result.errors} == {"2", "5"}


def test_validate_rejects_wrong_status(pipeline, upload, land_registry_csv) -> None:
    job = upload(land_registry_csv(1))
    pipeline.validation.validate(job.id)

    with pytest.raises(InvalidStateError):
        pipeline.validation.validate(job.id)
    with pytest.raises(NotFoundError):
        pipeline.validation.validate("missing")


def test_unregistered_custom_validator_fails_job(make_pipeline, csv_bytes) -> None:
    pipeline = make_pipeline(
        store=_store_with(_rule("c", "id", ValidationRuleType.CUSTOM, parameters={"name": "nope"}))
    )
    job = pipeline.intake.upload(csv_bytes(["id"], [["1"]]), "one.csv", "text/csv")

    with pytest.raises(InvalidInputError):
        pipeline.validation.validate(job.id)

    stored = pipeline.registry.get(job.id)
    assert stored.status == ImportJobStatus.VALIDATION_FAILED
    assert "nope" in stored.error_message


def test_cancel_during_validation_keeps_cancelled(make_pipeline, csv_bytes) -> None:
    holder = {}

    def cancel_on_first_row(value, row, params) -> bool:
        if not holder.get("cancelled"):
            holder["cancelled"] = True
            holder["pipeline"].jobs.cancel(holder["job_id"])
        return True

    pipeline = make_pipeline(
        store=_store_with(_rule("c", "id", ValidationRuleType.CUSTOM, parameters={"name": "cancel"})),
        custom_predicates={"cancel": cancel_on_first_row},
    )
    job = pipeline.intake.upload(csv_bytes(["id"], [["1"], ["2"]]), "c.csv", "text/csv")
    holder.update(pipeline=pipeline, job_id=job.id)

    result = pipeline.validation.validate(job.id)

    assert result.status == ImportJobStatus.CANCELLED
    assert pipeline.registry.get(job.id).status == ImportJobStatus.CANCELLED
    assert pipeline.registry.list_issues(job.id) == []


@pytest.mark.parametrize(
    ("rule", "value", "ok"),
    [
        (_rule("r", "c", ValidationRuleType.REGEX, parameters={"pattern": "^ab", "flags": "i"}), "ABC", True),
        (_rule("r", "c", ValidationRuleType.REGEX, parameters={"pattern": "^ab"}), "ABC", False),
        (_rule("r", "c", ValidationRuleType.RANGE, parameters={"min": 1000, "max": 2000}), "1,500", True),
        (_rule("r", "c", ValidationRuleType.RANGE, parameters={"min": 1000}), "999", False),
        (_rule("r", "c", ValidationRuleType.RANGE, parameters={"max": 10}), "ten", False),
        (_rule("r", "c", ValidationRuleType.LENGTH, parameters={"minLength": 3}), "ab", False),
        (_rule("r", "c", ValidationRuleType.LENGTH, parameters={"max_length": 3}), "abc", True),
        (_rule("r", "c", ValidationRuleType.FORMAT, parameters={"format": "postcode"}), "sw1a1aa", True),
        (_rule("r", "c", ValidationRuleType.FORMAT, parameters={"format": "email"}), "a@b", False),
        (_rule("r", "c", ValidationRuleType.FORMAT, parameters={"format": "integer"}), "1,000", True),
        (_rule("r", "c", ValidationRuleType.FORMAT, parameters={"format": "date"}), "15/01/2023", False),
        (
            _rule("r", "c", ValidationRuleType.FORMAT, parameters={"format": "date", "date_format": "%d/%m/%Y"}),
            "15/01/2023",
            True,
        ),
        (
            _rule("r", "c", ValidationRuleType.FORMAT, parameters={"format": "uuid"}),
            "12345678-1234-1234-1234-123456789012",
            True,
        ),
    ],
)
def test_rule_types(rule: ValidationRule, value: str, ok: bool) -> None:
    issues = RuleChecker([rule]).check_row(1, {"c": value})

    assert (issues == []) is ok


def test_empty_cell_only_fails_required_rules() -> None:
    checker = RuleChecker(
        [
            _rule("len", "c", ValidationRuleType.LENGTH, parameters={"min_length": 5}),
            _rule("fmt", "c", ValidationRuleType.FORMAT, parameters={"format": "email"}),
            _rule("req", "c", ValidationRuleType.REQUIRED),
        ]
    )

    issues = checker.check_row(4, {"c": "  "})

    assert [issue.rule for issue in issues] == ["req"]
    assert issues[0].message == "c is required"


def test_wildcard_rule_checks_every_column_and_disabled_rules_are_skipped() -> None:
    checker = RuleChecker(
        [
            _rule("all", "*", ValidationRuleType.REQUIRED),
            _rule("off", "a", ValidationRuleType.LENGTH, parameters={"max_length": 0}, enabled=False),
        ]
    )

    issues = checker.check_row(1, {"a": "x", "b": "", "c": ""})

    assert [issue.column for issue in issues] == ["b", "c"]


@pytest.mark.parametrize(
    "rule",
    [
        _rule("r", "c", ValidationRuleType.REGEX, parameters={"pattern": "("}),
        _rule("r", "c", ValidationRuleType.RANGE, parameters={"min": 5, "max": 1}),
        _rule("r", "c", ValidationRuleType.RANGE, parameters={"min": "low"}),
        _rule("r", "c", ValidationRuleType.LENGTH),
        _rule("r", "c", ValidationRuleType.FORMAT, parameters={"format": "phone"}),
        _rule("r", "c", ValidationRuleType.CUSTOM),
    ],
)
def test_check_rule_rejects_unusable_definitions(rule: ValidationRule) -> None:
    with pytest.raises(InvalidInputError):
        check_rule(rule)


def test_header_only_file_validates_and_completes(pipeline, upload, events) -> None:
    job = upload(b"Price,Postcode\n")
    assert job.total_rows == 0

    result = pipeline.validation.validate(job.id)
    assert result.status == ImportJobStatus.VALIDATED
    assert (result.valid_rows, result.error_rows, result.warning_rows) == (0, 0, 0)

    pipeline.jobs.process(job.id)

    done = pipeline.registry.get(job.id)
    assert done.status == ImportJobStatus.COMPLETED
    assert done.processed_rows == 0
    assert done.end_time is not None
    assert pipeline.sink.records(job.id) == []
    assert pipeline.jobs.progress(job.id).progress_percentage == 100.0
    assert events.named("import.completed")[0]["processed_rows"] == 0
