from __future__ import annotations

import pytest

from land_importer.core.errors import InvalidInputError, NotFoundError
from land_importer.domain.enums import DataTransformationType, ImportJobStatus, ValidationRuleType
from land_importer.domain.models import (
    DataMappingCreate,
    DataMappingUpdate,
    ValidationRuleCreate,
    ValidationRuleUpdate,
)


def test_rule_crud_round_trip(pipeline) -> None:
    created = pipeline.rules.create_rule(
        ValidationRuleCreate(
            name="Short street",
            field="Street",
            type=ValidationRuleType.LENGTH,
            parameters={"max_length": 40},
        )
    )
    assert created.id.startswith("rule_")
    assert pipeline.rules.get_rule(created.id) == created

    updated = pipeline.rules.update_rule(created.id, ValidationRuleUpdate(enabled=False))
    assert updated.enabled is False
    assert updated.name == "Short street"
    assert updated.updated_at >= created.updated_at

    pipeline.rules.delete_rule(created.id)
    with pytest.raises(NotFoundError):
        pipeline.rules.get_rule(created.id)


def test_invalid_rule_definitions_are_rejected(pipeline) -> None:
    with pytest.raises(InvalidInputError):
        pipeline.rules.create_rule(
            ValidationRuleCreate(name="Broken", field="Postcode", type=ValidationRuleType.REGEX, parameters={"pattern": "["})
        )
    with pytest.raises(InvalidInputError):
        pipeline.rules.update_rule("3", ValidationRuleUpdate(parameters={"min": 10, "max": 1}))
    assert pipeline.rules.get_rule("3").parameters == {"min": 1000, "max": 50000000}


def test_mapping_crud_round_trip(pipeline) -> None:
    created = pipeline.rules.create_mapping(
        DataMappingCreate(
            name="District",
            source_field="District",
            target_field="district",
            transformation=DataTransformationType.LOWERCASE,
        )
    )
    assert created.id.startswith("mapping_")

    updated = pipeline.rules.update_mapping(
        created.id, DataMappingUpdate(transformation=DataTransformationType.TRIM)
    )
    assert updated.transformation == DataTransformationType.TRIM
    assert [mapping.id for mapping in pipeline.rules.list_mappings()][-1] == created.id

    pipeline.rules.delete_mapping(created.id)
    with pytest.raises(NotFoundError):
        pipeline.rules.delete_mapping(created.id)


def test_custom_mapping_needs_registered_transform(make_pipeline) -> None:
    pipeline = make_pipeline(custom_transforms={"initials": lambda value, row, params: value[:1]})
    payload = DataMappingCreate(
        name="Initial",
        source_field="Street",
        target_field="initial",
        transformation=DataTransformationType.CUSTOM,
        parameters={"name": "initials"},
    )

    assert pipeline.rules.create_mapping(payload).parameters == {"name": "initials"}
    with pytest.raises(InvalidInputError):
        pipeline.rules.create_mapping(payload.model_copy(update={"parameters": {"name": "other"}}))


def test_configuration_update_checks_references(pipeline) -> None:
    updated = pipeline.rules.update_configuration({"batch_size": 250, "validation_rules": ["1", "2"]})
    assert updated.batch_size == 250
    assert pipeline.rules.get_configuration().validation_rules == ["1", "2"]

    with pytest.raises(InvalidInputError, match="Unknown validation rule"):
        pipeline.rules.update_configuration({"validation_rules": ["1", "missing"]})
    with pytest.raises(InvalidInputError):
        pipeline.rules.update_configuration({"batch_size": 0})
    assert pipeline.rules.get_configuration().batch_size == 250


def test_jobs_keep_their_configuration_snapshot(pipeline, upload, land_registry_csv) -> None:
    job = upload(land_registry_csv(2, bad_rows={1: {"Postcode": ""}}))

    pipeline.rules.update_rule("1", ValidationRuleUpdate(enabled=False))
    pipeline.rules.delete_rule("4")
    result = pipeline.validation.validate(job.id)

    assert result.status == ImportJobStatus.VALIDATION_FAILED
    assert [rule.id for rule in pipeline.registry.get(job.id).configuration.rules] == ["1", "2", "3", "4", "5"]
