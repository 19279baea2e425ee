"""Storage for validation rules, data mappings and the import configuration.

Pure CRUD plus id lookup; checking that a definition makes sense is the
job of :mod:`land_importer.services.rules_admin`.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from land_importer.core.errors import NotFoundError
from land_importer.db import models as orm
from land_importer.db.session import session_scope
from land_importer.domain.enums import (
    DataTransformationType,
    ValidationRuleType,
    ValidationSeverity,
)
from land_importer.domain.models import (
    DataMapping,
    ImportConfiguration,
    ValidationRule,
    utcnow,
)

logger = logging.getLogger(__name__)

UK_POSTCODE_PATTERN = r"^[A-Z]{1,2}[0-9R][0-9A-Z]? [0-9][A-Z]{2}$"


def default_rules() -> list[ValidationRule]:
    return [
        ValidationRule(
            id="1",
            name="Required Postcode",
            description="Every transaction needs a postcode",
            field="Postcode",
            type=ValidationRuleType.REQUIRED,
            severity=ValidationSeverity.ERROR,
        ),
        ValidationRule(
            id="2",
            name="Postcode Format",
            description="UK postcode format validation",
            field="Postcode",
            type=ValidationRuleType.REGEX,
            parameters={"pattern": UK_POSTCODE_PATTERN},
            severity=ValidationSeverity.ERROR,
        ),
        ValidationRule(
            id="3",
            name="Price Range",
            description="Property price must be within reasonable range",
            field="Price",
            type=ValidationRuleType.RANGE,
            parameters={"min": 1000, "max": 50000000},
            severity=ValidationSeverity.WARNING,
        ),
        ValidationRule(
            id="4",
            name="Required Price",
            description="Price paid must be present",
            field="Price",
            type=ValidationRuleType.REQUIRED,
            severity=ValidationSeverity.ERROR,
        ),
        ValidationRule(
            id="5",
            name="Transfer Date",
            description="Date of transfer must be a valid date",
            field="Date of Transfer",
            type=ValidationRuleType.FORMAT,
            parameters={"format": "date"},
            severity=ValidationSeverity.ERROR,
        ),
    ]


def default_mappings() -> list[DataMapping]:
    return [
        DataMapping(
            id="1",
            name="Standard Land Registry Mapping",
            description="Price paid as a GBP amount",
            source_field="Price",
            target_field="price",
            transformation=DataTransformationType.CURRENCY,
            parameters={"currency": "GBP"},
        ),
        DataMapping(
            id="2",
            name="Address Mapping",
            description="Combine address fields",
            source_field="Street",
            target_field="full_address",
            transformation=DataTransformationType.CONCATENATE,
            parameters={
                "fields": ["PAON", "SAON", "Street", "Locality", "Town/City"],
                "separator": ", ",
            },
        ),
        DataMapping(
            id="3",
            name="Postcode",
            source_field="Postcode",
            target_field="postcode",
            transformation=DataTransformationType.UPPERCASE,
        ),
        DataMapping(
            id="4",
            name="Transfer Date",
            source_field="Date of Transfer",
            target_field="date_of_transfer",
            transformation=DataTransformationType.DATE,
            parameters={"output_format": "%Y-%m-%d"},
        ),
        DataMapping(
            id="5",
            name="Transaction ID",
            source_field="Transaction ID",
            target_field="transaction_id",
            transformation=DataTransformationType.TRIM,
        ),
    ]


def default_configuration(
    *,
    max_file_size: int = 50 * 1024 * 1024,
    batch_size: int = 1000,
    retry_attempts: int = 3,
    timeout_minutes: int = 60,
) -> ImportConfiguration:
    return ImportConfiguration(
        max_file_size=max_file_size,
        allowed_formats=["csv"],
        batch_size=batch_size,
        validation_rules=[rule.id for rule in default_rules()],
        data_mappings=[mapping.id for mapping in default_mappings()],
        retry_attempts=retry_attempts,
        timeout_minutes=timeout_minutes,
    )


class RuleStore(ABC):
    @abstractmethod
    def list_rules(self) -> list[ValidationRule]: ...

    @abstractmethod
    def get_rule(self, rule_id: str) -> ValidationRule: ...

    @abstractmethod
    def save_rule(self, rule: ValidationRule) -> ValidationRule: ...

    @abstractmethod
    def delete_rule(self, rule_id: str) -> None: ...

    @abstractmethod
    def list_mappings(self) -> list[DataMapping]: ...

    @abstractmethod
    def get_mapping(self, mapping_id: str) -> DataMapping: ...

    @abstractmethod
    def save_mapping(self, mapping: DataMapping) -> DataMapping: ...

    @abstractmethod
    def delete_mapping(self, mapping_id: str) -> None: ...

    @abstractmethod
    def get_configuration(self) -> ImportConfiguration: ...

    @abstractmethod
    def save_configuration(self, configuration: ImportConfiguration) -> ImportConfiguration: ...

    def find_rules(self, rule_ids: list[str]) -> tuple[list[ValidationRule], list[str]]:
        """Resolve ids in order; return the found rules and the ids that were missing."""
        found, missing = [], []
        for rule_id in rule_ids:
            try:
                found.append(self.get_rule(rule_id))
            except NotFoundError:
                missing.append(rule_id)
        return found, missing

    def find_mappings(self, mapping_ids: list[str]) -> tuple[list[DataMapping], list[str]]:
        found, missing = [], []
        for mapping_id in mapping_ids:
            try:
                found.append(self.get_mapping(mapping_id))
            except NotFoundError:
                missing.append(mapping_id)
        return found, missing


class InMemoryRuleStore(RuleStore):
    def __init__(
        self,
        configuration: ImportConfiguration | None = None,
        rules: list[ValidationRule] | None = None,
        mappings: list[DataMapping] | None = None,
    ) -> None:
        self._lock = threading.RLock()
        self._rules = {rule.id: rule for rule in (default_rules() if rules is None else rules)}
        self._mappings = {
            mapping.id: mapping for mapping in (default_mappings() if mappings is None else mappings)
        }
        self._configuration = configuration or default_configuration()

    def list_rules(self) -> list[ValidationRule]:
        with self._lock:
            return [rule.model_copy(deep=True) for rule in self._rules.values()]

    def get_rule(self, rule_id: str) -> ValidationRule:
        with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None:
                raise NotFoundError(f"Validation rule {rule_id} not found")
            return rule.model_copy(deep=True)

    def save_rule(self, rule: ValidationRule) -> ValidationRule:
        with self._lock:
            self._rules[rule.id] = rule.model_copy(deep=True)
            return rule

    def delete_rule(self, rule_id: str) -> None:
        with self._lock:
            if self._rules.pop(rule_id, None) is None:
                raise NotFoundError(f"Validation rule {rule_id} not found")

    def list_mappings(self) -> list[DataMapping]:
        with self._lock:
            return [mapping.model_copy(deep=True) for mapping in self._mappings.values()]

    def get_mapping(self, mapping_id: str) -> DataMapping:
        with self._lock:
            mapping = self._mappings.get(mapping_id)
            if mapping is None:
                raise NotFoundError(f"Data mapping {mapping_id} not found")
            return mapping.model_copy(deep=True)

    def save_mapping(self, mapping: DataMapping) -> DataMapping:
        with self._lock:
            self._mappings[mapping.id] = mapping.model_copy(deep=True)
            return mapping

    def delete_mapping(self, mapping_id: str) -> None:
        with self._lock:
            if self._mappings.pop(mapping_id, None) is None:
                raise NotFoundError(f"Data mapping {mapping_id} not found")

    def get_configuration(self) -> ImportConfiguration:
        with self._lock:
            return self._configuration.model_copy(deep=True)

    def save_configuration(self, configuration: ImportConfiguration) -> ImportConfiguration:
        with self._lock:
            self._configuration = configuration.model_copy(deep=True)
            return configuration


class SqlRuleStore(RuleStore):
    CONFIGURATION_ROW_ID = 1

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self.session_factory = session_factory

    def seed_defaults(self, configuration: ImportConfiguration | None = None) -> None:
        """Insert the default rules, mappings and configuration into an empty store."""
        with session_scope(self.session_factory) as db:
            if db.scalar(select(orm.ImportConfiguration.id)) is not None:
                return
            for rule in default_rules():
                db.add(orm.ValidationRule(**self._rule_values(rule)))
            for mapping in default_mappings():
                db.add(orm.DataMapping(**self._mapping_values(mapping)))
            db.add(
                orm.ImportConfiguration(
                    id=self.CONFIGURATION_ROW_ID,
                    payload=(configuration or default_configuration()).model_dump(mode="json"),
                    updated_at=utcnow(),
                )
            )
        logger.info("Seeded default validation rules, data mappings and configuration")

    @staticmethod
    def _rule_values(rule: ValidationRule) -> dict:
        values = rule.model_dump(mode="python")
        values["type"] = rule.type.value
        values["severity"] = rule.severity.value
        return values

    @staticmethod
    def _mapping_values(mapping: DataMapping) -> dict:
        values = mapping.model_dump(mode="python")
        values["transformation"] = mapping.transformation.value
        return values

    def list_rules(self) -> list[ValidationRule]:
        with session_scope(self.session_factory) as db:
            rows = db.scalars(
                select(orm.ValidationRule).order_by(orm.ValidationRule.created_at, orm.ValidationRule.id)
            ).all()
            return [ValidationRule.model_validate(row) for row in rows]

    def get_rule(self, rule_id: str) -> ValidationRule:
        with session_scope(self.session_factory) as db:
            row = db.get(orm.ValidationRule, rule_id)
            if row is None:
                raise NotFoundError(f"Validation rule {rule_id} not found")
            return ValidationRule.model_validate(row)

    def save_rule(self, rule: ValidationRule) -> ValidationRule:
        with session_scope(self.session_factory) as db:
            db.merge(orm.ValidationRule(**self._rule_values(rule)))
        return rule

    def delete_rule(self, rule_id: str) -> None:
        with session_scope(self.session_factory) as db:
            row = db.get(orm.ValidationRule, rule_id)
            if row is None:
                raise NotFoundError(f"Validation rule {rule_id} not found")
            db.delete(row)

    def list_mappings(self) -> list[DataMapping]:
        with session_scope(self.session_factory) as db:
            rows = db.scalars(
                select(orm.DataMapping).order_by(orm.DataMapping.created_at, orm.DataMapping.id)
            ).all()
            return [DataMapping.model_validate(row) for row in rows]

    def get_mapping(self, mapping_id: str) -> DataMapping:
        with session_scope(self.session_factory) as db:
            row = db.get(orm.DataMapping, mapping_id)
            if row is None:
                raise NotFoundError(f"Data mapping {mapping_id} not found")
            return DataMapping.model_validate(row)

    def save_mapping(self, mapping: DataMapping) -> DataMapping:
        with session_scope(self.session_factory) as db:
            db.merge(orm.DataMapping(**self._mapping_values(mapping)))
        return mapping

    def delete_mapping(self, mapping_id: str) -> None:
        with session_scope(self.session_factory) as db:
            row = db.get(orm.DataMapping, mapping_id)
            if row is None:
                raise NotFoundError(f"Data mapping {mapping_id} not found")
            db.delete(row)

    def get_configuration(self) -> ImportConfiguration:
        with session_scope(self.session_factory) as db:
            row = db.get(orm.ImportConfiguration, self.CONFIGURATION_ROW_ID)
            if row is None:
                return default_configuration()
            return ImportConfiguration.model_validate(row.payload)

    def save_configuration(self, configuration: ImportConfiguration) -> ImportConfiguration:
        with session_scope(self.session_factory) as db:
            db.merge(
                orm.ImportConfiguration(
                    id=self.CONFIGURATION_ROW_ID,
                    payload=configuration.model_dump(mode="json"),
                    updated_at=utcnow(),
                )
            )
        return configuration
