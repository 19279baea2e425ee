"""Create, update and delete rules and mappings; edit the import configuration."""

from __future__ import annotations

import logging
import uuid
from typing import Any

from pydantic import ValidationError

from land_importer.core.errors import InvalidInputError
from land_importer.domain.models import (
    DataMapping,
    DataMappingCreate,
    DataMappingUpdate,
    ImportConfiguration,
    ValidationRule,
    ValidationRuleCreate,
    ValidationRuleUpdate,
    utcnow,
)
from land_importer.services.rule_store import RuleStore
from land_importer.services.transforms import CustomTransform, check_mapping
from land_importer.services.validation import CustomPredicate, check_rule

logger = logging.getLogger(__name__)


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class RulesAdmin:
    """Definitions are checked with ``check_rule``/``check_mapping`` before they are stored.

    Existing jobs keep their own copies; nothing here touches a job.
    """

    def __init__(
        self,
        store: RuleStore,
        custom_predicates: dict[str, CustomPredicate] | None = None,
        custom_transforms: dict[str, CustomTransform] | None = None,
    ) -> None:
        self.store = store
        self.custom_predicates = custom_predicates if custom_predicates is not None else {}
        self.custom_transforms = custom_transforms if custom_transforms is not None else {}

    # Validation rules

    def list_rules(self) -> list[ValidationRule]:
        return self.store.list_rules()

    def get_rule(self, rule_id: str) -> ValidationRule:
        return self.store.get_rule(rule_id)

    def create_rule(self, data: ValidationRuleCreate) -> ValidationRule:
        now = utcnow()
        rule = ValidationRule(id=_new_id("rule"), created_at=now, updated_at=now, **data.model_dump())
        check_rule(rule, self.custom_predicates)
        self.store.save_rule(rule)
        logger.info(f"Created validation rule {rule.id} ({rule.name})")
        return rule

    def update_rule(self, rule_id: str, data: ValidationRuleUpdate) -> ValidationRule:
        current = self.store.get_rule(rule_id)
        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        rule = current.model_copy(update={**changes, "updated_at": utcnow()})
        check_rule(rule, self.custom_predicates)
        self.store.save_rule(rule)
        logger.info(f"Updated validation rule {rule_id}: {', '.join(sorted(changes)) or 'no fields'}")
        return rule

    def delete_rule(self, rule_id: str) -> None:
        self.store.delete_rule(rule_id)
        logger.info(f"Deleted validation rule {rule_id}")

    # Data mappings

    def list_mappings(self) -> list[DataMapping]:
        return self.store.list_mappings()

    def get_mapping(self, mapping_id: str) -> DataMapping:
        return self.store.get_mapping(mapping_id)

    def create_mapping(self, data: DataMappingCreate) -> DataMapping:
        now = utcnow()
        mapping = DataMapping(id=_new_id("mapping"), created_at=now, updated_at=now, **data.model_dump())
        check_mapping(mapping, self.custom_transforms)
        self.store.save_mapping(mapping)
        logger.info(f"Created data mapping {mapping.id} ({mapping.source_field} -> {mapping.target_field})")
        return mapping

    def update_mapping(self, mapping_id: str, data: DataMappingUpdate) -> DataMapping:
        current = self.store.get_mapping(mapping_id)
        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        mapping = current.model_copy(update={**changes, "updated_at": utcnow()})
        check_mapping(mapping, self.custom_transforms)
        self.store.save_mapping(mapping)
        logger.info(f"Updated data mapping {mapping_id}: {', '.join(sorted(changes)) or 'no fields'}")
        return mapping

    def delete_mapping(self, mapping_id: str) -> None:
        self.store.delete_mapping(mapping_id)
        logger.info(f"Deleted data mapping {mapping_id}")

    # Configuration

    def get_configuration(self) -> ImportConfiguration:
        return self.store.get_configuration()

    def update_configuration(self, changes: dict[str, Any]) -> ImportConfiguration:
        """Merge known keys into the stored configuration; referenced ids must exist."""
        current = self.store.get_configuration()
        known = {key: value for key, value in changes.items() if key in ImportConfiguration.model_fields}
        try:
            configuration = ImportConfiguration.model_validate({**current.model_dump(), **known})
        except ValidationError as e:
            raise InvalidInputError(f"Invalid configuration: {e.errors()[0]['msg']}") from e

        _, missing_rules = self.store.find_rules(configuration.validation_rules)
        if missing_rules:
            raise InvalidInputError(f"Unknown validation rule(s): {', '.join(missing_rules)}")
        _, missing_mappings = self.store.find_mappings(configuration.data_mappings)
        if missing_mappings:
            raise InvalidInputError(f"Unknown data mapping(s): {', '.join(missing_mappings)}")

        self.store.save_configuration(configuration)
        logger.info(f"Import configuration updated: {', '.join(sorted(known)) or 'no fields'}")
        return configuration
