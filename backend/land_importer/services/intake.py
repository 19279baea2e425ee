"""Accept uploaded CSV files and register them as import jobs."""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from land_importer.core.errors import InvalidInputError
from land_importer.domain.enums import ImportJobType
from land_importer.domain.models import ImportConfiguration, ImportJob, JobConfiguration
from land_importer.services.csv_parsing import summarize
from land_importer.services.events import EventSink
from land_importer.services.registry import JobRegistry
from land_importer.services.rule_store import RuleStore
from land_importer.storage.file_storage import FileStorage, storage_key

logger = logging.getLogger(__name__)

CSV_MIME_TYPE = "text/csv"


class IntakeService:
    def __init__(
        self,
        registry: JobRegistry,
        store: RuleStore,
        storage: FileStorage,
        events: EventSink,
    ) -> None:
        self.registry = registry
        self.store = store
        self.storage = storage
        self.events = events

    def upload(
        self,
        content: bytes,
        original_name: str | None,
        content_type: str | None = None,
        type: str | ImportJobType | None = None,
        user_id: str | None = None,
        configuration: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ImportJob:
        """Store the file and create a job in ``uploaded``.

        Size and format limits come from the stored configuration; caller
        overrides only shape the job's own snapshot.
        """
        if not original_name:
            raise InvalidInputError("No file provided")
        if not content:
            raise InvalidInputError("Uploaded file is empty")

        stored = self.store.get_configuration()
        if len(content) > stored.max_file_size:
            raise InvalidInputError(
                f"File size {len(content)} bytes exceeds maximum allowed size of {stored.max_file_size} bytes"
            )
        extension = Path(original_name).suffix.lower().lstrip(".")
        if extension not in stored.allowed_formats and content_type != CSV_MIME_TYPE:
            raise InvalidInputError(
                f"Invalid file type. Allowed formats: {', '.join(stored.allowed_formats)}"
            )
        try:
            job_type = ImportJobType(type) if type else ImportJobType.LAND_REGISTRY
        except ValueError as e:
            raise InvalidInputError(f"Unknown import type: {type}") from e

        summary = summarize(content)
        snapshot = self.snapshot_configuration(stored, configuration)

        job_id = str(uuid.uuid4())
        key = storage_key(job_id, original_name)
        job = ImportJob(
            id=job_id,
            filename=key,
            original_name=original_name,
            file_size=len(content),
            type=job_type,
            total_rows=summary.total_rows,
            user_id=user_id or "system",
            configuration=snapshot,
            metadata={
                **(metadata or {}),
                "headers": summary.headers,
                "content_type": content_type,
            },
        )

        self.storage.save(key, content)
        try:
            job = self.registry.create(job)
        except Exception:
            logger.error(f"Failed to register job {job_id}; removing stored upload {key}", exc_info=True)
            try:
                self.storage.delete(key)
            except Exception as cleanup_error:
                logger.warning(f"Could not remove stored upload {key}: {cleanup_error}")
            raise

        logger.info(
            f"Uploaded {original_name} as job {job_id}: {summary.total_rows} row(s), "
            f"{len(summary.headers)} column(s)"
        )
        self.events.publish(
            "import.uploaded",
            {"job_id": job_id, "original_name": original_name, "total_rows": summary.total_rows},
        )
        return job

    def snapshot_configuration(
        self,
        stored: ImportConfiguration,
        overrides: dict[str, Any] | None = None,
    ) -> JobConfiguration:
        """Merge caller overrides into the stored configuration and resolve rule/mapping ids."""
        overrides = overrides or {}
        known = {key: value for key, value in overrides.items() if key in ImportConfiguration.model_fields}
        ignored = sorted(set(overrides) - set(known))
        if ignored:
            logger.debug(f"Ignoring unknown configuration key(s): {', '.join(ignored)}")
        try:
            merged = ImportConfiguration.model_validate({**stored.model_dump(), **known})
        except ValidationError as e:
            raise InvalidInputError(f"Invalid configuration: {e.errors()[0]['msg']}") from e

        rules, missing_rules = self.store.find_rules(merged.validation_rules)
        mappings, missing_mappings = self.store.find_mappings(merged.data_mappings)
        if missing_rules:
            if "validation_rules" in known:
                raise InvalidInputError(f"Unknown validation rule(s): {', '.join(missing_rules)}")
            logger.warning(f"Configured validation rule(s) not found, skipping: {', '.join(missing_rules)}")
        if missing_mappings:
            if "data_mappings" in known:
                raise InvalidInputError(f"Unknown data mapping(s): {', '.join(missing_mappings)}")
            logger.warning(f"Configured data mapping(s) not found, skipping: {', '.join(missing_mappings)}")

        return JobConfiguration(
            **merged.model_dump(exclude={"validation_rules", "data_mappings"}),
            validation_rules=[rule.id for rule in rules],
            data_mappings=[mapping.id for mapping in mappings],
            rules=rules,
            mappings=mappings,
        )
