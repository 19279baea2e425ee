"""Validation rule, data mapping and import configuration endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, status

from land_importer.api.dependencies.pipeline import get_pipeline
from land_importer.api.schemas.imports import MessageResponse
from land_importer.domain.models import (
    DataMapping,
    DataMappingCreate,
    DataMappingUpdate,
    ImportConfiguration,
    ValidationRule,
    ValidationRuleCreate,
    ValidationRuleUpdate,
)
from land_importer.services.pipeline import ImportPipeline

router = APIRouter()


@router.get("/validation-rules", summary="List validation rules", response_model=list[ValidationRule])
def list_rules(pipeline: ImportPipeline = Depends(get_pipeline)) -> list[ValidationRule]:
    return pipeline.rules.list_rules()


@router.post(
    "/validation-rules",
    summary="Create a validation rule",
    status_code=status.HTTP_201_CREATED,
    response_model=ValidationRule,
)
def create_rule(
    payload: ValidationRuleCreate,
    pipeline: ImportPipeline = Depends(get_pipeline),
) -> ValidationRule:
    """Rules are checked (pattern compiles, bounds are numbers, format is known) before they are saved."""
    return pipeline.rules.create_rule(payload)


@router.get("/validation-rules/{rule_id}", summary="Fetch a validation rule", response_model=ValidationRule)
def get_rule(rule_id: str, pipeline: ImportPipeline = Depends(get_pipeline)) -> ValidationRule:
    return pipeline.rules.get_rule(rule_id)


@router.put("/validation-rules/{rule_id}", summary="Update a validation rule", response_model=ValidationRule)
def update_rule(
    rule_id: str,
    payload: ValidationRuleUpdate,
    pipeline: ImportPipeline = Depends(get_pipeline),
) -> ValidationRule:
    return pipeline.rules.update_rule(rule_id, payload)


@router.delete("/validation-rules/{rule_id}", summary="Delete a validation rule", response_model=MessageResponse)
def delete_rule(rule_id: str, pipeline: ImportPipeline = Depends(get_pipeline)) -> MessageResponse:
    pipeline.rules.delete_rule(rule_id)
    return MessageResponse(message="Validation rule deleted successfully")


@router.get("/data-mapping", summary="List data mappings", response_model=list[DataMapping])
def list_mappings(pipeline: ImportPipeline = Depends(get_pipeline)) -> list[DataMapping]:
    return pipeline.rules.list_mappings()


@router.post(
    "/data-mapping",
    summary="Create a data mapping",
    status_code=status.HTTP_201_CREATED,
    response_model=DataMapping,
)
def create_mapping(
    payload: DataMappingCreate,
    pipeline: ImportPipeline = Depends(get_pipeline),
) -> DataMapping:
    return pipeline.rules.create_mapping(payload)


@router.get("/data-mapping/{mapping_id}", summary="Fetch a data mapping", response_model=DataMapping)
def get_mapping(mapping_id: str, pipeline: ImportPipeline = Depends(get_pipeline)) -> DataMapping:
    return pipeline.rules.get_mapping(mapping_id)


@router.put("/data-mapping/{mapping_id}", summary="Update a data mapping", response_model=DataMapping)
def update_mapping(
    mapping_id: str,
    payload: DataMappingUpdate,
    pipeline: ImportPipeline = Depends(get_pipeline),
) -> DataMapping:
    return pipeline.rules.update_mapping(mapping_id, payload)


@router.delete("/data-mapping/{mapping_id}", summary="Delete a data mapping", response_model=MessageResponse)
def delete_mapping(mapping_id: str, pipeline: ImportPipeline = Depends(get_pipeline)) -> MessageResponse:
    pipeline.rules.delete_mapping(mapping_id)
    return MessageResponse(message="Data mapping deleted successfully")


@router.get("/configuration", summary="Current import configuration", response_model=ImportConfiguration)
def get_configuration(pipeline: ImportPipeline = Depends(get_pipeline)) -> ImportConfiguration:
    return pipeline.rules.get_configuration()


@router.put("/configuration", summary="Update the import configuration", response_model=ImportConfiguration)
def update_configuration(
    changes: dict[str, Any] = Body(...),
    pipeline: ImportPipeline = Depends(get_pipeline),
) -> ImportConfiguration:
    """Only the supplied keys change; new jobs snapshot the result, existing jobs keep theirs."""
    return pipeline.rules.update_configuration(changes)
