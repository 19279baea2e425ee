"""Data mapping transformations applied to rows during processing."""

from __future__ import annotations

import re
from typing import Any, Callable

from land_importer.core.errors import InvalidInputError, RowMappingError
from land_importer.domain.enums import DataTransformationType
from land_importer.domain.models import DataMapping
from land_importer.services.csv_parsing import DATE_INPUT_FORMATS, parse_date

CustomTransform = Callable[[str, dict[str, str], dict[str, Any]], Any]

_CURRENCY_JUNK = re.compile(r"[^0-9.\-]")


def to_currency(value: str, decimals: int = 2) -> float:
    cleaned = _CURRENCY_JUNK.sub("", value)
    if cleaned in ("", "-", ".", "-."):
        raise ValueError(f"'{value}' is not a currency amount")
    return round(float(cleaned), decimals)


def reformat_date(value: str, params: dict[str, Any]) -> str:
    input_format = params.get("input_format")
    parsed = parse_date(value, [input_format] if input_format else DATE_INPUT_FORMATS)
    return parsed.strftime(params.get("output_format") or "%Y-%m-%d")


def concatenate(mapping: DataMapping, row: dict[str, str]) -> str:
    fields = mapping.parameters.get("fields") or [mapping.source_field]
    separator = mapping.parameters.get("separator", " ")
    parts = [row.get(name, "").strip() for name in fields]
    return separator.join(part for part in parts if part)


def split(value: str, params: dict[str, Any]) -> list[str] | str:
    parts = [part.strip() for part in value.split(params.get("separator") or ",")]
    index = params.get("index")
    if index is None:
        return parts
    try:
        return parts[int(index)]
    except IndexError as e:
        raise ValueError(f"split index {index} out of range ({len(parts)} parts)") from e


class RowMapper:
    """Project a raw CSV row onto target fields through an ordered list of mappings.

    Disabled mappings are skipped. With no enabled mappings the row is passed
    through unchanged.
    """

    def __init__(
        self,
        mappings: list[DataMapping],
        custom_transforms: dict[str, CustomTransform] | None = None,
    ) -> None:
        self.mappings = [mapping for mapping in mappings if mapping.enabled]
        self.custom_transforms = custom_transforms or {}

    def map_row(self, row_number: int, row: dict[str, str]) -> dict[str, Any]:
        if not self.mappings:
            return dict(row)

        record: dict[str, Any] = {}
        for mapping in self.mappings:
            value = row.get(mapping.source_field, "")
            try:
                record[mapping.target_field] = self._apply(mapping, value, row)
            except (ValueError, TypeError, InvalidInputError) as e:
                raise RowMappingError(row_number, mapping.id, mapping.source_field, value, str(e)) from e
        return record

    def _apply(self, mapping: DataMapping, value: str, row: dict[str, str]) -> Any:
        params = mapping.parameters
        kind = mapping.transformation

        if kind == DataTransformationType.NONE:
            return value
        if kind == DataTransformationType.UPPERCASE:
            return value.upper()
        if kind == DataTransformationType.LOWERCASE:
            return value.lower()
        if kind == DataTransformationType.TRIM:
            return value.strip()
        if kind == DataTransformationType.CONCATENATE:
            return concatenate(mapping, row)

        # Remaining transformations leave an empty cell empty
        if not value.strip():
            return None
        if kind == DataTransformationType.CURRENCY:
            return to_currency(value, int(params.get("decimals", 2)))
        if kind == DataTransformationType.DATE:
            return reformat_date(value, params)
        if kind == DataTransformationType.SPLIT:
            return split(value, params)
        if kind == DataTransformationType.CUSTOM:
            transform = self._custom(params)
            try:
                return transform(value, row, params)
            except (ValueError, TypeError, InvalidInputError):
                raise
            except Exception as e:
                # Any failure of injected code counts against this row only
                raise ValueError(f"custom transform '{params.get('name')}' raised {type(e).__name__}: {e}") from e
        raise InvalidInputError(f"Unsupported transformation: {kind}")

    def _custom(self, params: dict[str, Any]) -> CustomTransform:
        name = params.get("name")
        transform = self.custom_transforms.get(name)
        if transform is None:
            raise InvalidInputError(f"No custom transform registered under '{name}'")
        return transform


def check_mapping(mapping: DataMapping, custom_transforms: dict[str, CustomTransform] | None = None) -> None:
    """Reject mapping definitions whose parameters can never work."""
    params = mapping.parameters
    kind = mapping.transformation
    if not mapping.source_field.strip() or not mapping.target_field.strip():
        raise InvalidInputError("Mapping requires source_field and target_field")
    if kind == DataTransformationType.CURRENCY and "decimals" in params:
        try:
            int(params["decimals"])
        except (TypeError, ValueError) as e:
            raise InvalidInputError("currency 'decimals' must be an integer") from e
    if kind == DataTransformationType.CONCATENATE:
        fields = params.get("fields")
        if fields is not None and (
            not isinstance(fields, list) or not all(isinstance(name, str) for name in fields)
        ):
            raise InvalidInputError("concatenate 'fields' must be a list of column names")
    if kind == DataTransformationType.SPLIT and params.get("index") is not None:
        try:
            int(params["index"])
        except (TypeError, ValueError) as e:
            raise InvalidInputError("split 'index' must be an integer") from e
    if kind == DataTransformationType.CUSTOM:
        name = params.get("name")
        if not name:
            raise InvalidInputError("custom mapping requires parameters.name")
        if custom_transforms is not None and name not in custom_transforms:
            raise InvalidInputError(f"No custom transform registered under '{name}'")
