"""CSV decoding and row iteration over stored upload bytes."""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator

from land_importer.core.errors import InvalidInputError

logger = logging.getLogger(__name__)

DATE_INPUT_FORMATS = (
    "%Y-%m-%d",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%d/%m/%Y",
)


@dataclass(frozen=True)
class CsvSummary:
    headers: list[str]
    total_rows: int


def _decode(content: bytes) -> str:
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise InvalidInputError(f"File encoding error: {str(e)}") from e


def _open_reader(content: bytes) -> csv.DictReader:
    reader = csv.DictReader(io.StringIO(_decode(content), newline=""))
    try:
        fieldnames = reader.fieldnames
    except csv.Error as e:
        raise InvalidInputError(f"CSV parsing error: {str(e)}") from e
    if not fieldnames:
        raise InvalidInputError("CSV requires a header row")

    headers = [name.strip() for name in fieldnames]
    if any(not name for name in headers):
        raise InvalidInputError("CSV header row contains an empty column name")
    duplicates = sorted({name for name in headers if headers.count(name) > 1})
    if duplicates:
        raise InvalidInputError(f"Duplicate column(s) in header: {', '.join(duplicates)}")
    reader.fieldnames = headers
    return reader


def _clean(row: dict) -> dict[str, str]:
    # Short rows yield None for missing cells, long rows park extras under the None key
    row.pop(None, None)
    return {key: (value if value is not None else "") for key, value in row.items()}


def summarize(content: bytes) -> CsvSummary:
    """Parse the whole file once for its header list and exact data row count."""
    reader = _open_reader(content)
    try:
        total = sum(1 for _ in reader)
    except csv.Error as e:
        raise InvalidInputError(f"CSV parsing error on line {reader.line_num}: {str(e)}") from e
    return CsvSummary(headers=list(reader.fieldnames), total_rows=total)


def iter_rows(content: bytes) -> Iterator[dict[str, str]]:
    """Yield data rows as column -> cell dicts, in file order."""
    reader = _open_reader(content)
    try:
        for row in reader:
            yield _clean(row)
    except csv.Error as e:
        raise InvalidInputError(f"CSV parsing error on line {reader.line_num}: {str(e)}") from e


def read_preview(content: bytes, max_rows: int) -> tuple[list[str], list[dict[str, str]]]:
    reader = _open_reader(content)
    rows: list[dict[str, str]] = []
    try:
        for row in reader:
            if len(rows) >= max_rows:
                break
            rows.append(_clean(row))
    except csv.Error as e:
        raise InvalidInputError(f"CSV parsing error on line {reader.line_num}: {str(e)}") from e
    return list(reader.fieldnames), rows


def parse_number(value: str) -> float:
    """Parse a numeric cell, tolerating thousands separators and surrounding spaces."""
    return float(value.strip().replace(",", ""))


def parse_date(value: str, formats: tuple[str, ...] | list[str] = DATE_INPUT_FORMATS) -> datetime:
    text = value.strip()
    for fmt in formats:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    raise ValueError(f"'{value}' does not match any of {', '.join(formats)}")


def _infer_type(values: list[str]) -> str:
    present = [value for value in values if value.strip()]
    if not present:
        return "string"
    try:
        for value in present:
            parse_number(value)
        return "number"
    except ValueError:
        pass
    try:
        for value in present:
            parse_date(value)
        return "date"
    except ValueError:
        return "string"


def infer_data_types(headers: list[str], rows: list[dict[str, str]]) -> dict[str, str]:
    """Classify each column as number, date or string from the sampled rows."""
    if not rows:
        return {}
    return {header: _infer_type([row.get(header, "") for row in rows]) for header in headers}
