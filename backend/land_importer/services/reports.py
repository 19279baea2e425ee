"""Import template and export of loaded records."""

from __future__ import annotations

import csv
import io
import json
from dataclasses import dataclass
from typing import Any

from openpyxl import Workbook

from land_importer.core.errors import InvalidInputError
from land_importer.domain.enums import ExportFormat
from land_importer.domain.models import ImportTemplate

TEMPLATE_HEADERS = [
    "Transaction ID",
    "Price",
    "Date of Transfer",
    "Postcode",
    "Property Type",
    "Old/New",
    "Duration",
    "PAON",
    "SAON",
    "Street",
    "Locality",
    "Town/City",
    "District",
    "County",
    "PPD Category Type",
    "Record Status",
]

TEMPLATE_SAMPLE = [
    "{12345678-1234-1234-1234-123456789012}",
    "250000",
    "2023-01-15",
    "SW1A 1AA",
    "D",
    "N",
    "F",
    "10",
    "",
    "DOWNING STREET",
    "",
    "LONDON",
    "CITY OF WESTMINSTER",
    "GREATER LONDON",
    "A",
    "A",
]

MEDIA_TYPES = {
    ExportFormat.CSV: "text/csv",
    ExportFormat.JSON: "application/json",
    ExportFormat.XLSX: "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


def import_template() -> ImportTemplate:
    return ImportTemplate(
        filename="land_registry_template.csv",
        headers=list(TEMPLATE_HEADERS),
        sample_data=[list(TEMPLATE_SAMPLE)],
        description="Template for Land Registry CSV import",
        instructions=[
            "Fill in all required fields",
            "Use the exact column headers provided",
            "Ensure dates are in YYYY-MM-DD format",
            "Property Type: D=Detached, S=Semi-Detached, T=Terraced, F=Flats/Maisonettes, O=Other",
            "Old/New: Y=New Build, N=Established Property",
            "Duration: F=Freehold, L=Leasehold",
        ],
    )


def template_csv() -> bytes:
    buffer = io.StringIO(newline="")
    writer = csv.writer(buffer)
    writer.writerow(TEMPLATE_HEADERS)
    writer.writerow(TEMPLATE_SAMPLE)
    return buffer.getvalue().encode("utf-8")


@dataclass(frozen=True)
class ExportFile:
    content: bytes
    media_type: str
    filename: str


def _columns(records: list[dict[str, Any]]) -> list[str]:
    columns: list[str] = []
    for record in records:
        for key in record:
            if key not in columns:
                columns.append(key)
    return columns


def _cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (list, dict)):
        return json.dumps(value)
    return value


def export_records(job_id: str, records: list[dict[str, Any]], format: str | ExportFormat) -> ExportFile:
    try:
        fmt = ExportFormat(format)
    except ValueError as e:
        raise InvalidInputError(f"Unsupported export format: {format}") from e

    columns = _columns(records)
    if fmt == ExportFormat.JSON:
        content = json.dumps(records, indent=2, default=str).encode("utf-8")
    elif fmt == ExportFormat.CSV:
        buffer = io.StringIO(newline="")
        writer = csv.writer(buffer)
        writer.writerow(columns)
        for record in records:
            writer.writerow([_cell(record.get(column)) for column in columns])
        content = buffer.getvalue().encode("utf-8")
    else:
        workbook = Workbook()
        sheet = workbook.active
        sheet.title = "Import"
        sheet.append(columns)
        for record in records:
            sheet.append([_cell(record.get(column)) for column in columns])
        buffer = io.BytesIO()
        workbook.save(buffer)
        content = buffer.getvalue()

    return ExportFile(
        content=content,
        media_type=MEDIA_TYPES[fmt],
        filename=f"import_{job_id}.{fmt.value}",
    )
