from __future__ import annotations

import csv
import io
from pathlib import Path
from typing import Callable

import pytest
from fastapi.testclient import TestClient

from land_importer.domain.models import ImportJob
from land_importer.main import create_app
from land_importer.services.cancellation import InMemoryCancellationSignals
from land_importer.services.events import RecordingEventSink
from land_importer.services.pipeline import ImportPipeline, assemble_pipeline
from land_importer.services.record_sink import InMemoryRecordSink
from land_importer.services.registry import InMemoryJobRegistry
from land_importer.services.reports import TEMPLATE_HEADERS, TEMPLATE_SAMPLE
from land_importer.services.rule_store import InMemoryRuleStore
from land_importer.services.runner import InlineJobRunner
from land_importer.storage.file_storage import LocalFileStorage


def to_csv(headers: list[str], rows: list[list[str]]) -> bytes:
    buffer = io.StringIO(newline="")
    writer = csv.writer(buffer)
    writer.writerow(headers)
    writer.writerows(rows)
    return buffer.getvalue().encode("utf-8")


def land_registry_row(index: int, **overrides: str) -> list[str]:
    values = dict(zip(TEMPLATE_HEADERS, TEMPLATE_SAMPLE))
    values["Transaction ID"] = f"{{{index:08d}-0000-0000-0000-000000000000}}"
    for header, value in overrides.items():
        values[header] = value
    return [values[header] for header in TEMPLATE_HEADERS]


@pytest.fixture()
def csv_bytes() -> Callable[[list[str], list[list[str]]], bytes]:
    return to_csv


@pytest.fixture()
def land_registry_csv() -> Callable[..., bytes]:
    """Build a template-shaped file; ``bad_rows`` maps a 1-based row number to cell overrides."""

    def _build(rows: int, bad_rows: dict[int, dict[str, str]] | None = None) -> bytes:
        bad_rows = bad_rows or {}
        return to_csv(
            list(TEMPLATE_HEADERS),
            [land_registry_row(index, **bad_rows.get(index, {})) for index in range(1, rows + 1)],
        )

    return _build


@pytest.fixture()
def events() -> RecordingEventSink:
    return RecordingEventSink()


@pytest.fixture()
def make_pipeline(tmp_path: Path, events: RecordingEventSink) -> Callable[..., ImportPipeline]:
    """Assemble an in-memory pipeline whose runs execute inline; keyword arguments override parts."""

    def _make(**overrides) -> ImportPipeline:
        parts = {
            "registry": InMemoryJobRegistry(),
            "store": InMemoryRuleStore(),
            "storage": LocalFileStorage(tmp_path / "uploads"),
            "sink": InMemoryRecordSink(),
            "events": events,
            "signals": InMemoryCancellationSignals(),
            "runner_factory": InlineJobRunner,
        }
        parts.update(overrides)
        return assemble_pipeline(**parts)

    return _make


@pytest.fixture()
def pipeline(make_pipeline) -> ImportPipeline:
    return make_pipeline()


@pytest.fixture()
def upload(pipeline: ImportPipeline) -> Callable[..., ImportJob]:
    def _upload(content: bytes, name: str = "prices.csv", **kwargs) -> ImportJob:
        return pipeline.intake.upload(content, name, "text/csv", **kwargs)

    return _upload


@pytest.fixture()
def client(pipeline: ImportPipeline) -> TestClient:
    return TestClient(create_app(pipeline))
