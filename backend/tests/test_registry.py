from __future__ import annotations

from datetime import timedelta

import pytest

from land_importer.core.errors import NotFoundError, StaleJobStateError
from land_importer.db.base import Base
from land_importer.db.session import create_db_engine, create_session_factory
from land_importer.domain.enums import ImportJobStatus, ValidationSeverity
from land_importer.domain.models import ImportJob, JobQuery, ProcessOptions, ValidationIssue, utcnow
from land_importer.services.record_sink import InMemoryRecordSink, SqlRecordSink
from land_importer.services.registry import InMemoryJobRegistry, SqlJobRegistry
from land_importer.services.rule_store import InMemoryRuleStore, SqlRuleStore


@pytest.fixture()
def session_factory():
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture(params=["memory", "sql"])
def registry(request):
    if request.param == "memory":
        return InMemoryJobRegistry()
    return SqlJobRegistry(request.getfixturevalue("session_factory"))


def _job(job_id: str, **kwargs) -> ImportJob:
    return ImportJob(id=job_id, filename=f"{job_id}.csv", original_name=f"{job_id}.csv", file_size=10, **kwargs)


def _issue(row: int, message: str = "bad") -> ValidationIssue:
    return ValidationIssue(row=row, column="c", value="x", message=message, severity=ValidationSeverity.ERROR, rule="r")


def test_create_get_and_copies(registry) -> None:
    registry.create(_job("a", total_rows=3, metadata={"headers": ["c"]}))

    job = registry.get("a")
    job.metadata["headers"].append("mutated")

    assert registry.get("a").metadata == {"headers": ["c"]}
    assert registry.get("a").total_rows == 3
    with pytest.raises(NotFoundError):
        registry.get("missing")


def test_update_is_guarded_by_expected_status(registry) -> None:
    created = registry.create(_job("a"))

    updated = registry.update("a", expect={ImportJobStatus.UPLOADED}, status=ImportJobStatus.VALIDATING)

    assert updated.status == ImportJobStatus.VALIDATING
    assert updated.updated_at >= created.updated_at
    with pytest.raises(StaleJobStateError) as caught:
        registry.update("a", expect={ImportJobStatus.UPLOADED}, status=ImportJobStatus.VALIDATED)
    assert caught.value.actual == "validating"
    assert registry.get("a").status == ImportJobStatus.VALIDATING


def test_search_sorts_with_id_tie_break(registry) -> None:
    base = utcnow() - timedelta(days=1)
    for job_id, rows in (("c", 5), ("a", 5), ("b", 1), ("d", 9)):
        registry.create(_job(job_id, total_rows=rows, created_at=base, user_id="u1" if job_id != "d" else "u2"))

    ascending, total = registry.search(JobQuery(sort_by="total_rows", sort_order="asc"))
    descending, _ = registry.search(JobQuery(sort_by="total_rows", sort_order="desc"))

    assert total == 4
    assert [job.id for job in ascending] == ["b", "a", "c", "d"]
    assert [job.id for job in descending] == ["d", "a", "c", "b"]

    page, total = registry.search(JobQuery(user_id="u1", sort_by="id", sort_order="asc", page=2, limit=2))
    assert total == 3
    assert [job.id for job in page] == ["c"]


def test_search_filters_by_status_and_dates(registry) -> None:
    now = utcnow()
    registry.create(_job("old", created_at=now - timedelta(days=10)))
    registry.create(_job("new", created_at=now, status=ImportJobStatus.COMPLETED))

    completed, _ = registry.search(JobQuery(status=ImportJobStatus.COMPLETED))
    recent, _ = registry.search(JobQuery(start_date=now - timedelta(days=1)))

    assert [job.id for job in completed] == ["new"]
    assert [job.id for job in recent] == ["new"]
    assert {job.id for job in registry.jobs_between(end=now - timedelta(days=5))} == {"old"}


def test_issues_replace_append_and_delete(registry) -> None:
    registry.create(_job("a"))

    registry.replace_issues("a", [_issue(1), _issue(2)])
    registry.append_issues("a", [_issue(3, "mapping")])
    assert [issue.row for issue in registry.list_issues("a")] == [1, 2, 3]

    registry.replace_issues("a", [_issue(4)])
    assert [issue.row for issue in registry.list_issues("a")] == [4]

    registry.delete("a")
    with pytest.raises(NotFoundError):
        registry.list_issues("a")
    with pytest.raises(NotFoundError):
        registry.delete("a")


@pytest.fixture(params=["memory", "sql"])
def record_sink(request):
    if request.param == "memory":
        return InMemoryRecordSink()
    return SqlRecordSink(request.getfixturevalue("session_factory"))


def test_record_sink_orders_and_discards(record_sink) -> None:
    record_sink.write("job", [(2, {"v": "b"}), (1, {"v": "a"})])
    record_sink.write("other", [(1, {"v": "z"})])

    assert record_sink.records("job") == [{"v": "a"}, {"v": "b"}]
    assert record_sink.discard("job") == 2
    assert record_sink.records("job") == []
    assert record_sink.records("other") == [{"v": "z"}]


@pytest.fixture(params=["memory", "sql"])
def rule_store(request):
    if request.param == "memory":
        return InMemoryRuleStore()
    store = SqlRuleStore(request.getfixturevalue("session_factory"))
    store.seed_defaults()
    return store


def test_rule_store_seeds_defaults(rule_store) -> None:
    configuration = rule_store.get_configuration()

    assert [rule.id for rule in rule_store.list_rules()] == ["1", "2", "3", "4", "5"]
    assert len(rule_store.list_mappings()) == 5
    assert configuration.validation_rules == ["1", "2", "3", "4", "5"]
    found, missing = rule_store.find_rules(["2", "nope"])
    assert [rule.id for rule in found] == ["2"]
    assert missing == ["nope"]


def test_sql_rule_store_seeds_only_once(session_factory) -> None:
    store = SqlRuleStore(session_factory)
    store.seed_defaults()
    store.delete_rule("3")

    store.seed_defaults()

    assert [rule.id for rule in store.list_rules()] == ["1", "2", "4", "5"]


def test_sql_backed_pipeline_runs_end_to_end(make_pipeline, session_factory, land_registry_csv) -> None:
    store = SqlRuleStore(session_factory)
    store.seed_defaults()
    pipeline = make_pipeline(
        registry=SqlJobRegistry(session_factory),
        store=store,
        sink=SqlRecordSink(session_factory),
    )
    job = pipeline.intake.upload(land_registry_csv(7, bad_rows={3: {"Price": "50"}}), "prices.csv", "text/csv")

    assert pipeline.validation.validate(job.id).warning_rows == 1
    pipeline.jobs.process(job.id, ProcessOptions(batch_size=3))

    done = pipeline.registry.get(job.id)
    assert done.status == ImportJobStatus.COMPLETED
    assert done.processed_rows == 7
    assert done.validation_summary.warnings == 1
    assert [rule.id for rule in done.configuration.rules] == ["1", "2", "3", "4", "5"]
    assert [record["price"] for record in pipeline.sink.records(job.id)][2] == 50.0
    assert pipeline.jobs.errors(job.id).summary.warnings == 1
