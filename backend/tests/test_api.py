from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient


def _upload(client: TestClient, content: bytes, **form) -> dict:
    response = client.post(
        "/api/imports/upload",
        files={"file": ("prices.csv", content, "text/csv")},
        data=form,
    )
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture()
def completed_job(client: TestClient, land_registry_csv) -> dict:
    job = _upload(client, land_registry_csv(12), user_id="alice")
    assert client.post(f"/api/imports/validate/{job['id']}").json()["status"] == "validated"
    response = client.post(f"/api/imports/process/{job['id']}", json={"batch_size": 5})
    assert response.status_code == 202
    return response.json()


def test_upload_validate_process_flow(client: TestClient, completed_job: dict) -> None:
    assert completed_job["status"] == "completed"
    assert completed_job["processed_rows"] == 12
    assert completed_job["user_id"] == "alice"
    assert completed_job["duration"] is not None

    progress = client.get(f"/api/imports/jobs/{completed_job['id']}/progress").json()
    assert progress["progress_percentage"] == 100.0
    assert progress["current_phase"] == "Import complete"
    assert progress["estimated_time_remaining"] == 0.0


def test_upload_with_configuration_override(client: TestClient, land_registry_csv) -> None:
    job = _upload(client, land_registry_csv(2), configuration=json.dumps({"batch_size": 2}))

    assert job["configuration"]["batch_size"] == 2


@pytest.mark.parametrize(
    ("configuration", "detail"),
    [("{not json", "configuration must be valid JSON"), ("[1, 2]", "configuration must be a JSON object")],
)
def test_upload_rejects_bad_configuration(client: TestClient, land_registry_csv, configuration, detail) -> None:
    response = client.post(
        "/api/imports/upload",
        files={"file": ("prices.csv", land_registry_csv(1), "text/csv")},
        data={"configuration": configuration},
    )

    assert response.status_code == 400
    assert response.json()["detail"].startswith(detail)


def test_upload_rejects_non_csv(client: TestClient) -> None:
    response = client.post(
        "/api/imports/upload",
        files={"file": ("prices.pdf", b"%PDF-1.4", "application/pdf")},
    )

    assert response.status_code == 400
    assert "Invalid file type" in response.json()["detail"]


def test_domain_errors_map_to_status_codes(client: TestClient, completed_job: dict) -> None:
    missing = client.get("/api/imports/jobs/does-not-exist")
    assert missing.status_code == 404
    assert missing.json() == {"detail": "Import job not found"}

    cancel = client.put(f"/api/imports/jobs/{completed_job['id']}/cancel")
    assert cancel.status_code == 400
    assert cancel.json()["detail"] == "cannot cancel a job that is already completed"

    process = client.post(f"/api/imports/process/{completed_job['id']}")
    assert process.status_code == 400

    bad_sort = client.get("/api/imports/jobs", params={"sort_by": "nonsense"})
    assert bad_sort.status_code == 400

    bad_options = client.post(f"/api/imports/process/{completed_job['id']}", json={"batch_size": 0})
    assert bad_options.status_code == 422


def test_list_jobs(client: TestClient, completed_job: dict, land_registry_csv) -> None:
    _upload(client, land_registry_csv(1), user_id="bob")

    response = client.get("/api/imports/jobs", params={"user_id": "alice", "sort_by": "createdAt"})

    body = response.json()
    assert response.status_code == 200
    assert [job["id"] for job in body["data"]] == [completed_job["id"]]
    assert body["pagination"] == {"page": 1, "limit": 10, "total": 1, "pages": 1}


def test_errors_and_preview(client: TestClient, land_registry_csv) -> None:
    job = _upload(client, land_registry_csv(3, bad_rows={2: {"Postcode": ""}}))
    validation = client.post(f"/api/imports/validate/{job['id']}").json()
    assert validation["status"] == "validation_failed"

    errors = client.get(f"/api/imports/jobs/{job['id']}/errors", params={"limit": 10}).json()
    assert errors["total_errors"] == 1
    assert errors["errors"][0]["row"] == 2
    assert errors["summary"]["most_common_errors"] == [{"message": "Postcode is required", "count": 1}]

    preview = client.get(f"/api/imports/jobs/{job['id']}/preview", params={"rows": 2}).json()
    assert preview["preview_rows"] == 2
    assert preview["total_rows"] == 3


def test_retry_and_delete(client: TestClient, completed_job: dict) -> None:
    retry = client.put(f"/api/imports/jobs/{completed_job['id']}/retry")
    assert retry.status_code == 400

    deleted = client.delete(f"/api/imports/jobs/{completed_job['id']}")
    assert deleted.json() == {"message": "Import job deleted successfully"}
    assert client.get(f"/api/imports/jobs/{completed_job['id']}").status_code == 404


def test_stream_closes_on_terminal_status(client: TestClient, completed_job: dict) -> None:
    response = client.get(f"/api/imports/jobs/{completed_job['id']}/stream")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    lines = [line for line in response.text.splitlines() if line]
    snapshot = json.loads(lines[0].removeprefix("data: "))
    assert snapshot["status"] == "completed"
    assert lines[-2:] == ["event: close", "data: {}"]


def test_export_endpoints(client: TestClient, completed_job: dict) -> None:
    as_csv = client.get(f"/api/imports/export/{completed_job['id']}")
    assert as_csv.status_code == 200
    assert as_csv.headers["content-type"].startswith("text/csv")
    assert len(as_csv.text.strip().splitlines()) == 13

    as_xlsx = client.get(f"/api/imports/export/{completed_job['id']}", params={"format": "xlsx"})
    assert as_xlsx.headers["content-disposition"] == f'attachment; filename="import_{completed_job["id"]}.xlsx"'

    assert client.get(f"/api/imports/export/{completed_job['id']}", params={"format": "pdf"}).status_code == 422


def test_statistics_and_template(client: TestClient, completed_job: dict) -> None:
    stats = client.get("/api/imports/statistics").json()
    assert stats["total_jobs"] == 1
    assert stats["status_breakdown"]["completed"] == 1

    template = client.get("/api/imports/template").json()
    assert template["headers"][0] == "Transaction ID"
    assert len(template["sample_data"][0]) == len(template["headers"])

    download = client.get("/api/imports/template/download")
    assert download.text.splitlines()[0].startswith("Transaction ID,Price,Date of Transfer")


def test_bulk_delete_and_cleanup(client: TestClient, completed_job: dict, land_registry_csv) -> None:
    other = _upload(client, land_registry_csv(1))

    bulk = client.post("/api/imports/bulk-delete", json={"job_ids": [other["id"], "missing"]})
    assert bulk.json() == {"deleted_count": 1}
    assert client.post("/api/imports/bulk-delete", json={"job_ids": []}).status_code == 422

    cleanup = client.post("/api/imports/cleanup", json={"older_than_days": 0})
    assert cleanup.json() == {"cleaned_count": 1}


def test_rule_and_mapping_endpoints(client: TestClient) -> None:
    assert len(client.get("/api/imports/validation-rules").json()) == 5

    created = client.post(
        "/api/imports/validation-rules",
        json={"name": "County", "field": "County", "type": "required"},
    )
    assert created.status_code == 201
    rule_id = created.json()["id"]

    updated = client.put(f"/api/imports/validation-rules/{rule_id}", json={"severity": "warning"})
    assert updated.json()["severity"] == "warning"

    broken = client.post(
        "/api/imports/validation-rules",
        json={"name": "Bad", "field": "Price", "type": "regex", "parameters": {"pattern": "("}},
    )
    assert broken.status_code == 400

    assert client.delete(f"/api/imports/validation-rules/{rule_id}").status_code == 200
    assert client.get(f"/api/imports/validation-rules/{rule_id}").status_code == 404

    mapping = client.post(
        "/api/imports/data-mapping",
        json={"name": "County", "source_field": "County", "target_field": "county", "transformation": "lowercase"},
    )
    assert mapping.status_code == 201
    assert client.get(f"/api/imports/data-mapping/{mapping.json()['id']}").json()["target_field"] == "county"


def test_configuration_endpoints(client: TestClient) -> None:
    assert client.get("/api/imports/configuration").json()["batch_size"] == 1000

    updated = client.put("/api/imports/configuration", json={"batch_size": 500})
    assert updated.status_code == 200
    assert updated.json()["batch_size"] == 500

    rejected = client.put("/api/imports/configuration", json={"data_mappings": ["missing"]})
    assert rejected.status_code == 400


def test_health_endpoints(client: TestClient) -> None:
    assert client.get("/health/live").json()["status"] == "ok"

    ready = client.get("/health/ready")
    assert ready.status_code == 200
    assert ready.json()["status"] == "ok"
