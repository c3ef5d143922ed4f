from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from jobboard.main import create_app

pytestmark = pytest.mark.integration

JOBS_CSV = (
    "JobID,JobTitle,Company,Location,JobType,Description,Requirements\n"
    "J1,Backend Engineer,Acme,Remote,Full-time,Build Python APIs,FastAPI\n"
    "J2,Data Analyst,Globex,Berlin,Contract,Dashboards and SQL,Excel\n"
    "J3,Platform Engineer,ACME,Berlin,Full-time,Own CI pipelines,Kubernetes\n"
    "J4,Designer,Initech,Remote,Part-time,Design product flows,Figma experience\n"
)


@pytest.fixture
def client(tmp_path: Path):
    db_path = tmp_path / "jobboard.sqlite3"
    app = create_app(database_path=str(db_path), csv_paths=[])
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def seeded_client(client: TestClient) -> TestClient:
    response = client.post("/api/jobs/ingest", json={"batches": [JOBS_CSV]})
    assert response.status_code == 200
    return client


def test_ingest_endpoint_reports_count_then_skips(client: TestClient) -> None:
    first = client.post("/api/jobs/ingest", json={"batches": [JOBS_CSV]})
    second = client.post("/api/jobs/ingest", json={"batches": [JOBS_CSV]})

    assert first.status_code == 200
    assert first.json() == {
        "message": "Successfully ingested 4 jobs.",
        "ingested": 4,
        "skipped": False,
    }
    assert second.status_code == 200
    assert second.json() == {"message": "Jobs already ingested.", "ingested": 0, "skipped": True}
    assert len(client.get("/api/jobs").json()) == 4


def test_ingest_endpoint_reads_configured_csv_files(tmp_path: Path) -> None:
    csv_path = tmp_path / "scraped.csv"
    csv_path.write_text(JOBS_CSV, encoding="utf-8")
    app = create_app(database_path=str(tmp_path / "files.sqlite3"), csv_paths=[str(csv_path)])

    with TestClient(app) as client:
        response = client.post("/api/jobs/ingest")
        jobs = client.get("/api/jobs").json()

    assert response.status_code == 200
    assert response.json()["ingested"] == 4
    assert {job["job_id"] for job in jobs} == {"J1", "J2", "J3", "J4"}


def test_ingest_endpoint_without_input_is_a_server_error(client: TestClient) -> None:
    response = client.post("/api/jobs/ingest")

    assert response.status_code == 500
    body = response.json()
    assert body["message"] == "Failed to ingest job data."
    assert "CSV" in body["error"]


def test_failed_ingestion_leaves_jobs_table_empty(
    client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    repository = client.app.state.repository
    original_upsert = repository._upsert_job
    calls = {"count": 0}

    def flaky_upsert(record, now):
        calls["count"] += 1
        if calls["count"] == 3:
            raise sqlite3.OperationalError("disk I/O error")
        original_upsert(record, now)

    monkeypatch.setattr(repository, "_upsert_job", flaky_upsert)

    response = client.post("/api/jobs/ingest", json={"batches": [JOBS_CSV]})

    assert response.status_code == 500
    assert response.json()["error"] == "disk I/O error"
    monkeypatch.undo()
    assert client.get("/api/jobs").json() == []


def test_list_jobs_is_newest_first(seeded_client: TestClient) -> None:
    response = seeded_client.get("/api/jobs")

    assert response.status_code == 200
    assert [job["job_id"] for job in response.json()] == ["J4", "J3", "J2", "J1"]


def test_company_filter_is_case_insensitive(seeded_client: TestClient) -> None:
    response = seeded_client.get("/api/jobs", params={"company": "acme"})

    assert response.status_code == 200
    assert [job["job_id"] for job in response.json()] == ["J3", "J1"]


def test_search_spans_title_company_description_and_requirements(
    seeded_client: TestClient,
) -> None:
    by_title = seeded_client.get("/api/jobs", params={"search": "ENGINEER"}).json()
    by_requirements = seeded_client.get("/api/jobs", params={"search": "figma"}).json()
    by_company = seeded_client.get("/api/jobs", params={"search": "globex"}).json()

    assert {job["job_id"] for job in by_title} == {"J1", "J3"}
    assert [job["job_id"] for job in by_requirements] == ["J4"]
    assert [job["job_id"] for job in by_company] == ["J2"]


def test_filters_combine_with_and(seeded_client: TestClient) -> None:
    response = seeded_client.get(
        "/api/jobs",
        params={"location": "berlin", "jobType": "FULL-TIME"},
    )

    assert [job["job_id"] for job in response.json()] == ["J3"]


def test_blank_filters_are_ignored(seeded_client: TestClient) -> None:
    response = seeded_client.get("/api/jobs", params={"company": "", "search": "  "})

    assert len(response.json()) == 4


def test_get_job_by_id(seeded_client: TestClient) -> None:
    response = seeded_client.get("/api/jobs/J2")

    assert response.status_code == 200
    body = response.json()
    assert body["job_title"] == "Data Analyst"
    assert body["how_to_apply"] == "Refer to source URL for application instructions."
    assert body["created_at"]


def test_get_unknown_job_is_404(client: TestClient) -> None:
    response = client.get("/api/jobs/nope")

    assert response.status_code == 404
    assert response.json() == {"message": "Job not found.", "error": None}


def test_storage_errors_surface_driver_message(
    client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def locked(**_: object) -> list[object]:
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(client.app.state.repository, "list_jobs", locked)

    response = client.get("/api/jobs")

    assert response.status_code == 500
    assert response.json() == {"message": "Failed to retrieve jobs.", "error": "database is locked"}
