from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from jobboard.main import create_app

pytestmark = pytest.mark.integration

JOBS_CSV = (
    "JobID,JobTitle,Company\n"
    "J1,Backend Engineer,Acme\n"
    "J2,Data Analyst,Globex\n"
    "J3,Platform Engineer,Initech\n"
)


@pytest.fixture
def client(tmp_path: Path):
    db_path = tmp_path / "jobboard.sqlite3"
    app = create_app(database_path=str(db_path), csv_paths=[])
    with TestClient(app) as test_client:
        test_client.post("/api/jobs/ingest", json={"batches": [JOBS_CSV]})
        yield test_client


def test_sync_creates_user_once(client: TestClient) -> None:
    first = client.post("/api/users/sync", json={"userId": "u1", "email": "one@example.com"})
    second = client.post("/api/users/sync", json={"userId": "u1", "email": "other@example.com"})

    assert first.status_code == 200
    assert first.json() == {
        "message": "User synced successfully.",
        "user": {"id": "u1", "email": "one@example.com"},
    }
    assert second.json()["user"]["email"] == "one@example.com"

    profile = client.get("/api/users/u1")
    assert profile.status_code == 200
    assert profile.json()["id"] == "u1"
    assert profile.json()["created_at"]


def test_sync_without_email(client: TestClient) -> None:
    response = client.post("/api/users/sync", json={"userId": "anon-1"})

    assert response.status_code == 200
    assert response.json()["user"] == {"id": "anon-1", "email": None}


def test_sync_requires_user_id(client: TestClient) -> None:
    response = client.post("/api/users/sync", json={"email": "one@example.com"})

    assert response.status_code == 400
    assert response.json()["message"] == "User ID is required."


def test_sync_rejects_malformed_email(client: TestClient) -> None:
    response = client.post("/api/users/sync", json={"userId": "u1", "email": "not-an-email"})

    assert response.status_code == 400
    body = response.json()
    assert body["message"] == "Invalid request."
    assert body["error"].startswith("email")


def test_unknown_user_is_404(client: TestClient) -> None:
    response = client.get("/api/users/ghost")

    assert response.status_code == 404
    assert response.json()["message"] == "User not found."


def test_update_user_email(client: TestClient) -> None:
    client.post("/api/users/sync", json={"userId": "u1"})

    response = client.patch("/api/users/u1", json={"email": "new@example.com"})

    assert response.status_code == 200
    assert response.json()["email"] == "new@example.com"
    assert client.get("/api/users/u1").json()["email"] == "new@example.com"


def test_update_user_validation_and_not_found(client: TestClient) -> None:
    client.post("/api/users/sync", json={"userId": "u1"})

    empty = client.patch("/api/users/u1", json={})
    unknown_field = client.patch("/api/users/u1", json={"id": "hijack"})
    missing_user = client.patch("/api/users/ghost", json={"email": "ghost@example.com"})

    assert empty.status_code == 400
    assert empty.json()["message"] == "No updatable fields were provided."
    assert unknown_field.status_code == 400
    assert missing_user.status_code == 404


def test_saving_a_job_twice_keeps_one_entry(client: TestClient) -> None:
    first = client.post("/api/users/u1/saved-jobs", json={"jobId": "J1"})
    second = client.post("/api/users/u1/saved-jobs", json={"jobId": "J1"})

    assert first.status_code == 201
    assert first.json() == {"message": "Job saved successfully."}
    assert second.status_code == 201

    saved = client.get("/api/users/u1/saved-jobs")
    assert saved.status_code == 200
    assert [job["job_id"] for job in saved.json()] == ["J1"]


def test_saved_jobs_are_listed_newest_first(client: TestClient) -> None:
    for job_id in ("J2", "J1", "J3"):
        client.post("/api/users/u1/saved-jobs", json={"jobId": job_id})

    saved = client.get("/api/users/u1/saved-jobs").json()

    assert [job["job_id"] for job in saved] == ["J3", "J1", "J2"]
    assert saved[0]["job_title"] == "Platform Engineer"


def test_saved_jobs_are_scoped_per_user(client: TestClient) -> None:
    client.post("/api/users/u1/saved-jobs", json={"jobId": "J1"})
    client.post("/api/users/u2/saved-jobs", json={"jobId": "J2"})

    assert [job["job_id"] for job in client.get("/api/users/u2/saved-jobs").json()] == ["J2"]
    assert client.get("/api/users/u3/saved-jobs").json() == []


def test_save_job_validation(client: TestClient) -> None:
    missing_job_id = client.post("/api/users/u1/saved-jobs", json={})
    unknown_job = client.post("/api/users/u1/saved-jobs", json={"jobId": "nope"})

    assert missing_job_id.status_code == 400
    assert missing_job_id.json()["message"] == "User ID and Job ID are required."
    assert unknown_job.status_code == 404
    assert unknown_job.json()["message"] == "Job not found."


def test_removing_saved_jobs(client: TestClient) -> None:
    client.post("/api/users/u1/saved-jobs", json={"jobId": "J1"})

    removed = client.delete("/api/users/u1/saved-jobs/J1")
    removed_again = client.delete("/api/users/u1/saved-jobs/J1")
    never_saved = client.delete("/api/users/nobody/saved-jobs/J9")

    assert removed.status_code == 200
    assert removed.json() == {"message": "Job unsaved successfully."}
    assert removed_again.status_code == 200
    assert never_saved.status_code == 200
    assert client.get("/api/users/u1/saved-jobs").json() == []


def test_cv_upload_replaces_previous_content(client: TestClient) -> None:
    first = client.post("/api/users/u1/cv", json={"cvContent": "X"})
    second = client.post(
        "/api/users/u1/cv",
        json={"cvContent": "Y", "fileName": "cv.txt", "fileType": "text/plain"},
    )

    assert first.status_code == 200
    assert second.status_code == 200
    body = second.json()
    assert body["message"] == "CV uploaded successfully."
    assert body["cv"]["cv_content"] == "Y"
    assert body["cv"]["file_name"] == "cv.txt"

    fetched = client.get("/api/users/u1/cv")
    assert fetched.status_code == 200
    assert fetched.json() == {"cvContent": "Y"}


def test_cv_upload_creates_the_user_lazily(client: TestClient) -> None:
    client.post("/api/users/fresh/cv", json={"cvContent": "Python developer"})

    assert client.get("/api/users/fresh").status_code == 200


def test_cv_validation_and_not_found(client: TestClient) -> None:
    missing_content = client.post("/api/users/u1/cv", json={"cvContent": "   "})
    missing_cv = client.get("/api/users/u1/cv")

    assert missing_content.status_code == 400
    assert missing_content.json()["message"] == "User ID and CV content are required."
    assert missing_cv.status_code == 404
    assert missing_cv.json()["message"] == "CV not found for this user."


def test_user_ids_are_trimmed_on_every_route(client: TestClient) -> None:
    client.post("/api/users/sync", json={"userId": " u1 "})
    saved = client.post("/api/users/%20u1%20/saved-jobs", json={"jobId": " J1 "})
    uploaded = client.post("/api/users/%20u1%20/cv", json={"cvContent": "CV"})

    assert saved.status_code == 201
    assert uploaded.json()["cv"]["user_id"] == "u1"
    assert [job["job_id"] for job in client.get("/api/users/u1/saved-jobs").json()] == ["J1"]
    assert client.get("/api/users/%20u1%20").json()["id"] == "u1"
    assert client.get("/api/users/u1/cv").json() == {"cvContent": "CV"}

    removed = client.delete("/api/users/%20u1%20/saved-jobs/%20J1%20")
    assert removed.status_code == 200
    assert client.get("/api/users/u1/saved-jobs").json() == []
