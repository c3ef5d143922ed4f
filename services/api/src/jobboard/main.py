from __future__ import annotations

import json
import logging
import os
import sqlite3
import tempfile
from collections.abc import Callable, Sequence
from contextlib import asynccontextmanager
from typing import Any, TypeVar

import uvicorn
from common.errors import ApiError, BadRequestError, NotFoundError, register_error_handlers
from common.observability import install_observability
from common.utils import split_env_list
from fastapi import Body, FastAPI, Query, Request
from fastapi.concurrency import run_in_threadpool

from jobboard.ingestion import IngestionError, ingest_jobs
from jobboard.models import (
    CVContentResponse,
    CVUploadRequest,
    CVUploadResponse,
    IngestRequest,
    IngestResult,
    Job,
    MessageResponse,
    SaveJobRequest,
    User,
    UserSummary,
    UserSyncRequest,
    UserSyncResponse,
    UserUpdateRequest,
)
from jobboard.repository import JobBoardRepository

DEFAULT_DB_PATH = os.path.join(tempfile.gettempdir(), "job-board", "jobboard.sqlite3")
LOGGER = logging.getLogger("job_board.api")

T = TypeVar("T")


def normalize_id(value: str | None) -> str:
    """User and job ids are stored trimmed; every route looks them up the same way."""
    return (value or "").strip()


async def call_repository(
    failure_message: str,
    func: Callable[..., T],
    *args: Any,
    **kwargs: Any,
) -> T:
    """Run a blocking repository call off the event loop.

    Storage failures surface as a 500 carrying ``failure_message`` and the
    driver error text.
    """
    try:
        return await run_in_threadpool(func, *args, **kwargs)
    except sqlite3.Error as exc:
        LOGGER.error(
            json.dumps(
                {"event": "storage_error", "message": failure_message, "error": str(exc)}
            )
        )
        raise ApiError(failure_message, error=str(exc)) from exc


def create_app(
    *,
    database_path: str | None = None,
    csv_paths: Sequence[str] | None = None,
) -> FastAPI:
    resolved_path = database_path or os.getenv("JOBBOARD_DB_PATH", DEFAULT_DB_PATH)
    resolved_csv_paths = (
        list(csv_paths) if csv_paths is not None else split_env_list(os.getenv("JOBBOARD_CSV_PATHS"))
    )
    repository = JobBoardRepository(database_path=resolved_path)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await run_in_threadpool(repository.connect)
        app.state.repository = repository
        app.state.csv_paths = resolved_csv_paths
        try:
            yield
        finally:
            await run_in_threadpool(repository.close)

    app = FastAPI(title="Job Board API", version="1.0.0", lifespan=lifespan)
    register_error_handlers(app)
    install_observability(app, LOGGER)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "jobboard"}

    # Jobs

    @app.get("/api/jobs", response_model=list[Job])
    async def list_jobs(
        request: Request,
        search: str | None = Query(default=None),
        company: str | None = Query(default=None),
        location: str | None = Query(default=None),
        job_type: str | None = Query(default=None, alias="jobType"),
    ) -> list[Job]:
        return await call_repository(
            "Failed to retrieve jobs.",
            request.app.state.repository.list_jobs,
            search=search,
            company=company,
            location=location,
            job_type=job_type,
        )

    @app.post("/api/jobs/ingest", response_model=IngestResult)
    async def trigger_ingestion(
        request: Request,
        payload: IngestRequest | None = Body(default=None),
    ) -> IngestResult:
        batches = payload.batches if payload else None
        try:
            return await run_in_threadpool(
                ingest_jobs,
                request.app.state.repository,
                batches=batches,
                csv_paths=request.app.state.csv_paths,
            )
        except (IngestionError, sqlite3.Error, ValueError) as exc:
            LOGGER.error(json.dumps({"event": "ingestion_failed", "error": str(exc)}))
            raise ApiError("Failed to ingest job data.", error=str(exc)) from exc

    @app.get("/api/jobs/{job_id}", response_model=Job)
    async def get_job(job_id: str, request: Request) -> Job:
        job = await call_repository(
            "Failed to retrieve job details.",
            request.app.state.repository.get_job,
            normalize_id(job_id),
        )
        if job is None:
            raise NotFoundError("Job not found.")
        return job

    # Users

    @app.post("/api/users/sync", response_model=UserSyncResponse)
    async def sync_user(payload: UserSyncRequest, request: Request) -> UserSyncResponse:
        user_id = normalize_id(payload.user_id)
        if not user_id:
            raise BadRequestError("User ID is required.")
        user = await call_repository(
            "Failed to sync user.",
            request.app.state.repository.find_or_create_user,
            normalize_id(user_id),
            str(payload.email) if payload.email else None,
        )
        return UserSyncResponse(
            message="User synced successfully.",
            user=UserSummary(id=user.id, email=user.email),
        )

    @app.get("/api/users/{user_id}", response_model=User)
    async def get_user(user_id: str, request: Request) -> User:
        user = await call_repository(
            "Failed to retrieve user profile.",
            request.app.state.repository.get_user,
            normalize_id(user_id),
        )
        if user is None:
            raise NotFoundError("User not found.")
        return user

    @app.patch("/api/users/{user_id}", response_model=User)
    async def update_user(user_id: str, payload: UserUpdateRequest, request: Request) -> User:
        updates = payload.updates()
        if not updates:
            raise BadRequestError("No updatable fields were provided.")
        user = await call_repository(
            "Failed to update user.",
            request.app.state.repository.update_user,
            normalize_id(user_id),
            {key: str(value) if value is not None else None for key, value in updates.items()},
        )
        if user is None:
            raise NotFoundError("User not found.")
        return user

    # Saved jobs

    @app.post("/api/users/{user_id}/saved-jobs", status_code=201, response_model=MessageResponse)
    async def add_saved_job(
        user_id: str,
        payload: SaveJobRequest,
        request: Request,
    ) -> MessageResponse:
        user_id = normalize_id(user_id)
        job_id = normalize_id(payload.job_id)
        if not user_id or not job_id:
            raise BadRequestError("User ID and Job ID are required.")
        try:
            await call_repository(
                "Failed to save job.",
                request.app.state.repository.add_saved_job,
                user_id,
                job_id,
            )
        except KeyError as exc:
            raise NotFoundError("Job not found.") from exc
        return MessageResponse(message="Job saved successfully.")

    @app.delete("/api/users/{user_id}/saved-jobs/{job_id}", response_model=MessageResponse)
    async def remove_saved_job(user_id: str, job_id: str, request: Request) -> MessageResponse:
        await call_repository(
            "Failed to unsave job.",
            request.app.state.repository.remove_saved_job,
            normalize_id(user_id),
            normalize_id(job_id),
        )
        return MessageResponse(message="Job unsaved successfully.")

    @app.get("/api/users/{user_id}/saved-jobs", response_model=list[Job])
    async def list_saved_jobs(user_id: str, request: Request) -> list[Job]:
        return await call_repository(
            "Failed to retrieve saved jobs.",
            request.app.state.repository.list_saved_jobs,
            normalize_id(user_id),
        )

    # CVs

    @app.post("/api/users/{user_id}/cv", response_model=CVUploadResponse)
    async def upload_cv(user_id: str, payload: CVUploadRequest, request: Request) -> CVUploadResponse:
        if not normalize_id(user_id) or not payload.cv_content or not payload.cv_content.strip():
            raise BadRequestError("User ID and CV content are required.")
        cv = await call_repository(
            "Failed to upload CV.",
            request.app.state.repository.upsert_cv,
            normalize_id(user_id),
            payload.cv_content,
            file_name=payload.file_name,
            file_type=payload.file_type,
        )
        return CVUploadResponse(message="CV uploaded successfully.", cv=cv)

    @app.get("/api/users/{user_id}/cv", response_model=CVContentResponse)
    async def get_cv(user_id: str, request: Request) -> CVContentResponse:
        cv = await call_repository(
            "Failed to retrieve CV.",
            request.app.state.repository.get_cv,
            normalize_id(user_id),
        )
        if cv is None:
            raise NotFoundError("CV not found for this user.")
        return CVContentResponse(cv_content=cv.cv_content)

    return app


app = create_app()


def run() -> None:
    logging.basicConfig(level=logging.INFO)
    uvicorn.run(
        "jobboard.main:app",
        host=os.getenv("JOBBOARD_HOST", "0.0.0.0"),
        port=int(os.getenv("JOBBOARD_PORT", "5000")),
    )
