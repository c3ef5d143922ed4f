from __future__ import annotations

import sqlite3
import threading
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from common.utils import now_utc_iso

from jobboard.models import CV, Job, JobRecord, User

JOB_COLUMNS = (
    "job_id",
    "job_title",
    "company",
    "location",
    "job_type",
    "description",
    "requirements",
    "how_to_apply",
    "source_url",
    "closing_date",
    "posted_date",
    "salary",
    "experience_level",
    "industry",
)
USER_UPDATABLE_COLUMNS = ("email",)

SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
    job_id TEXT PRIMARY KEY,
    job_title TEXT NOT NULL,
    company TEXT NOT NULL,
    location TEXT NOT NULL,
    job_type TEXT NOT NULL,
    description TEXT NOT NULL,
    requirements TEXT NOT NULL,
    how_to_apply TEXT NOT NULL,
    source_url TEXT NOT NULL,
    closing_date TEXT NOT NULL DEFAULT '',
    posted_date TEXT NOT NULL DEFAULT '',
    salary TEXT NOT NULL DEFAULT '',
    experience_level TEXT NOT NULL DEFAULT '',
    industry TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS saved_jobs (
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    job_id TEXT NOT NULL REFERENCES jobs(job_id) ON DELETE CASCADE,
    saved_at TEXT NOT NULL,
    PRIMARY KEY (user_id, job_id)
);

CREATE TABLE IF NOT EXISTS user_cvs (
    user_id TEXT PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
    cv_content TEXT NOT NULL,
    file_name TEXT,
    file_type TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_jobs_created_at ON jobs (created_at);
CREATE INDEX IF NOT EXISTS idx_saved_jobs_user ON saved_jobs (user_id, saved_at);
"""


class JobBoardRepository:
    def __init__(self, database_path: str) -> None:
        self.database_path = Path(database_path)
        self._connection: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    @property
    def connection(self) -> sqlite3.Connection:
        if self._connection is None:
            raise RuntimeError("Database connection is not initialized")
        return self._connection

    def connect(self) -> None:
        with self._lock:
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = sqlite3.connect(self.database_path, check_same_thread=False)
            self._connection.row_factory = sqlite3.Row
            self._connection.execute("PRAGMA foreign_keys=ON")
            self._connection.executescript(SCHEMA)
            self._connection.commit()

    def close(self) -> None:
        with self._lock:
            if self._connection is None:
                return
            self._connection.close()
            self._connection = None

    # Jobs

    def count_jobs(self) -> int:
        with self._lock:
            row = self.connection.execute("SELECT COUNT(1) AS c FROM jobs").fetchone()
            return int(row["c"])

    def insert_jobs_if_empty(self, records: Sequence[JobRecord]) -> int | None:
        """Upsert ``records`` in one write transaction if the jobs table is empty.

        Returns the number of rows written, or ``None`` when jobs already exist.
        ``BEGIN IMMEDIATE`` takes the database write lock before the emptiness
        check so a second ingester, in this process or another one, waits and
        then sees the rows written by the first.
        """
        with self._lock:
            connection = self.connection
            if connection.in_transaction:
                connection.commit()
            connection.execute("BEGIN IMMEDIATE")
            try:
                existing = int(connection.execute("SELECT COUNT(1) AS c FROM jobs").fetchone()["c"])
                if existing > 0:
                    connection.rollback()
                    return None
                now = now_utc_iso()
                for record in records:
                    self._upsert_job(record, now)
            except BaseException:
                connection.rollback()
                raise
            connection.commit()
            return len(records)

    def _upsert_job(self, record: JobRecord, now: str) -> None:
        values = record.model_dump()
        self.connection.execute(
            """
            INSERT INTO jobs (
                job_id,
                job_title,
                company,
                location,
                job_type,
                description,
                requirements,
                how_to_apply,
                source_url,
                closing_date,
                posted_date,
                salary,
                experience_level,
                industry,
                created_at,
                updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(job_id) DO UPDATE SET
                job_title = excluded.job_title,
                company = excluded.company,
                location = excluded.location,
                job_type = excluded.job_type,
                description = excluded.description,
                requirements = excluded.requirements,
                how_to_apply = excluded.how_to_apply,
                source_url = excluded.source_url,
                closing_date = excluded.closing_date,
                posted_date = excluded.posted_date,
                salary = excluded.salary,
                experience_level = excluded.experience_level,
                industry = excluded.industry,
                updated_at = excluded.updated_at
            """,
            (*(values[column] for column in JOB_COLUMNS), now, now),
        )

    def list_jobs(
        self,
        *,
        search: str | None = None,
        company: str | None = None,
        location: str | None = None,
        job_type: str | None = None,
    ) -> list[Job]:
        with self._lock:
            query = "SELECT * FROM jobs"
            filters: list[str] = []
            params: list[Any] = []
            if search and search.strip():
                filters.append(
                    "(LOWER(job_title) LIKE ? OR LOWER(company) LIKE ?"
                    " OR LOWER(description) LIKE ? OR LOWER(requirements) LIKE ?)"
                )
                term = f"%{search.strip().lower()}%"
                params.extend([term, term, term, term])
            if company and company.strip():
                filters.append("LOWER(company) = LOWER(?)")
                params.append(company.strip())
            if location and location.strip():
                filters.append("LOWER(location) = LOWER(?)")
                params.append(location.strip())
            if job_type and job_type.strip():
                filters.append("LOWER(job_type) = LOWER(?)")
                params.append(job_type.strip())
            if filters:
                query += " WHERE " + " AND ".join(filters)
            query += " ORDER BY created_at DESC, rowid DESC"
            cursor = self.connection.execute(query, tuple(params))
            return [Job(**dict(row)) for row in cursor.fetchall()]

    def get_job(self, job_id: str) -> Job | None:
        with self._lock:
            row = self.connection.execute(
                "SELECT * FROM jobs WHERE job_id = ?",
                (job_id,),
            ).fetchone()
            if row is None:
                return None
            return Job(**dict(row))

    def get_job_or_raise(self, job_id: str) -> Job:
        job = self.get_job(job_id)
        if job is None:
            raise KeyError(f"Unknown job_id: {job_id}")
        return job

    # Users

    def find_or_create_user(self, user_id: str, email: str | None = None) -> User:
        with self._lock:
            existing = self.get_user(user_id)
            if existing is not None:
                return existing
            self._ensure_user(user_id, email)
            self.connection.commit()
            return self.get_user_or_raise(user_id)

    def get_user(self, user_id: str) -> User | None:
        with self._lock:
            row = self.connection.execute(
                """
                SELECT id, email, created_at, updated_at
                FROM users
                WHERE id = ?
                """,
                (user_id,),
            ).fetchone()
            if row is None:
                return None
            return User(**dict(row))

    def get_user_or_raise(self, user_id: str) -> User:
        user = self.get_user(user_id)
        if user is None:
            raise KeyError(f"Unknown user_id: {user_id}")
        return user

    def update_user(self, user_id: str, updates: Mapping[str, Any]) -> User | None:
        unknown = sorted(set(updates) - set(USER_UPDATABLE_COLUMNS))
        if unknown:
            raise ValueError(f"Unsupported user fields: {', '.join(unknown)}")
        if not updates:
            return None

        with self._lock:
            # Column names come from USER_UPDATABLE_COLUMNS only.
            set_clauses = [f"{column} = ?" for column in updates]
            params: list[Any] = list(updates.values())
            params.extend([now_utc_iso(), user_id])
            cursor = self.connection.execute(
                f"UPDATE users SET {', '.join(set_clauses)}, updated_at = ? WHERE id = ?",
                tuple(params),
            )
            self.connection.commit()
            if cursor.rowcount == 0:
                return None
            return self.get_user_or_raise(user_id)

    def _ensure_user(self, user_id: str, email: str | None = None) -> None:
        now = now_utc_iso()
        self.connection.execute(
            """
            INSERT INTO users (id, email, created_at, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO NOTHING
            """,
            (user_id, email, now, now),
        )

    # Saved jobs

    def add_saved_job(self, user_id: str, job_id: str) -> bool:
        """Save ``job_id`` for ``user_id``; returns False when it was already saved."""
        with self._lock:
            self.get_job_or_raise(job_id)
            self._ensure_user(user_id)
            cursor = self.connection.execute(
                """
                INSERT INTO saved_jobs (user_id, job_id, saved_at)
                VALUES (?, ?, ?)
                ON CONFLICT(user_id, job_id) DO NOTHING
                """,
                (user_id, job_id, now_utc_iso()),
            )
            self.connection.commit()
            return cursor.rowcount > 0

    def remove_saved_job(self, user_id: str, job_id: str) -> bool:
        with self._lock:
            cursor = self.connection.execute(
                "DELETE FROM saved_jobs WHERE user_id = ? AND job_id = ?",
                (user_id, job_id),
            )
            self.connection.commit()
            return cursor.rowcount > 0

    def list_saved_jobs(self, user_id: str) -> list[Job]:
        with self._lock:
            cursor = self.connection.execute(
                """
                SELECT j.*
                FROM jobs j
                JOIN saved_jobs sj ON j.job_id = sj.job_id
                WHERE sj.user_id = ?
                ORDER BY sj.saved_at DESC, sj.rowid DESC
                """,
                (user_id,),
            )
            return [Job(**dict(row)) for row in cursor.fetchall()]

    # CVs

    def upsert_cv(
        self,
        user_id: str,
        cv_content: str,
        *,
        file_name: str | None = None,
        file_type: str | None = None,
    ) -> CV:
        with self._lock:
            now = now_utc_iso()
            self._ensure_user(user_id)
            self.connection.execute(
                """
                INSERT INTO user_cvs (
                    user_id,
                    cv_content,
                    file_name,
                    file_type,
                    created_at,
                    updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    cv_content = excluded.cv_content,
                    file_name = excluded.file_name,
                    file_type = excluded.file_type,
                    updated_at = excluded.updated_at
                """,
                (user_id, cv_content, file_name, file_type, now, now),
            )
            self.connection.commit()
            cv = self.get_cv(user_id)
            if cv is None:
                raise KeyError(f"Unknown user_id: {user_id}")
            return cv

    def get_cv(self, user_id: str) -> CV | None:
        with self._lock:
            row = self.connection.execute(
                """
                SELECT
                    user_id,
                    cv_content,
                    file_name,
                    file_type,
                    created_at,
                    updated_at
                FROM user_cvs
                WHERE user_id = ?
                """,
                (user_id,),
            ).fetchone()
            if row is None:
                return None
            return CV(**dict(row))
