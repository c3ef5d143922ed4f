"""CSV ingestion for the jobs table.

Job exports come from several scrapers whose column names disagree
(``JobTitle`` vs ``job_title`` vs ``Job Title``). Each canonical field is
resolved through an ordered alias list, blank values fall back to a fixed
placeholder, rows without a usable title are dropped and the remaining rows
are deduplicated by job identifier (the last occurrence wins) before they are
written.

Ingestion is a one-shot bootstrap: it only writes when the jobs table is
empty.
"""

from __future__ import annotations

import csv
import io
import json
import logging
import uuid
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path
from typing import TYPE_CHECKING

from jobboard.models import IngestResult, JobRecord

if TYPE_CHECKING:
    from jobboard.repository import JobBoardRepository

LOGGER = logging.getLogger("job_board.api.ingestion")

NO_TITLE = "No Title"
GENERATED_ID_PREFIX = "generated-"
ALREADY_INGESTED_MESSAGE = "Jobs already ingested."

FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "job_id": ("JobID", "job_id", "Job ID", "id"),
    "job_title": ("JobTitle", "job_title", "Job Title", "title"),
    "company": ("Company", "company_name", "Company Name"),
    "location": ("Location", "location_name"),
    "job_type": ("JobType", "job_type", "Type"),
    "description": ("Description", "description_text", "Job Description"),
    "requirements": ("Requirements", "job_requirements"),
    "how_to_apply": ("HowToApply", "how_to_apply_instructions"),
    "source_url": ("SourceURL", "source_url", "URL"),
    "closing_date": ("ClosingDate", "closing_date", "Close Date"),
    "posted_date": ("PostedDate", "posted_date", "Date Posted"),
    "salary": ("Salary", "salary_range"),
    "experience_level": ("ExperienceLevel", "experience_level"),
    "industry": ("Industry", "industry_type"),
}

FIELD_DEFAULTS: dict[str, str] = {
    "job_title": NO_TITLE,
    "company": "Unknown Company",
    "location": "Unknown Location",
    "job_type": "Full-time",
    "description": "No description provided.",
    "requirements": "No requirements listed.",
    "how_to_apply": "Refer to source URL for application instructions.",
    "source_url": "#",
    "closing_date": "",
    "posted_date": "",
    "salary": "",
    "experience_level": "",
    "industry": "",
}


class IngestionError(RuntimeError):
    pass


def read_csv_file(path: str | Path) -> str:
    csv_path = Path(path)
    try:
        return csv_path.read_text(encoding="utf-8-sig")
    except OSError as exc:
        raise IngestionError(f"Failed to read CSV file {csv_path}: {exc}") from exc


def _is_blank_row(row: Mapping[str | None, object]) -> bool:
    return all(not value.strip() for value in row.values() if isinstance(value, str))


def parse_batch(text: str) -> list[dict[str | None, str | None]]:
    try:
        reader = csv.DictReader(io.StringIO(text))
        return [row for row in reader if not _is_blank_row(row)]
    except csv.Error as exc:
        raise IngestionError(f"Failed to parse CSV batch: {exc}") from exc


def resolve_field(row: Mapping[str | None, object], aliases: Sequence[str]) -> str:
    for alias in aliases:
        wanted = alias.lower()
        header = next(
            (key for key in row if isinstance(key, str) and key.lower() == wanted),
            None,
        )
        if header is None:
            continue
        value = row[header]
        if value is not None:
            return str(value).strip()
    return ""


def generate_job_id() -> str:
    return f"{GENERATED_ID_PREFIX}{uuid.uuid4()}"


def normalize_row(row: Mapping[str | None, object]) -> JobRecord:
    values = {
        field: resolve_field(row, aliases) or FIELD_DEFAULTS.get(field, "")
        for field, aliases in FIELD_ALIASES.items()
    }
    values["job_id"] = values["job_id"] or generate_job_id()
    return JobRecord(**values)


def has_usable_title(record: JobRecord) -> bool:
    title = record.job_title.strip()
    return bool(title) and title != NO_TITLE


def prepare_records(batches: Iterable[str]) -> list[JobRecord]:
    unique: dict[str, JobRecord] = {}
    total_rows = 0
    for batch in batches:
        rows = parse_batch(batch)
        total_rows += len(rows)
        for row in rows:
            record = normalize_row(row)
            if not has_usable_title(record):
                continue
            unique[record.job_id] = record

    LOGGER.info(
        json.dumps(
            {
                "event": "ingestion_prepared",
                "rows": total_rows,
                "unique_jobs": len(unique),
            }
        )
    )
    return list(unique.values())


def ingest_jobs(
    repository: JobBoardRepository,
    *,
    batches: Sequence[str] | None = None,
    csv_paths: Sequence[str] = (),
) -> IngestResult:
    """Load CSV batches into an empty jobs table.

    Inline ``batches`` take precedence over ``csv_paths``. When the table
    already holds jobs nothing is read and the result is flagged as skipped.
    """
    if repository.count_jobs() > 0:
        LOGGER.info(json.dumps({"event": "ingestion_skipped", "reason": "jobs_present"}))
        return IngestResult(message=ALREADY_INGESTED_MESSAGE, ingested=0, skipped=True)

    texts = list(batches) if batches else [read_csv_file(path) for path in csv_paths]
    if not texts:
        raise IngestionError("No CSV batches were supplied and no CSV paths are configured.")

    records = prepare_records(texts)
    ingested = repository.insert_jobs_if_empty(records)
    if ingested is None:
        LOGGER.info(json.dumps({"event": "ingestion_skipped", "reason": "jobs_present"}))
        return IngestResult(message=ALREADY_INGESTED_MESSAGE, ingested=0, skipped=True)

    LOGGER.info(json.dumps({"event": "ingestion_complete", "ingested": ingested}))
    return IngestResult(
        message=f"Successfully ingested {ingested} jobs.",
        ingested=ingested,
        skipped=False,
    )
