"""Job recommendations and skill gaps from a generative language model.

The whole job corpus is sent along with the CV in a single prompt and the
model is asked for a JSON object with two string arrays. No retries: a failed
or malformed generation is reported to the caller as a ``GenerationError``.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any

import httpx
from common.utils import now_utc_iso
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from portal.config import PortalSettings

JOB_SEPARATOR = "\n\n---\n\n"

RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "recommendations": {"type": "ARRAY", "items": {"type": "STRING"}},
        "skillGaps": {"type": "ARRAY", "items": {"type": "STRING"}},
    },
    "propertyOrdering": ["recommendations", "skillGaps"],
}


class GenerationError(RuntimeError):
    pass


class CareerAdvice(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    recommendations: list[str] = Field(default_factory=list)
    skill_gaps: list[str] = Field(default_factory=list, alias="skillGaps")
    generated_at: str | None = None


def describe_job(job: Mapping[str, Any]) -> str:
    return "\n".join(
        [
            f"Title: {job.get('job_title', '')}",
            f"Company: {job.get('company', '')}",
            f"Description: {job.get('description', '')}",
            f"Requirements: {job.get('requirements', '')}",
        ]
    )


def build_prompt(cv_content: str, jobs: Sequence[Mapping[str, Any]]) -> str:
    job_descriptions = JOB_SEPARATOR.join(describe_job(job) for job in jobs)
    return (
        "Given the following user CV and a list of job descriptions, please perform two tasks:\n"
        "1. Identify 5-10 job titles from the provided job descriptions that are most relevant "
        "to the user's CV. List them clearly.\n"
        "2. Identify 3-5 key skills mentioned in the job descriptions that the user's CV "
        "appears to lack, but would be beneficial for the recommended jobs. List these skills.\n\n"
        f"User CV:\n{cv_content}\n\n"
        f"Job Descriptions:\n{job_descriptions}\n\n"
        'Please format your response as a JSON object with two arrays: "recommendations" '
        '(for job titles) and "skillGaps" (for skills).'
    )


def build_request_payload(prompt: str) -> dict[str, Any]:
    return {
        "contents": [{"role": "user", "parts": [{"text": prompt}]}],
        "generationConfig": {
            "responseMimeType": "application/json",
            "responseSchema": RESPONSE_SCHEMA,
        },
    }


def parse_generation_response(body: Any) -> CareerAdvice:
    try:
        text = body["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError) as exc:
        raise GenerationError("Unexpected generation response structure.") from exc

    try:
        parsed = json.loads(text)
    except (TypeError, ValueError) as exc:
        raise GenerationError(f"Generation response is not valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise GenerationError("Generation response must be a JSON object.")

    try:
        advice = CareerAdvice.model_validate(
            {
                "recommendations": parsed.get("recommendations") or [],
                "skillGaps": parsed.get("skillGaps") or [],
            }
        )
    except ValidationError as exc:
        raise GenerationError(f"Generation response has an invalid shape: {exc}") from exc
    advice.generated_at = now_utc_iso()
    return advice


async def generate_career_advice(
    settings: PortalSettings,
    cv_content: str,
    jobs: Sequence[Mapping[str, Any]],
) -> CareerAdvice:
    if not settings.gemini_api_key:
        raise GenerationError("GEMINI_API_KEY is not configured.")

    payload = build_request_payload(build_prompt(cv_content, jobs))
    try:
        async with httpx.AsyncClient(timeout=settings.upstream_timeout) as client:
            response = await client.post(
                settings.generate_content_url,
                params={"key": settings.gemini_api_key},
                json=payload,
            )
    except httpx.RequestError as exc:
        raise GenerationError(f"Generation API is unavailable: {exc}") from exc

    try:
        body = response.json()
    except ValueError as exc:
        raise GenerationError("Generation API returned a non-JSON response.") from exc

    if response.status_code >= 400:
        error = body.get("error") if isinstance(body, dict) else None
        detail = error.get("message") if isinstance(error, dict) else error
        raise GenerationError(
            f"Generation API returned {response.status_code}: {detail or 'request failed'}"
        )
    return parse_generation_response(body)
