from __future__ import annotations

import json
import logging
import os
from typing import Any
from urllib.parse import quote

import httpx
import uvicorn
from common.errors import ApiError, BadRequestError, register_error_handlers
from common.observability import install_observability
from common.utils import now_utc_iso
from fastapi import FastAPI, Query, Request
from fastapi.responses import HTMLResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from portal.advisor import CareerAdvice, GenerationError, generate_career_advice
from portal.config import PortalSettings

LOGGER = logging.getLogger("job_board.portal")


class UISyncRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., min_length=1, max_length=128, alias="userId")
    email: EmailStr | None = None


class UISaveJobRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(..., min_length=1, alias="jobId")


class UICVUploadRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    cv_content: str = Field(..., min_length=1, alias="cvContent")
    file_name: str | None = Field(default=None, alias="fileName")
    file_type: str | None = Field(default=None, alias="fileType")


def jobboard_path(*segments: str) -> str:
    """Join path segments, percent-encoding each so ids cannot alter the upstream route."""
    return "/" + "/".join(quote(segment, safe="") for segment in segments)


def build_gateway_response(response: httpx.Response, payload: Any) -> dict[str, Any]:
    return {
        "gateway_generated_at": now_utc_iso(),
        "upstream_request_id": response.headers.get("x-request-id"),
        "jobboard_response": payload,
    }


async def call_jobboard(
    settings: PortalSettings,
    method: str,
    path: str,
    *,
    payload: dict[str, Any] | None = None,
    params: dict[str, str] | None = None,
) -> tuple[httpx.Response, Any]:
    request_kwargs: dict[str, Any] = {}
    if payload is not None:
        request_kwargs["json"] = payload
    if params:
        request_kwargs["params"] = params

    try:
        async with httpx.AsyncClient(timeout=settings.upstream_timeout) as client:
            response = await client.request(
                method=method,
                url=f"{settings.jobboard_base_url}{path}",
                **request_kwargs,
            )
    except httpx.RequestError as exc:
        raise ApiError("Job board API is unavailable.", error=str(exc)) from exc

    try:
        response_payload = response.json()
    except ValueError:
        response_payload = {}

    if response.status_code >= 400:
        upstream = response_payload if isinstance(response_payload, dict) else {}
        message = upstream.get("message") or "Upstream job board request failed."
        if 400 <= response.status_code < 500:
            raise ApiError(message, error=upstream.get("error"), status_code=response.status_code)
        raise ApiError(message, error=upstream.get("error"))

    return response, response_payload


async def request_to_jobboard(
    settings: PortalSettings,
    method: str,
    path: str,
    *,
    payload: dict[str, Any] | None = None,
    params: dict[str, str] | None = None,
) -> dict[str, Any]:
    response, response_payload = await call_jobboard(
        settings,
        method,
        path,
        payload=payload,
        params=params,
    )
    return build_gateway_response(response, response_payload)


def create_app(*, settings: PortalSettings | None = None) -> FastAPI:
    resolved_settings = settings or PortalSettings.from_env()

    app = FastAPI(title="Job Board Portal", version="1.0.0")
    app.state.settings = resolved_settings
    register_error_handlers(app)
    install_observability(app, LOGGER)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "portal"}

    @app.get("/", response_class=HTMLResponse)
    async def index() -> str:
        return INDEX_HTML

    @app.get("/api/jobs")
    async def proxy_list_jobs(
        request: Request,
        search: str | None = Query(default=None),
        company: str | None = Query(default=None),
        location: str | None = Query(default=None),
        job_type: str | None = Query(default=None, alias="jobType"),
    ) -> dict[str, Any]:
        filters = {
            "search": search,
            "company": company,
            "location": location,
            "jobType": job_type,
        }
        params = {key: value.strip() for key, value in filters.items() if value and value.strip()}
        return await request_to_jobboard(request.app.state.settings, "GET", "/api/jobs", params=params)

    @app.get("/api/jobs/{job_id}")
    async def proxy_get_job(job_id: str, request: Request) -> dict[str, Any]:
        return await request_to_jobboard(
            request.app.state.settings,
            "GET",
            jobboard_path("api", "jobs", job_id),
        )

    @app.post("/api/users/sync")
    async def proxy_sync_user(payload: UISyncRequest, request: Request) -> dict[str, Any]:
        jobboard_payload = {
            "userId": payload.user_id,
            "email": str(payload.email) if payload.email else None,
        }
        return await request_to_jobboard(
            request.app.state.settings,
            "POST",
            "/api/users/sync",
            payload=jobboard_payload,
        )

    @app.get("/api/users/{user_id}/saved-jobs")
    async def proxy_list_saved_jobs(user_id: str, request: Request) -> dict[str, Any]:
        return await request_to_jobboard(
            request.app.state.settings,
            "GET",
            jobboard_path("api", "users", user_id, "saved-jobs"),
        )

    @app.post("/api/users/{user_id}/saved-jobs", status_code=201)
    async def proxy_save_job(
        user_id: str,
        payload: UISaveJobRequest,
        request: Request,
    ) -> dict[str, Any]:
        return await request_to_jobboard(
            request.app.state.settings,
            "POST",
            jobboard_path("api", "users", user_id, "saved-jobs"),
            payload={"jobId": payload.job_id},
        )

    @app.delete("/api/users/{user_id}/saved-jobs/{job_id}")
    async def proxy_unsave_job(user_id: str, job_id: str, request: Request) -> dict[str, Any]:
        return await request_to_jobboard(
            request.app.state.settings,
            "DELETE",
            jobboard_path("api", "users", user_id, "saved-jobs", job_id),
        )

    @app.get("/api/users/{user_id}/cv")
    async def proxy_get_cv(user_id: str, request: Request) -> dict[str, Any]:
        return await request_to_jobboard(
            request.app.state.settings,
            "GET",
            jobboard_path("api", "users", user_id, "cv"),
        )

    @app.post("/api/users/{user_id}/cv")
    async def proxy_upload_cv(
        user_id: str,
        payload: UICVUploadRequest,
        request: Request,
    ) -> dict[str, Any]:
        return await request_to_jobboard(
            request.app.state.settings,
            "POST",
            jobboard_path("api", "users", user_id, "cv"),
            payload=payload.model_dump(by_alias=True),
        )

    @app.post("/api/users/{user_id}/recommendations", response_model=CareerAdvice)
    async def generate_recommendations(user_id: str, request: Request) -> CareerAdvice:
        settings: PortalSettings = request.app.state.settings
        try:
            _, cv_payload = await call_jobboard(
                settings,
                "GET",
                jobboard_path("api", "users", user_id, "cv"),
            )
        except ApiError as exc:
            if exc.status_code == 404:
                raise BadRequestError(
                    "Please upload your CV to generate recommendations."
                ) from exc
            raise

        _, jobs = await call_jobboard(settings, "GET", "/api/jobs")
        if not jobs:
            raise BadRequestError("No job data is loaded yet, so recommendations cannot be generated.")

        try:
            advice = await generate_career_advice(settings, cv_payload.get("cvContent", ""), jobs)
        except GenerationError as exc:
            LOGGER.error(
                json.dumps(
                    {"event": "recommendations_failed", "user_id": user_id, "error": str(exc)}
                )
            )
            raise ApiError("Failed to generate AI recommendations.", error=str(exc)) from exc

        LOGGER.info(
            json.dumps(
                {
                    "event": "recommendations_generated",
                    "user_id": user_id,
                    "jobs_considered": len(jobs),
                    "recommendations": len(advice.recommendations),
                    "skill_gaps": len(advice.skill_gaps),
                }
            )
        )
        return advice

    return app


INDEX_HTML = """
<!doctype html>
<html lang="en">
  <head>
    <meta charset="UTF-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1.0" />
    <title>Job Board</title>
    <style>
      body { font-family: ui-sans-serif, system-ui, sans-serif; margin: 2rem; max-width: 1100px; }
      h2 { margin-top: 1.5rem; }
      nav button.active { font-weight: bold; }
      .grid { display: grid; grid-template-columns: 1fr 1fr; gap: 1rem; }
      .panel { border: 1px solid #ddd; border-radius: 8px; padding: 1rem; }
      .job { border-bottom: 1px solid #eee; padding: 0.5rem 0; cursor: pointer; }
      .job small { color: #666; }
      textarea, input, select { width: 100%; margin: 0.35rem 0; padding: 0.55rem; box-sizing: border-box; }
      button { padding: 0.55rem 0.9rem; cursor: pointer; margin-right: 0.4rem; margin-top: 0.4rem; }
      pre { background: #f7f7f7; padding: 1rem; overflow-x: auto; white-space: pre-wrap; }
      #toast { position: fixed; top: 1rem; right: 1rem; padding: 0.75rem 1rem; border-radius: 6px;
               background: #333; color: #fff; display: none; max-width: 360px; }
      #toast.error { background: #b42318; }
      #toast button { margin-left: 0.75rem; }
      .hidden { display: none; }
      @media (max-width: 900px) { .grid { grid-template-columns: 1fr; } }
    </style>
  </head>
  <body>
    <div id="toast"><span id="toast_text"></span><button onclick="hideToast()">x</button></div>
    <h1>Job Board</h1>
    <label>User ID</label>
    <input id="user_id" />
    <label>Email (optional)</label>
    <input id="email" placeholder="you@example.com" />
    <button onclick="syncUser()">Sign In</button>

    <nav>
      <button id="tab_jobs" class="active" onclick="showPage('jobs')">Jobs</button>
      <button id="tab_dashboard" onclick="showPage('dashboard')">Dashboard</button>
    </nav>

    <section id="page_jobs">
      <div class="grid">
        <div class="panel">
          <h2>Find Jobs</h2>
          <input id="search" placeholder="Search title, company, description" />
          <select id="company" onchange="loadJobs()"><option value="">All companies</option></select>
          <select id="location" onchange="loadJobs()"><option value="">All locations</option></select>
          <select id="job_type" onchange="loadJobs()"><option value="">All job types</option></select>
          <button onclick="loadJobs()">Search</button>
          <div id="job_list"></div>
        </div>
        <div class="panel">
          <h2>Job Details</h2>
          <div id="job_detail"><p>Select a job to see its details.</p></div>
        </div>
      </div>
    </section>

    <section id="page_dashboard" class="hidden">
      <div class="grid">
        <div class="panel">
          <h2>Your CV</h2>
          <textarea id="cv" rows="10" placeholder="Paste your CV text"></textarea>
          <button onclick="saveCV()">Save CV</button>
          <h2>Saved Jobs</h2>
          <div id="saved_jobs"></div>
        </div>
        <div class="panel">
          <h2>AI-Powered Recommendations</h2>
          <button id="generate" onclick="generateRecommendations()">Generate Recommendations</button>
          <h3>Recommended Jobs</h3>
          <ul id="recommendations"></ul>
          <h3>Skill Gaps</h3>
          <ul id="skill_gaps"></ul>
        </div>
      </div>
    </section>

    <script>
      let toastTimer = null;

      function showToast(message, kind = 'info') {
        const toast = document.getElementById('toast');
        document.getElementById('toast_text').textContent = message;
        toast.className = kind;
        toast.style.display = 'block';
        clearTimeout(toastTimer);
        toastTimer = setTimeout(hideToast, 5000);
      }

      function hideToast() {
        document.getElementById('toast').style.display = 'none';
      }

      function currentUserId() {
        return document.getElementById('user_id').value.trim();
      }

      function escapeHtml(value) {
        const div = document.createElement('div');
        div.textContent = value == null ? '' : String(value);
        return div.innerHTML;
      }

      async function callApi(path, method = 'GET', payload = null) {
        const response = await fetch(path, {
          method,
          headers: { 'Content-Type': 'application/json' },
          body: payload === null ? null : JSON.stringify(payload)
        });
        const data = await response.json();
        if (!response.ok) {
          throw new Error(data.message || 'Request failed');
        }
        return data;
      }

      async function attempt(action) {
        try {
          return await action();
        } catch (error) {
          showToast(error.message, 'error');
          return null;
        }
      }

      function showPage(name) {
        for (const page of ['jobs', 'dashboard']) {
          document.getElementById(`page_${page}`).classList.toggle('hidden', page !== name);
          document.getElementById(`tab_${page}`).classList.toggle('active', page === name);
        }
        if (name === 'dashboard') loadDashboard();
      }

      function renderJobList(container, jobs, withUnsave) {
        container.innerHTML = '';
        if (!jobs.length) {
          container.innerHTML = '<p>No jobs found.</p>';
          return;
        }
        for (const job of jobs) {
          const item = document.createElement('div');
          item.className = 'job';
          item.innerHTML = `<strong>${escapeHtml(job.job_title)}</strong><br />` +
            `<small>${escapeHtml(job.company)} - ${escapeHtml(job.location)} - ` +
            `${escapeHtml(job.job_type)}</small>`;
          item.onclick = () => showJob(job.job_id);
          if (withUnsave) {
            const button = document.createElement('button');
            button.textContent = 'Unsave';
            button.onclick = (event) => { event.stopPropagation(); unsaveJob(job.job_id); };
            item.appendChild(button);
          }
          container.appendChild(item);
        }
      }

      async function loadJobs() {
        const params = new URLSearchParams();
        const fields = { search: 'search', company: 'company', location: 'location', jobType: 'job_type' };
        for (const [param, id] of Object.entries(fields)) {
          const value = document.getElementById(id).value.trim();
          if (value) params.set(param, value);
        }
        const data = await attempt(() => callApi(`/api/jobs?${params.toString()}`));
        if (!data) return;
        const jobs = data.jobboard_response;
        if (!params.toString()) fillFilterOptions(jobs);
        renderJobList(document.getElementById('job_list'), jobs, false);
      }

      // Filter options are the distinct values of the unfiltered listing.
      function fillFilterOptions(jobs) {
        const fields = { company: 'company', location: 'location', job_type: 'job_type' };
        for (const [id, key] of Object.entries(fields)) {
          const select = document.getElementById(id);
          const values = [...new Set(jobs.map((job) => job[key]).filter(Boolean))].sort();
          select.length = 1;
          for (const value of values) {
            select.add(new Option(value, value));
          }
        }
      }

      async function showJob(jobId) {
        const data = await attempt(() => callApi(`/api/jobs/${encodeURIComponent(jobId)}`));
        if (!data) return;
        const job = data.jobboard_response;
        showPage('jobs');
        document.getElementById('job_detail').innerHTML = `
          <h3>${escapeHtml(job.job_title)}</h3>
          <p><strong>${escapeHtml(job.company)}</strong> - ${escapeHtml(job.location)}</p>
          <p>Type: ${escapeHtml(job.job_type)} | Salary: ${escapeHtml(job.salary || 'n/a')}</p>
          <p>Posted: ${escapeHtml(job.posted_date || 'n/a')} | Closes: ${escapeHtml(job.closing_date || 'n/a')}</p>
          <h4>Description</h4><pre>${escapeHtml(job.description)}</pre>
          <h4>Requirements</h4><pre>${escapeHtml(job.requirements)}</pre>
          <h4>How to apply</h4><pre>${escapeHtml(job.how_to_apply)}</pre>
          <p><a href="${escapeHtml(job.source_url)}" target="_blank" rel="noopener">Source</a></p>
          <button id="save_job">Save Job</button>`;
        document.getElementById('save_job').onclick = () => saveJob(job.job_id);
      }

      async function syncUser() {
        const userId = currentUserId();
        if (!userId) return showToast('Enter a user ID first.', 'error');
        localStorage.setItem('jobBoardUserId', userId);
        const email = document.getElementById('email').value.trim();
        const data = await attempt(() => callApi('/api/users/sync', 'POST', { userId, email: email || null }));
        if (data) showToast(data.jobboard_response.message);
      }

      async function saveJob(jobId) {
        const userId = currentUserId();
        if (!userId) return showToast('Sign in to save jobs.', 'error');
        const data = await attempt(() =>
          callApi(`/api/users/${encodeURIComponent(userId)}/saved-jobs`, 'POST', { jobId }));
        if (data) showToast(data.jobboard_response.message);
      }

      async function unsaveJob(jobId) {
        const userId = currentUserId();
        const path = `/api/users/${encodeURIComponent(userId)}/saved-jobs/${encodeURIComponent(jobId)}`;
        const data = await attempt(() => callApi(path, 'DELETE'));
        if (data) loadDashboard();
      }

      async function loadDashboard() {
        const userId = currentUserId();
        if (!userId) return;
        const base = `/api/users/${encodeURIComponent(userId)}`;
        const saved = await attempt(() => callApi(`${base}/saved-jobs`));
        if (saved) renderJobList(document.getElementById('saved_jobs'), saved.jobboard_response, true);
        try {
          const cv = await callApi(`${base}/cv`);
          document.getElementById('cv').value = cv.jobboard_response.cvContent;
        } catch (error) {
          document.getElementById('cv').value = '';
        }
      }

      async function saveCV() {
        const userId = currentUserId();
        const cvContent = document.getElementById('cv').value;
        if (!userId || !cvContent.trim()) return showToast('A user ID and CV text are required.', 'error');
        const data = await attempt(() =>
          callApi(`/api/users/${encodeURIComponent(userId)}/cv`, 'POST', { cvContent }));
        if (data) showToast(data.jobboard_response.message);
      }

      function renderList(id, items) {
        const list = document.getElementById(id);
        list.innerHTML = '';
        for (const item of items) {
          const entry = document.createElement('li');
          entry.textContent = item;
          list.appendChild(entry);
        }
      }

      async function generateRecommendations() {
        const userId = currentUserId();
        if (!userId) return showToast('Sign in first.', 'error');
        const button = document.getElementById('generate');
        button.disabled = true;
        button.textContent = 'Generating...';
        const data = await attempt(() =>
          callApi(`/api/users/${encodeURIComponent(userId)}/recommendations`, 'POST'));
        button.disabled = false;
        button.textContent = 'Generate Recommendations';
        if (!data) return;
        renderList('recommendations', data.recommendations);
        renderList('skill_gaps', data.skillGaps);
      }

      const storedUserId = localStorage.getItem('jobBoardUserId');
      document.getElementById('user_id').value = storedUserId || `guest-${crypto.randomUUID()}`;
      loadJobs();
    </script>
  </body>
</html>
"""

app = create_app()


def run() -> None:
    logging.basicConfig(level=logging.INFO)
    uvicorn.run(
        "portal.main:app",
        host=os.getenv("PORTAL_HOST", "0.0.0.0"),
        port=int(os.getenv("PORTAL_PORT", "3000")),
    )
