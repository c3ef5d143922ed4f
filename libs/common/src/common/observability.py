"""Request ids, structured request logs and in-process request metrics.

Both services install the same middleware: every response carries an
``x-request-id`` header, every request is logged as one JSON line and counted
under its route template, and ``GET /metrics`` returns the counters.
"""

from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from collections import Counter
from dataclasses import dataclass, field

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from common.utils import now_utc_iso


class EndpointMetrics(BaseModel):
    count: int
    statuses: dict[str, int]
    latency_ms_avg: float
    latency_ms_max: float


class MetricsSnapshot(BaseModel):
    generated_at: str
    totals: dict[str, int]
    endpoints: dict[str, EndpointMetrics]


@dataclass
class _EndpointStats:
    count: int = 0
    statuses: Counter[str] = field(default_factory=Counter)
    latency_ms_sum: float = 0.0
    latency_ms_max: float = 0.0

    def to_metrics(self) -> EndpointMetrics:
        return EndpointMetrics(
            count=self.count,
            statuses=dict(self.statuses),
            latency_ms_avg=self.latency_ms_sum / self.count if self.count else 0.0,
            latency_ms_max=self.latency_ms_max,
        )


class MetricsStore:
    """Per-process request counters keyed by ``"<METHOD> <route template>"``."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._requests = 0
        self._errors = 0
        self._endpoints: dict[str, _EndpointStats] = {}

    def observe(self, *, endpoint: str, status_code: int, duration_ms: float) -> None:
        with self._lock:
            self._requests += 1
            if status_code >= 400:
                self._errors += 1
            stats = self._endpoints.setdefault(endpoint, _EndpointStats())
            stats.count += 1
            stats.statuses[str(status_code)] += 1
            stats.latency_ms_sum += duration_ms
            stats.latency_ms_max = max(stats.latency_ms_max, duration_ms)

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(
                generated_at=now_utc_iso(),
                totals={"requests": self._requests, "errors": self._errors},
                endpoints={key: stats.to_metrics() for key, stats in self._endpoints.items()},
            )


def endpoint_label(request: Request) -> str:
    # The router stores the matched route in the shared scope; unmatched
    # requests fall back to the raw path.
    route = request.scope.get("route")
    return f"{request.method} {getattr(route, 'path', request.url.path)}"


def install_observability(app: FastAPI, logger: logging.Logger) -> None:
    app.state.metrics = MetricsStore()

    @app.middleware("http")
    async def observability_middleware(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            duration_ms = (time.perf_counter() - started) * 1000
            endpoint = endpoint_label(request)
            request.app.state.metrics.observe(
                endpoint=endpoint,
                status_code=500,
                duration_ms=duration_ms,
            )
            logger.exception(
                json.dumps(
                    {
                        "event": "request_complete",
                        "request_id": request_id,
                        "endpoint": endpoint,
                        "status_code": 500,
                        "duration_ms": round(duration_ms, 3),
                        "error": str(exc),
                    }
                )
            )
            return JSONResponse(
                status_code=500,
                content={"message": "Internal Server Error", "error": str(exc)},
                headers={"x-request-id": request_id},
            )

        duration_ms = (time.perf_counter() - started) * 1000
        endpoint = endpoint_label(request)
        request.app.state.metrics.observe(
            endpoint=endpoint,
            status_code=response.status_code,
            duration_ms=duration_ms,
        )
        response.headers["x-request-id"] = request_id
        logger.info(
            json.dumps(
                {
                    "event": "request_complete",
                    "request_id": request_id,
                    "endpoint": endpoint,
                    "status_code": response.status_code,
                    "duration_ms": round(duration_ms, 3),
                    "source_ip": request.client.host if request.client else None,
                }
            )
        )
        return response

    @app.get("/metrics", response_model=MetricsSnapshot)
    async def metrics(request: Request) -> MetricsSnapshot:
        return request.app.state.metrics.snapshot()
