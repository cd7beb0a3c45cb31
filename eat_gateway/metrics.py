"""Prometheus metrics for the EAT verifier.

Metrics goals:
- low-cardinality labels (never addresses, selectors or fingerprints)
- internal observability for verification outcomes, replay rejects and key
  hierarchy changes
"""
from __future__ import annotations

import os
import time
from typing import Callable, Optional

from fastapi import Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest


def _env_bool(name: str, default: bool = True) -> bool:
    v = (os.getenv(name, "") or "").strip().lower()
    if not v:
        return default
    return v in ("1", "true", "yes", "on")


# ---------------------------
# Core metric objects
# ---------------------------
HTTP_REQUESTS_TOTAL = Counter(
    "eat_http_requests_total",
    "Total HTTP requests received",
    ["method", "route", "status"],
)
HTTP_REQUEST_LATENCY_SECONDS = Histogram(
    "eat_http_request_latency_seconds",
    "HTTP request latency in seconds",
    ["method", "route"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
)
VERIFICATIONS_TOTAL = Counter(
    "eat_verifications_total",
    "Access token verification attempts",
    ["mode", "outcome"],
)
REPLAY_REJECT_TOTAL = Counter(
    "eat_replay_reject_total",
    "Access tokens rejected because they were already consumed",
)
KEY_EVENTS_TOTAL = Counter(
    "eat_key_events_total",
    "Effective key hierarchy changes",
    ["event"],
)


def record_verification(mode: str, outcome: str) -> None:
    VERIFICATIONS_TOTAL.labels(mode=str(mode), outcome=str(outcome)).inc()


def record_replay_reject() -> None:
    REPLAY_REJECT_TOTAL.inc()


def record_key_event(event: str) -> None:
    KEY_EVENTS_TOTAL.labels(event=str(event)).inc()


def instrument_fastapi(app, authorize: Optional[Callable] = None) -> None:
    """Attach /metrics endpoint and request middleware to a FastAPI app.

    authorize: callable(request) -> bool. If provided and returns False, /metrics returns 403.
    """
    if not _env_bool("EAT_METRICS_ENABLED", True):
        return

    @app.middleware("http")
    async def _metrics_middleware(request, call_next):
        start = time.time()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            route = request.scope.get("route")
            route_path = getattr(route, "path", None) or request.url.path
            HTTP_REQUESTS_TOTAL.labels(method=request.method, route=route_path, status=str(status)).inc()
            HTTP_REQUEST_LATENCY_SECONDS.labels(method=request.method, route=route_path).observe(time.time() - start)

    @app.get("/metrics", include_in_schema=False)
    async def metrics_endpoint(request: Request):
        if authorize is not None and not authorize(request):
            # avoid leaking existence details
            return Response(status_code=403, content="FORBIDDEN")
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
