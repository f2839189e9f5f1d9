"""Prometheus metrics for the gateway.

Labels stay low-cardinality: RPC method paths are client-chosen, so backend
calls are labelled by outcome only, never by method or params.
"""
from __future__ import annotations

import os
import time

from fastapi import FastAPI, Request
from fastapi.responses import Response
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
    "jamulus_gateway_http_requests_total",
    "Total HTTP requests received",
    ["method", "route", "status"],
)
BACKEND_CALLS_TOTAL = Counter(
    "jamulus_gateway_backend_calls_total",
    "Total backend RPC calls attempted",
    ["outcome"],
)
BACKEND_CALL_LATENCY_SECONDS = Histogram(
    "jamulus_gateway_backend_call_latency_seconds",
    "Backend RPC call latency in seconds, including connect and auth handshake",
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
)
TOKEN_REJECT_TOTAL = Counter(
    "jamulus_gateway_token_reject_total",
    "Total signed-token rejections",
    ["code"],
)
CREDENTIAL_REJECT_TOTAL = Counter(
    "jamulus_gateway_credential_reject_total",
    "Total requests rejected for a missing or unknown API key",
)


def record_backend_call(outcome: str, duration_seconds: float) -> None:
    BACKEND_CALLS_TOTAL.labels(outcome=str(outcome)).inc()
    BACKEND_CALL_LATENCY_SECONDS.observe(duration_seconds)


def record_token_reject(code: str) -> None:
    TOKEN_REJECT_TOTAL.labels(code=str(code)).inc()


def record_credential_reject() -> None:
    CREDENTIAL_REJECT_TOTAL.inc()


def instrument_fastapi(app: FastAPI) -> None:
    """Attach the /metrics endpoint and request-count middleware to an app."""
    if not _env_bool("METRICS_ENABLED", True):
        return

    @app.middleware("http")
    async def _metrics_middleware(request: Request, call_next):
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            route = request.scope.get("route")
            route_path = getattr(route, "path", None) or "unmatched"
            HTTP_REQUESTS_TOTAL.labels(method=request.method, route=route_path, status=str(status)).inc()

    @app.get("/metrics", include_in_schema=False)
    async def metrics_endpoint() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


class BackendCallTimer:
    """Context manager recording one backend call's outcome and latency."""

    def __init__(self) -> None:
        self.outcome = "ok"
        self._start = 0.0

    def __enter__(self) -> "BackendCallTimer":
        self._start = time.monotonic()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.outcome = getattr(exc, "code", None) or "exception"
        record_backend_call(self.outcome, time.monotonic() - self._start)
