"""
Prometheus instruments for Worksy.

HTTP traffic is labelled by route template (``/api/admin/sessions/{session_id}/events``)
rather than raw path, so session and index ids never become label values.
The chat, completion and AI Index instruments are updated by the services.
"""

import time

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

http_requests_total = Counter(
    "http_requests_total",
    "HTTP requests by route and status",
    ["method", "path", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency by route",
    ["method", "path"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 15.0, 60.0),
)

chat_turns_total = Counter(
    "chat_turns_total",
    "Chat turns by outcome",
    ["outcome"],  # completed | intercepted | rejected | failed
)

completion_duration_seconds = Histogram(
    "completion_duration_seconds",
    "Latency of the completion collaborator",
    buckets=(0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 40.0, 80.0),
)

ai_index_generated_total = Counter(
    "ai_index_generated_total",
    "AI Index records sealed",
)

ai_index_verifications_total = Counter(
    "ai_index_verifications_total",
    "AI Index verifications by result",
    ["result"],  # ok | tampered
)

UNMATCHED = "unmatched"


def route_label(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", None) or UNMATCHED


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        if request.url.path == "/metrics":
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - started

        # The router fills scope["route"] while handling the request
        path = route_label(request)
        http_requests_total.labels(request.method, path, response.status_code).inc()
        http_request_duration_seconds.labels(request.method, path).observe(elapsed)
        return response
