"""
Prometheus metrics.

HTTP request counter + latency histogram (collected by the middleware
below) and authorization-domain counters incremented by the services.
"""

import re
import time

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

# ── HTTP metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

# ── Authorization metrics ────────────────────────────────────────────────────

role_mutations_total = Counter(
    "role_mutations_total",
    "Role, grant and assignment mutations",
    ["operation"],
)

authorization_denials_total = Counter(
    "authorization_denials_total",
    "Requests refused by a permission or assignability check",
    ["reason"],
)

permission_resolutions_total = Counter(
    "permission_resolutions_total",
    "Effective permission resolutions",
    ["kind"],  # "role" | "person"
)

# Role types are upper snake case; ids are numeric
_ROLE_TYPE = re.compile(r"^[A-Z][A-Z0-9_]*$")
_COLLAPSE_AFTER = {"roles", "assignments", "persons"}


def _normalize_path(path: str) -> str:
    """Collapse path parameters to keep label cardinality bounded.

    e.g. /api/roles/CUSTOM_SALES/permissions -> /api/roles/{id}/permissions
    """
    parts = path.strip("/").split("/")
    normalized = []
    for i, part in enumerate(parts):
        prev = parts[i - 1] if i else ""
        if prev in _COLLAPSE_AFTER and (part.isdigit() or _ROLE_TYPE.match(part)):
            normalized.append("{id}")
        else:
            normalized.append(part)
    return "/" + "/".join(normalized)


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        path = _normalize_path(request.url.path)

        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start

        http_requests_total.labels(method=method, path=path, status_code=response.status_code).inc()
        http_request_duration_seconds.labels(method=method, path=path).observe(duration)
        return response
