"""
Prometheus metrics for the digest API.

Requests are labeled by route template, not raw path, so scanners probing
random URLs can't blow up label cardinality. Pipeline counters from
minutes_digest.metrics share the same default registry and show up on the
same /metrics page.
"""

from __future__ import annotations

import time

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.responses import Response


HTTP_REQUESTS_TOTAL = Counter(
    "hd_http_requests_total",
    "Total HTTP requests served by the digest API.",
    labelnames=("method", "path", "status"),
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "hd_http_request_duration_seconds",
    "HTTP request latency in seconds. A full digest run can take a minute.",
    labelnames=("method", "path"),
    buckets=(0.01, 0.05, 0.1, 0.5, 1, 5, 10, 30, 60, 120, 300),
)


def _route_template(scope) -> str:
    route = scope.get("route")
    if route is not None and getattr(route, "path", None):
        return str(route.path)
    return "unmatched"


def instrument_app(app) -> None:
    """
    Register /metrics and record request count/latency per route.
    """

    @app.get("/metrics", include_in_schema=False)
    def _metrics_endpoint():
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.middleware("http")
    async def _prometheus_middleware(request, call_next):
        if request.url.path == "/metrics":
            return await call_next(request)

        start = time.perf_counter()
        status = "500"
        try:
            response = await call_next(request)
            status = str(getattr(response, "status_code", 200))
            return response
        finally:
            # Route is only resolved after call_next, so read it late.
            path = _route_template(request.scope)
            HTTP_REQUESTS_TOTAL.labels(method=request.method, path=path, status=status).inc()
            HTTP_REQUEST_DURATION_SECONDS.labels(method=request.method, path=path).observe(
                max(0.0, time.perf_counter() - start)
            )
