"""
Prometheus metrics for pipeline runs.

These live in the process that runs the pipeline (the API server or the CLI).
The API exposes them on /metrics; the CLI run simply discards them.
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram


LINK_OUTCOMES_TOTAL = Counter(
    "hd_link_outcomes_total",
    "Terminal outcome of each candidate link processed by the pipeline.",
    labelnames=("stage", "outcome"),
)

PROVIDER_REQUESTS_TOTAL = Counter(
    "hd_provider_requests_total",
    "Total summarization provider requests.",
    labelnames=("provider", "outcome"),
)

PROVIDER_REQUEST_DURATION_SECONDS = Histogram(
    "hd_provider_request_duration_seconds",
    "Summarization provider request latency in seconds.",
    labelnames=("provider",),
    buckets=(0.25, 0.5, 1, 2.5, 5, 10, 20, 30, 60, 120),
)

PIPELINE_RUNS_TOTAL = Counter(
    "hd_pipeline_runs_total",
    "Pipeline invocations by final status.",
    labelnames=("status",),
)


def record_link_outcome(stage: str, outcome: str) -> None:
    LINK_OUTCOMES_TOTAL.labels(stage=stage, outcome=outcome).inc()


def record_provider_request(provider: str, outcome: str, duration_ms: float) -> None:
    PROVIDER_REQUESTS_TOTAL.labels(provider=provider, outcome=outcome).inc()
    PROVIDER_REQUEST_DURATION_SECONDS.labels(provider=provider).observe(max(0.0, duration_ms / 1000.0))


def record_pipeline_run(status: str) -> None:
    PIPELINE_RUNS_TOTAL.labels(status=status).inc()
