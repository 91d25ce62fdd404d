from __future__ import annotations

from prometheus_client import Counter, Histogram

_HTTP_REQUESTS_TOTAL = Counter(
    "replypilot_http_requests_total",
    "Total HTTP requests handled by the API.",
    labelnames=("method", "path", "status_code"),
)
_HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "replypilot_http_request_duration_seconds",
    "HTTP request duration in seconds.",
    labelnames=("method", "path"),
)
_JOBS_TOTAL = Counter(
    "replypilot_jobs_total",
    "Jobs processed by the worker pool.",
    labelnames=("queue", "outcome"),
)
_JOB_DURATION_SECONDS = Histogram(
    "replypilot_job_duration_seconds",
    "Handler duration per job in seconds.",
    labelnames=("queue",),
)
_SMS_SENDS_TOTAL = Counter(
    "replypilot_sms_sends_total",
    "Outbound SMS attempts by provider and outcome.",
    labelnames=("provider", "outcome"),
)


def observe_http_request(*, method: str, path: str, status_code: int, duration_ms: int) -> None:
    safe_path = path or "unknown"
    safe_method = method or "UNKNOWN"

    _HTTP_REQUESTS_TOTAL.labels(
        method=safe_method,
        path=safe_path,
        status_code=str(status_code),
    ).inc()
    _HTTP_REQUEST_DURATION_SECONDS.labels(method=safe_method, path=safe_path).observe(
        max(0.0, duration_ms / 1000.0)
    )


def observe_job(*, queue: str, outcome: str, duration_ms: int) -> None:
    # outcome: succeeded|failed|retried|dead_lettered
    _JOBS_TOTAL.labels(queue=queue, outcome=outcome).inc()
    _JOB_DURATION_SECONDS.labels(queue=queue).observe(max(0.0, duration_ms / 1000.0))


def observe_sms_send(*, provider: str, success: bool) -> None:
    _SMS_SENDS_TOTAL.labels(provider=provider, outcome="sent" if success else "failed").inc()
