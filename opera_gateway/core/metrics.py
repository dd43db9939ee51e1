"""
Prometheus Metrics for Observability

Tracks HTTP traffic, upstream API calls, polling and job outcomes.
Exposes /metrics endpoint for Prometheus scraping.
"""

from prometheus_client import (
    Counter,
    Histogram,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY
)

# =============================================================================
# Metrics Definitions
# =============================================================================

app_info = Info(
    "opera_gateway_app",
    "Application information"
)

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    labelnames=["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0, 120.0, 300.0]
)

# Upstream calls (identity, inference, storage, artifact download)
upstream_api_calls_total = Counter(
    "upstream_api_calls_total",
    "Total number of calls to external services",
    labelnames=["service", "operation", "outcome"]
)

poll_attempts = Histogram(
    "enhancement_poll_attempts",
    "Status calls made per awaited job",
    labelnames=["outcome"],
    buckets=[1, 2, 5, 10, 20, 30, 45, 60, 120]
)

enhancement_jobs_total = Counter(
    "enhancement_jobs_total",
    "Total number of enhancement jobs by outcome",
    labelnames=["outcome"]
)

storage_fallbacks_total = Counter(
    "storage_fallbacks_total",
    "Archived results that fell back to the upstream artifact URL"
)

history_write_failures_total = Counter(
    "history_write_failures_total",
    "Processing history records that could not be written"
)


# =============================================================================
# Helper Functions
# =============================================================================

def set_app_info(version: str, environment: str):
    """Set application info labels."""
    app_info.info({
        "version": version,
        "environment": environment,
    })


def record_upstream_call(service: str, operation: str, outcome: str):
    """Record an outbound call.

    Args:
        service: External service (identity, inference, storage, artifact)
        operation: Operation name (verify_token, submit, fetch_status, upload, download)
        outcome: "success", "error" or "timeout"
    """
    upstream_api_calls_total.labels(
        service=service,
        operation=operation,
        outcome=outcome
    ).inc()


def record_poll_completion(outcome: str, attempts: int):
    """Record how many status calls an awaited job needed."""
    poll_attempts.labels(outcome=outcome).observe(attempts)


def record_job_outcome(outcome: str):
    """Record a finished enhancement workflow (completed, failed, timeout, cancelled)."""
    enhancement_jobs_total.labels(outcome=outcome).inc()


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
