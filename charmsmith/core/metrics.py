"""
Prometheus Metrics for Observability

Tracks pipeline stage latency, external service calls and fallback usage.
Exposes /api/v1/metrics for Prometheus scraping.
"""

import time
from contextlib import contextmanager

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

# Pipeline Latency - Per Stage
pipeline_latency_seconds = Histogram(
    "pipeline_latency_seconds",
    "Time spent in each pipeline stage",
    labelnames=["stage", "status"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0]
)

# Total Pipeline Duration
pipeline_total_duration = Histogram(
    "pipeline_total_duration_seconds",
    "Total time for complete pipeline execution",
    labelnames=["status"],
    buckets=[1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0]
)

# External API Calls (vision, synthesis, transform, storage)
external_api_calls_total = Counter(
    "external_api_calls_total",
    "Total number of calls to external services",
    labelnames=["service", "status", "http_status"]
)

# Fallback chain usage
fallback_used_total = Counter(
    "fallback_used_total",
    "Which step of a fallback chain produced the result",
    labelnames=["chain", "step"]
)

# Jobs Counter
jobs_total = Counter(
    "charm_jobs_total",
    "Total number of charm generation runs",
    labelnames=["status", "failure_stage"]
)

# API Request Metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration",
    labelnames=["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 120.0]
)

# Application Info
app_info = Info(
    "charm_app",
    "Application information"
)


# =============================================================================
# Helper Functions
# =============================================================================

def set_app_info(version: str, environment: str):
    """Set application info metric."""
    app_info.info({
        "version": version,
        "environment": environment
    })


@contextmanager
def track_stage_latency(stage: str):
    """
    Context manager to track stage latency.

    Usage:
        with track_stage_latency("synthesis"):
            # do work
    """
    start = time.time()
    status = "success"
    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        duration = time.time() - start
        pipeline_latency_seconds.labels(stage=stage, status=status).observe(duration)


def record_external_call(service: str, status: str, http_status=None):
    """Record an external service call."""
    external_api_calls_total.labels(
        service=service,
        status=status,
        http_status=str(http_status) if http_status is not None else "none"
    ).inc()


def record_fallback(chain: str, step: str):
    """Record which producer of a fallback chain won."""
    fallback_used_total.labels(chain=chain, step=step).inc()


def record_job_completion(status: str, failure_stage: str = "none", duration_seconds=None):
    """Record pipeline completion."""
    jobs_total.labels(status=status, failure_stage=failure_stage).inc()
    if duration_seconds is not None:
        pipeline_total_duration.labels(status=status).observe(duration_seconds)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
