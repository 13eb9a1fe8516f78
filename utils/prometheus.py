"""Prometheus metrics shared across the application."""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)

DRIVE_API_CALLS = Counter(
    "zee_index_drive_api_calls_total",
    "Google Drive API calls by operation and outcome",
    ["operation", "outcome"],
)

DRIVE_API_LATENCY = Histogram(
    "zee_index_drive_api_latency_seconds",
    "Google Drive API call latency",
    ["operation"],
)

ACCESS_DENIED = Counter(
    "zee_index_access_denied_total",
    "Requests rejected by folder protection or share token checks",
    ["reason"],
)

RATE_LIMITED = Counter(
    "zee_index_rate_limited_total",
    "Requests rejected by the rate limiter",
    ["bucket"],
)

__all__ = [
    "CONTENT_TYPE_LATEST",
    "REGISTRY",
    "Counter",
    "Histogram",
    "generate_latest",
    "DRIVE_API_CALLS",
    "DRIVE_API_LATENCY",
    "ACCESS_DENIED",
    "RATE_LIMITED",
]
