"""Prometheus metrics for the tunnel.

Usage::

    from posthog_tunnel.observability.metrics import PROXY_DECISIONS_TOTAL

    PROXY_DECISIONS_TOTAL.labels(route="ingest", decision="deny").inc()
"""

from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# ---------------------------------------------------------------------------
# HTTP request metrics
# ---------------------------------------------------------------------------

HTTP_REQUESTS_TOTAL = Counter(
    "http_server_requests_total",
    "Total HTTP requests by method, path pattern, and status code.",
    labelnames=["method", "path", "status"],
    registry=REGISTRY,
)

HTTP_REQUESTS_IN_FLIGHT = Gauge(
    "http_server_requests_in_flight",
    "Number of HTTP requests currently being processed.",
    registry=REGISTRY,
)

# ---------------------------------------------------------------------------
# Proxy path
# ---------------------------------------------------------------------------

PROXY_DECISIONS_TOTAL = Counter(
    "tunnel_proxy_decisions_total",
    "Block decisions on proxied requests.",
    labelnames=["route", "decision"],
    registry=REGISTRY,
)

UPSTREAM_ERRORS_TOTAL = Counter(
    "tunnel_upstream_errors_total",
    "Forwarding attempts that raised before an upstream response arrived.",
    labelnames=["route"],
    registry=REGISTRY,
)

UPSTREAM_DURATION_SECONDS = Histogram(
    "tunnel_upstream_duration_seconds",
    "Time until upstream response headers arrive.",
    labelnames=["route"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
    registry=REGISTRY,
)

# ---------------------------------------------------------------------------
# Admin / blocklist
# ---------------------------------------------------------------------------

BLOCKLIST_MUTATIONS_TOTAL = Counter(
    "tunnel_blocklist_mutations_total",
    "Persisted blocklist mutations by operation.",
    labelnames=["operation"],
    registry=REGISTRY,
)


def metrics_text() -> tuple[bytes, str]:
    """Return (body, content_type) for a /metrics response."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
