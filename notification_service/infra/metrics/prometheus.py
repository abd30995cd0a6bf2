"""Prometheus registry shared by every metric in the service."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Gauge

REGISTRY = CollectorRegistry()

# Provider round trips range from a few ms (in-app) to tens of seconds (SMTP)
DEFAULT_LATENCY_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)

application_info = Gauge(
    "application_info",
    "Static application metadata (always 1)",
    ["service", "version", "environment"],
    registry=REGISTRY,
)
