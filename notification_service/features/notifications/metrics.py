"""Prometheus metrics for the notification pipeline.

Counters are updated by the orchestrator and worker as events happen;
gauges are refreshed by :class:`MetricsCollector` from persisted records.

Usage:
    from notification_service.features.notifications.metrics import (
        notification_created_total,
        notification_delivery_attempts_total,
    )

    notification_created_total.labels(type="BATCH_CREATED", priority="HIGH").inc()
    notification_delivery_attempts_total.labels(channel="EMAIL", status="SUCCESS").inc()
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

from notification_service.infra.metrics.prometheus import REGISTRY

# =============================================================================
# Lifecycle
# =============================================================================

notification_created_total = Counter(
    "notification_created_total",
    "Total number of notifications created",
    labelnames=["type", "priority"],
    registry=REGISTRY,
)

notification_rejected_total = Counter(
    "notification_rejected_total",
    "Send requests rejected before a notification was created",
    labelnames=["reason"],  # validation, not_found, inactive, no_channels
    registry=REGISTRY,
)

notification_enqueue_delayed_total = Counter(
    "notification_enqueue_delayed_total",
    "Jobs created DELAYED because the enqueue rate limit was exceeded",
    registry=REGISTRY,
)

notification_quiet_hours_deferred_total = Counter(
    "notification_quiet_hours_deferred_total",
    "Jobs deferred until the end of the recipient's quiet hours",
    registry=REGISTRY,
)

# =============================================================================
# Delivery
# =============================================================================

notification_delivery_attempts_total = Counter(
    "notification_delivery_attempts_total",
    "Channel delivery attempts by outcome",
    labelnames=["channel", "status"],
    registry=REGISTRY,
)
"""
Labels:
    channel: PUSH, EMAIL, SMS, WHATSAPP or IN_APP
    status: SUCCESS or FAILED
"""

notification_delivery_duration_seconds = Histogram(
    "notification_delivery_duration_seconds",
    "Provider call duration in seconds",
    labelnames=["channel"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=REGISTRY,
)

notification_retry_total = Counter(
    "notification_retry_total",
    "Channel attempts scheduled for retry",
    labelnames=["channel"],
    registry=REGISTRY,
)

notification_errors_total = Counter(
    "notification_errors_total",
    "Failed channel attempts by error category",
    labelnames=["channel", "error_category"],
    registry=REGISTRY,
)

notification_worker_job_errors_total = Counter(
    "notification_worker_job_errors_total",
    "Unexpected exceptions raised while processing a job",
    registry=REGISTRY,
)

# =============================================================================
# Snapshot gauges
# =============================================================================

notification_queue_depth = Gauge(
    "notification_queue_depth",
    "Jobs waiting or active",
    registry=REGISTRY,
)

notification_delivery_rate = Gauge(
    "notification_delivery_rate",
    "Delivered / (delivered + failed) over the last collection period, in percent",
    registry=REGISTRY,
)

notification_avg_latency_ms = Gauge(
    "notification_avg_latency_ms",
    "Mean creation-to-delivery latency over the last collection period",
    registry=REGISTRY,
)

notification_queue_paused = Gauge(
    "notification_queue_paused",
    "1 while the delivery queue is paused",
    registry=REGISTRY,
)
