"""Notification maintenance and delivery tasks."""

from .tasks import clean_finished_jobs, refresh_metrics, run_delivery_pass, sweep_fallback_counters

__all__ = ["clean_finished_jobs", "refresh_metrics", "run_delivery_pass", "sweep_fallback_counters"]
