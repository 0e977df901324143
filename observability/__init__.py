"""
Observability infrastructure for the quote orchestrator.

Provides:
- Structured logging with run correlation IDs
- Prometheus metrics
"""

from .logging import get_run_id, run_context, setup_logging
from .metrics import (
    metrics_registry,
    quote_runs_total,
    quote_waves_total,
    quote_wave_duration_seconds,
    advisory_calls_total,
    site_matches_total,
    store_failures_total,
)

__all__ = [
    "get_run_id",
    "run_context",
    "setup_logging",
    "metrics_registry",
    "quote_runs_total",
    "quote_waves_total",
    "quote_wave_duration_seconds",
    "advisory_calls_total",
    "site_matches_total",
    "store_failures_total",
]
