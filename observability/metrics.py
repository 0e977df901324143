"""
Prometheus metrics for the quote orchestrator.

Run outcomes, wave dispatch, advisory fallbacks and per-site match statuses.
"""

from prometheus_client import (
    Counter,
    Histogram,
    REGISTRY,
)

metrics_registry = REGISTRY

quote_runs_total = Counter(
    "quote_runs_total",
    "Quote runs by terminal status",
    ["status"],  # done, error
    registry=metrics_registry,
)

quote_waves_total = Counter(
    "quote_waves_total",
    "Dispatch waves executed",
    ["wave", "transport"],  # wave: probe, expansion; transport: stream, bulk
    registry=metrics_registry,
)

quote_wave_duration_seconds = Histogram(
    "quote_wave_duration_seconds",
    "Wall time spent draining a dispatch wave",
    ["wave"],
    buckets=[0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 45.0, 90.0],
    registry=metrics_registry,
)

advisory_calls_total = Counter(
    "advisory_calls_total",
    "Advisory service calls by outcome path",
    ["service", "path"],  # service: classifier, cluster, reranker; path: advisory, fallback
    registry=metrics_registry,
)

site_matches_total = Counter(
    "site_matches_total",
    "Match events received per site and status",
    ["site", "status"],
    registry=metrics_registry,
)

store_failures_total = Counter(
    "store_failures_total",
    "Swallowed persistence failures",
    ["operation"],
    registry=metrics_registry,
)
