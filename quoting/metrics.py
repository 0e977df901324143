"""Per-run observability: structured summary log plus Prometheus counters.

Tracked per run:
- sites probed / expanded and which transport served the expansion
- ok matches per wave and item coverage
- wave durations
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from observability.metrics import (
    quote_runs_total,
    quote_wave_duration_seconds,
    quote_waves_total,
    site_matches_total,
)

logger = logging.getLogger("quoting.metrics")


@dataclass
class WaveMetrics:
    wave: str  # probe, expansion
    transport: str  # stream, bulk
    sites: List[str]
    matches: int = 0
    ok_matches: int = 0
    duration_ms: float = 0.0


@dataclass
class RunMetrics:
    run_id: str
    item_count: int = 0
    category: str = "unknown"
    cluster_key: Optional[str] = None
    classifier_source: str = "fallback"
    status: str = "running"
    waves: List[WaveMetrics] = field(default_factory=list)
    statuses: Dict[str, int] = field(default_factory=dict)
    total_latency_ms: float = 0.0

    @property
    def expanded(self) -> bool:
        return any(w.wave == "expansion" for w in self.waves)


class RunMetricsCollector:
    """Collects one run's metrics; logs a summary when the run ends."""

    def __init__(self, run_id: str, item_count: int):
        self.metrics = RunMetrics(run_id=run_id, item_count=item_count)
        self._started = time.monotonic()

    @contextmanager
    def track_wave(self, wave: str, transport: str, sites: List[str]):
        current = WaveMetrics(wave=wave, transport=transport, sites=list(sites))
        self.metrics.waves.append(current)
        started = time.monotonic()
        try:
            yield current
        finally:
            elapsed = time.monotonic() - started
            current.duration_ms = elapsed * 1000
            quote_wave_duration_seconds.labels(wave=wave).observe(elapsed)
            quote_waves_total.labels(wave=wave, transport=current.transport).inc()

    def record_match(self, wave: WaveMetrics, site_id: str, status: str) -> None:
        wave.matches += 1
        if status == "ok":
            wave.ok_matches += 1
        self.metrics.statuses[status] = self.metrics.statuses.get(status, 0) + 1
        site_matches_total.labels(site=site_id, status=status).inc()

    def finish(self, status: str) -> None:
        m = self.metrics
        m.status = status
        m.total_latency_ms = (time.monotonic() - self._started) * 1000
        quote_runs_total.labels(status=status).inc()

        log_data = {
            "event": "quote_run_complete",
            "run_id": m.run_id,
            "items": m.item_count,
            "category": m.category,
            "cluster_key": m.cluster_key,
            "classifier_source": m.classifier_source,
            "status": m.status,
            "expanded": m.expanded,
            "waves": [
                {
                    "wave": w.wave,
                    "transport": w.transport,
                    "sites": w.sites,
                    "matches": w.matches,
                    "ok": w.ok_matches,
                    "duration_ms": round(w.duration_ms, 1),
                }
                for w in m.waves
            ],
            "statuses": dict(m.statuses),
            "latency_ms": round(m.total_latency_ms, 1),
        }

        if status == "error":
            logger.error("Quote run failed", extra=log_data)
        elif not m.statuses.get("ok"):
            logger.warning("Quote run completed without ok matches", extra=log_data)
        else:
            logger.info("Quote run completed", extra=log_data)
