"""
Static site scoring from catalog metadata alone.

    score = 1000 - priority*3 + reliability*420 - block_rate*240
            - avg_latency_ms/45 - (180 if js_heavy else 0)

Disabled sites score -inf and are removed before ranking.
"""

import logging
import math
from typing import Dict, List

from quoting.candidates import default_catalog_entry
from quoting.models import SiteCatalogEntry, clamp

logger = logging.getLogger(__name__)

JS_HEAVY_PENALTY = 180.0


def static_score(entry: SiteCatalogEntry) -> float:
    if not entry.enabled:
        return -math.inf
    return (
        1000.0
        - entry.priority * 3.0
        + clamp(entry.reliability_score) * 420.0
        - clamp(entry.block_rate) * 240.0
        - max(0, entry.avg_latency_ms) / 45.0
        - (JS_HEAVY_PENALTY if entry.js_heavy else 0.0)
    )


def score_candidates(
    candidates: List[str],
    catalog: Dict[str, SiteCatalogEntry],
) -> Dict[str, float]:
    """
    Static scores for every enabled candidate, in candidate order.

    Sites whose catalog row says ``enabled=False`` are left out entirely.
    """
    scores: Dict[str, float] = {}
    dropped: List[str] = []
    for site_id in candidates:
        entry = catalog.get(site_id) or default_catalog_entry(site_id)
        score = static_score(entry)
        if score == -math.inf:
            dropped.append(site_id)
            continue
        scores[site_id] = score

    if dropped:
        logger.info(f"[Scorer] Dropped disabled sites: {dropped}")
    return scores
