"""
Bandit ranker: blends static scores with per-cluster learned outcomes.

For each candidate with stats ``s`` in the current cluster:

    intent_signal = success_rate*260 - block_rate*200 - avg_latency_ms/80
    explore_bonus = 95 * sqrt(ln(total_cluster_runs + 2) / (site_runs + 1))
    total_score   = static_score + intent_signal + explore_bonus

``total_cluster_runs`` sums ``site_runs`` over all candidates, so the bonus
is a UCB1-style term that shrinks as a site gathers evidence in the cluster.

Exploration shuffle: with more than SHUFFLE_MIN_CANDIDATES candidates, a
float derived from a hash of the run id decides whether this run forces up
to two cold sites (fewer than COLD_RUNS observations) in right after the
top three warm sites. Same run id, same decision.
"""

import hashlib
import logging
import math
from typing import Dict, List, Optional

from quoting.models import IntentSiteStat, RankedSite, clamp

logger = logging.getLogger(__name__)

DEFAULT_SUCCESS_RATE = 0.55
DEFAULT_BLOCK_RATE = 0.35
DEFAULT_LATENCY_MS = 2200

EXPLORE_WEIGHT = 95.0
SHUFFLE_MIN_CANDIDATES = 4
SHUFFLE_PROBABILITY = 0.16
COLD_RUNS = 3
COLD_PICKS = 2
WARM_HEAD = 3


def hash_to_unit(seed: str) -> float:
    """Map a string to a float in [0, 1) using the first 52 bits of its SHA-256."""
    digest = hashlib.sha256((seed or "").encode("utf-8")).digest()
    bits = int.from_bytes(digest[:8], "big") >> 12
    return bits / float(1 << 52)


def intent_signal(stat: Optional[IntentSiteStat]) -> float:
    if stat is None or stat.runs_count <= 0:
        success_rate = DEFAULT_SUCCESS_RATE
        block_rate = DEFAULT_BLOCK_RATE
        latency = DEFAULT_LATENCY_MS
    else:
        success_rate = stat.success_rate
        block_rate = clamp((stat.blocked_count + stat.unsupported_count) / stat.runs_count)
        latency = stat.avg_latency_ms
    return success_rate * 260.0 - block_rate * 200.0 - max(0, latency) / 80.0


def explore_bonus(total_cluster_runs: int, site_runs: int) -> float:
    return EXPLORE_WEIGHT * math.sqrt(math.log(total_cluster_runs + 2) / (site_runs + 1))


def rank_sites(
    static_scores: Dict[str, float],
    intent_stats: Dict[str, IntentSiteStat],
) -> List[RankedSite]:
    """Score and sort candidates by descending total score; ties keep candidate order."""
    site_runs = {
        site_id: max(0, intent_stats[site_id].runs_count) if site_id in intent_stats else 0
        for site_id in static_scores
    }
    total_cluster_runs = sum(site_runs.values())

    ranked = [
        RankedSite(
            site_id=site_id,
            static_score=score,
            intent_signal=intent_signal(intent_stats.get(site_id)),
            explore_bonus=explore_bonus(total_cluster_runs, site_runs[site_id]),
            site_runs=site_runs[site_id],
        )
        for site_id, score in static_scores.items()
    ]
    order = {site.site_id: index for index, site in enumerate(ranked)}
    ranked.sort(key=lambda site: (-site.total_score, order[site.site_id]))
    return ranked


def should_shuffle(run_id: str, candidate_count: int) -> bool:
    return candidate_count > SHUFFLE_MIN_CANDIDATES and hash_to_unit(run_id) < SHUFFLE_PROBABILITY


def apply_exploration(ranked: List[RankedSite], run_id: str) -> List[RankedSite]:
    """
    Splice the best cold sites in right after the top warm sites.

    Everything else keeps its relative order. Returns the input order when the
    run is not selected for exploration or no cold site exists.
    """
    if not should_shuffle(run_id, len(ranked)):
        return list(ranked)

    cold = [site for site in ranked if site.site_runs < COLD_RUNS]
    warm = [site for site in ranked if site.site_runs >= COLD_RUNS]
    if not cold:
        return list(ranked)

    head = warm[:WARM_HEAD]
    picked = cold[:COLD_PICKS]
    placed = {site.site_id for site in head} | {site.site_id for site in picked}
    rest = [site for site in ranked if site.site_id not in placed]

    logger.info(
        f"[Bandit] exploration run: forcing {[s.site_id for s in picked]} after {[s.site_id for s in head]}"
    )
    return [*head, *picked, *rest]


def rank_with_exploration(
    static_scores: Dict[str, float],
    intent_stats: Dict[str, IntentSiteStat],
    run_id: str,
) -> List[RankedSite]:
    ranked = rank_sites(static_scores, intent_stats)
    ranked = apply_exploration(ranked, run_id)
    logger.info(
        "[Bandit] ranking: "
        + ", ".join(f"{s.site_id}={s.total_score:.1f}(runs={s.site_runs})" for s in ranked)
    )
    return ranked
