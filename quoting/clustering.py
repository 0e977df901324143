"""
Intent cluster resolver.

Produces the bucket key under which per-site outcome statistics accumulate.
The fallback key is a pure function of (category, normalized items) so that
identical requests always land in the same bucket when the advisory service
is down.
"""

import hashlib
import json
import logging
import re
from collections import Counter
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from quoting.advisory import consult
from quoting.models import AdvisoryOutcome, IntentCluster, LineItem, clamp
from services.llm import AdvisoryBackend

logger = logging.getLogger(__name__)

FALLBACK_CONFIDENCE = 0.3
MAX_KEY_TOKENS = 4
MAX_KEY_LENGTH = 64

STOPWORDS = frozenset({
    "and", "for", "with", "the",
    "pack", "box", "case", "set", "pcs", "piece", "pieces", "inch",
    "new", "best", "cheap", "buy", "need", "qty", "each", "per",
})

_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")
_KEY_UNSAFE = re.compile(r"[^a-z0-9_]+")


def significant_tokens(items: List[LineItem], limit: int = MAX_KEY_TOKENS) -> List[str]:
    """
    Pick the most significant tokens across all item queries.

    Significance is frequency first, then token length, then alphabetical
    order, which keeps the choice deterministic. The result is sorted so the
    key does not depend on word order in the request.
    """
    counts: Counter = Counter()
    for item in items:
        for token in _TOKEN_SPLIT.split(item.query.lower()):
            if len(token) <= 2 or token.isdigit() or token in STOPWORDS:
                continue
            counts[token] += 1

    ranked = sorted(counts.items(), key=lambda pair: (-pair[1], -len(pair[0]), pair[0]))
    return sorted(token for token, _ in ranked[:limit])


def _bound_key(key: str) -> str:
    if len(key) <= MAX_KEY_LENGTH:
        return key
    digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:10]
    return f"{key[:MAX_KEY_LENGTH - 11]}_{digest}"


def fallback_cluster(category: str, items: List[LineItem]) -> IntentCluster:
    tokens = significant_tokens(items)
    suffix = "_".join(tokens) if tokens else "generic"
    return IntentCluster(
        cluster_key=_bound_key(f"c_{category}_{suffix}"),
        labels=tokens,
        confidence=FALLBACK_CONFIDENCE,
    )


def sanitize_cluster_key(raw: str) -> str:
    key = _KEY_UNSAFE.sub("_", (raw or "").strip().lower()).strip("_")
    return _bound_key(key)


class _ClusterResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    cluster_key: str
    labels: List[str]
    confidence: float


def _build_prompt(category: str, items: List[LineItem]) -> str:
    return "\n".join([
        "You are a strict JSON API. Group this procurement request into a reusable intent bucket.",
        "Different phrasings of the same need must map to the same short snake_case key.",
        'Return only JSON: {"cluster_key":"...","labels":["..."],"confidence":0.0}',
        json.dumps({"category": category, "items": [item.model_dump() for item in items]}),
    ])


def _from_advisory(payload: _ClusterResponse) -> IntentCluster:
    key = sanitize_cluster_key(payload.cluster_key)
    if not key:
        raise ValueError("cluster_key is empty after sanitization")
    labels = sorted({label.strip().lower() for label in payload.labels if isinstance(label, str) and label.strip()})
    return IntentCluster(cluster_key=key, labels=labels, confidence=clamp(payload.confidence))


async def resolve_cluster(
    category: str,
    items: List[LineItem],
    advisory: Optional[AdvisoryBackend] = None,
    *,
    timeout: float = 8.0,
) -> AdvisoryOutcome[IntentCluster]:
    call = None
    if advisory is not None and items:
        async def call() -> IntentCluster:
            raw = await advisory.complete_json(_build_prompt(category, items), timeout=timeout)
            return _from_advisory(_ClusterResponse.model_validate(raw))

    outcome = await consult("cluster", call, lambda: fallback_cluster(category, items), timeout=timeout)
    logger.info(f"[Cluster] key={outcome.value.cluster_key} source={outcome.source}")
    return outcome
