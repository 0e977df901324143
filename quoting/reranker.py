"""
Advisory reordering of the top-ranked sites.

The text service may reorder or ignore candidates but can never drop one or
introduce a site outside the input set.
"""

import json
import logging
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from quoting.advisory import consult
from quoting.models import AdvisoryOutcome, LineItem
from quoting.sites import sanitize_site_id
from services.llm import AdvisoryBackend

logger = logging.getLogger(__name__)

DEFAULT_TOP_N = 12


class _RerankResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    site_order: List[str]


def _build_prompt(items: List[LineItem], category: str, candidates: List[str]) -> str:
    return "\n".join([
        "You are a strict JSON API. Reorder vendor sites by how likely they are to stock these items at a good price.",
        'Return only JSON: {"site_order":["site_id", ...]} using only the given candidate ids.',
        json.dumps({
            "items": [item.model_dump() for item in items],
            "category": category,
            "candidates": candidates,
        }),
    ])


def merge_order(candidates: List[str], advised: List[str]) -> List[str]:
    """
    Advised ids first (only those in ``candidates``, first occurrence wins),
    then every omitted candidate in its original order.
    """
    allowed = set(candidates)
    ordered: List[str] = []
    for raw in advised:
        site_id = sanitize_site_id(raw)
        if site_id in allowed and site_id not in ordered:
            ordered.append(site_id)
    ordered.extend(site_id for site_id in candidates if site_id not in ordered)
    return ordered


async def rerank_sites(
    ranked: List[str],
    items: List[LineItem],
    category: str,
    advisory: Optional[AdvisoryBackend] = None,
    *,
    top_n: int = DEFAULT_TOP_N,
    timeout: float = 8.0,
) -> AdvisoryOutcome[List[str]]:
    """Rerank the first ``top_n`` sites; sites beyond the cap keep their place after them."""
    head = list(ranked[:max(1, top_n)])
    tail = list(ranked[len(head):])

    call = None
    if advisory is not None and len(head) > 1:
        async def call() -> List[str]:
            raw = await advisory.complete_json(_build_prompt(items, category, head), timeout=timeout)
            return merge_order(head, _RerankResponse.model_validate(raw).site_order)

    outcome = await consult("reranker", call, lambda: list(head), timeout=timeout)
    order = [*outcome.value, *tail]
    if outcome.source == "advisory" and outcome.value != head:
        logger.info(f"[Reranker] advisory order applied: {outcome.value}")
    return AdvisoryOutcome(value=order, source=outcome.source, reason=outcome.reason)
