"""
Category classifier: advisory service with a keyword-overlap fallback.

The advisory path asks the text service for a strict JSON classification.
Any deviation from the schema (wrong types, missing fields, unknown category,
timeout, non-2xx) falls back to ``keyword_classify``, which is a pure
function of the normalized items.
"""

import json
import logging
import re
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from quoting.advisory import consult
from quoting.intake import normalize_items
from quoting.models import (
    CATEGORIES,
    AdvisoryOutcome,
    Category,
    ClassificationResult,
    LineItem,
    RawLineItem,
    clamp,
)
from quoting.sites import sanitize_sites
from services.llm import AdvisoryBackend

logger = logging.getLogger(__name__)

FALLBACK_CONFIDENCE = 0.38

CATEGORY_TERMS: Dict[str, List[str]] = {
    "electronics": ["macbook", "laptop", "monitor", "ssd", "gpu", "iphone", "router", "keyboard", "hdmi", "tablet"],
    "office": ["paper", "staple", "toner", "printer", "notebook", "pen", "folder", "envelope", "binder", "towel"],
    "restaurant": ["food", "pan", "fryer", "cutlery", "table", "napkin", "restaurant", "skillet", "tray"],
    "electrical": ["breaker", "wire", "conduit", "switch", "outlet", "electrical", "voltage", "romex", "junction"],
}

GROCERY_HINTS = ("sugar", "stevia", "sweetener", "coffee", "tea", "snack", "flour", "rice", "food")

_TERM_PATTERNS = {
    category: [re.compile(rf"\b{re.escape(term)}(?:s|es)?\b") for term in terms]
    for category, terms in CATEGORY_TERMS.items()
}


def _items_text(items: List[LineItem]) -> str:
    return " ".join(item.query.lower() for item in items)


def _term_counts(text: str) -> Dict[str, int]:
    return {
        category: sum(1 for pattern in patterns if pattern.search(text))
        for category, patterns in _TERM_PATTERNS.items()
    }


def keyword_classify(items: List[LineItem]) -> ClassificationResult:
    """
    Deterministic classification by term overlap.

    The category with the strictly highest match count wins; a tie at the top
    (or no match at all) yields ``unknown``. Other categories with at least one
    match become alternates, strongest first.
    """
    counts = _term_counts(_items_text(items))
    ranked = sorted(
        ((category, count) for category, count in counts.items() if count > 0),
        key=lambda pair: (-pair[1], CATEGORIES.index(pair[0])),
    )

    category: Category = "unknown"
    if ranked and (len(ranked) == 1 or ranked[0][1] > ranked[1][1]):
        category = ranked[0][0]

    candidates = [c for c, _ in ranked if c != category]
    return ClassificationResult(
        category=category,
        category_candidates=candidates,
        confidence=FALLBACK_CONFIDENCE,
        normalized_items=list(items),
    )


def has_grocery_signal(items: List[LineItem]) -> bool:
    text = _items_text(items)
    return any(re.search(rf"\b{hint}\b", text) for hint in GROCERY_HINTS)


class _ClassifierResponse(BaseModel):
    """Strict response contract for the advisory classifier."""

    model_config = ConfigDict(extra="ignore")

    normalized_items: List[RawLineItem]
    category: Category
    category_candidates: List[str]
    query_variants: List[str]
    confidence: float
    site_plan: List[str]


def _build_prompt(items: List[LineItem]) -> str:
    return "\n".join([
        "You are a strict JSON API. Classify procurement items.",
        "Return only JSON in this shape:",
        '{"normalized_items":[{"query":"...","qty":1}],'
        '"category":"electronics|office|restaurant|electrical|unknown",'
        '"category_candidates":["..."],"query_variants":["..."],'
        '"confidence":0.0,"site_plan":["..."]}',
        "Use concise normalized queries. category_candidates lists plausible alternate categories.",
        json.dumps({"items": [item.model_dump() for item in items]}),
    ])


def _from_advisory(payload: _ClassifierResponse, items: List[LineItem]) -> ClassificationResult:
    advised_items = normalize_items(payload.normalized_items)
    effective_items = advised_items or list(items)

    category: Category = payload.category
    if category == "electronics" and has_grocery_signal(effective_items):
        category = "restaurant"

    candidates: List[Category] = []
    for raw in payload.category_candidates:
        value = str(raw).strip().lower()
        if value in CATEGORIES and value != category and value not in candidates:
            candidates.append(value)

    variants = [v.strip() for v in payload.query_variants if isinstance(v, str) and v.strip()]
    return ClassificationResult(
        category=category,
        category_candidates=candidates,
        confidence=clamp(payload.confidence),
        normalized_items=effective_items,
        query_variants=variants,
        suggested_sites=sanitize_sites(payload.site_plan),
    )


async def classify_items(
    items: List[LineItem],
    advisory: Optional[AdvisoryBackend] = None,
    *,
    timeout: float = 8.0,
) -> AdvisoryOutcome[ClassificationResult]:
    """Classify normalized items; never raises for advisory failures."""

    call = None
    if advisory is not None and items:
        async def call() -> ClassificationResult:
            raw = await advisory.complete_json(_build_prompt(items), timeout=timeout)
            return _from_advisory(_ClassifierResponse.model_validate(raw), items)

    outcome = await consult("classifier", call, lambda: keyword_classify(items), timeout=timeout)
    logger.info(
        f"[Classifier] category={outcome.value.category} confidence={outcome.value.confidence:.2f} "
        f"alternates={outcome.value.category_candidates} source={outcome.source}"
    )
    return outcome
