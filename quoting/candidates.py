"""Site candidate resolver and catalog loader."""

import logging
from typing import Dict, Iterable, List, Optional

from exceptions import StoreError
from observability.metrics import store_failures_total
from quoting.models import ClassificationResult, SiteCatalogEntry
from quoting.sites import DEFAULT_SITE_PLANS, get_profile, is_known_site, sanitize_sites
from quoting.store import QuoteStore, SitePlanSource

logger = logging.getLogger(__name__)

HIGH_CONFIDENCE = 0.75
MAX_ALTERNATES = 3
GENERIC_CATEGORY = "unknown"

DEFAULT_PRIORITY = 100
DEFAULT_RELIABILITY = 0.62
DEFAULT_LATENCY_MS = 2200
DEFAULT_BLOCK_RATE = 0.35


async def _plan_for(source: SitePlanSource, category: str) -> List[str]:
    try:
        sites = await source.get_site_plan(category)
    except StoreError as e:
        logger.warning(f"[Candidates] site plan read failed for {category}: {e}")
        store_failures_total.labels(operation="get_site_plan").inc()
        sites = None
    if sites is None:
        sites = DEFAULT_SITE_PLANS.get(category, [])
    return [s for s in sites if isinstance(s, str)]


async def resolve_candidates(
    classification: ClassificationResult,
    source: SitePlanSource,
) -> List[str]:
    """
    Union of the primary plan, up to three alternate-category plans (only while
    classifier confidence is below HIGH_CONFIDENCE), advisory site suggestions
    and the generic fallback plan, sanitized against the known-site registry.
    """
    raw: List[str] = []
    raw.extend(await _plan_for(source, classification.category))

    if classification.confidence < HIGH_CONFIDENCE:
        for alternate in classification.category_candidates[:MAX_ALTERNATES]:
            if alternate != classification.category:
                raw.extend(await _plan_for(source, alternate))

    raw.extend(classification.suggested_sites)

    if classification.category != GENERIC_CATEGORY:
        raw.extend(await _plan_for(source, GENERIC_CATEGORY))

    candidates = sanitize_sites(raw)
    logger.info(f"[Candidates] {len(raw)} raw -> {len(candidates)} sanitized candidates")
    return candidates


async def load_catalog(store: QuoteStore, site_ids: Iterable[str]) -> Dict[str, SiteCatalogEntry]:
    """Catalog rows for exactly the requested known sites; empty on store failure."""
    requested = [s for s in site_ids if is_known_site(s)]
    if not requested:
        return {}
    try:
        rows = await store.load_catalog(requested)
    except StoreError as e:
        logger.warning(f"[Catalog] load failed, scoring with defaults: {e}")
        store_failures_total.labels(operation="load_catalog").inc()
        return {}
    wanted = set(requested)
    return {site_id: row for site_id, row in rows.items() if site_id in wanted}


def default_catalog_entry(site_id: str) -> SiteCatalogEntry:
    """
    Stand-in for a missing catalog row.

    Rates and latency take the fixed defaults; priority and the enabled flag
    come from the registry seed so an empty catalog still ranks by priority
    and never dispatches a site the seeded catalog disables.
    """
    profile = get_profile(site_id)
    return SiteCatalogEntry(
        site_id=site_id,
        category=profile.category if profile else GENERIC_CATEGORY,
        domain=profile.domain if profile else "",
        search_url_template=profile.search_url_template if profile else "",
        enabled=profile.enabled if profile else True,
        priority=profile.priority if profile else DEFAULT_PRIORITY,
        reliability_score=DEFAULT_RELIABILITY,
        block_rate=DEFAULT_BLOCK_RATE,
        avg_latency_ms=DEFAULT_LATENCY_MS,
    )


def build_site_overrides(site_ids: Iterable[str], catalog: Dict[str, SiteCatalogEntry]) -> Dict[str, str]:
    overrides: Dict[str, str] = {}
    for site_id in site_ids:
        row: Optional[SiteCatalogEntry] = catalog.get(site_id)
        if row and row.enabled and "{q}" in (row.search_url_template or ""):
            overrides[site_id] = row.search_url_template
    return overrides
