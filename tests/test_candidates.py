"""Tests for site candidate resolution and catalog loading."""

import pytest

from exceptions import StoreError
from quoting.candidates import (
    DEFAULT_BLOCK_RATE,
    DEFAULT_LATENCY_MS,
    DEFAULT_RELIABILITY,
    build_site_overrides,
    default_catalog_entry,
    load_catalog,
    resolve_candidates,
)
from quoting.models import ClassificationResult, SiteCatalogEntry
from quoting.sites import sanitize_site_id, sanitize_sites
from quoting.store import InMemoryQuoteStore, StaticSitePlanSource


class FailingStore(InMemoryQuoteStore):
    async def get_site_plan(self, category):
        raise StoreError("db down")

    async def load_catalog(self, site_ids):
        raise StoreError("db down")


PLANS = {
    "office": ["staples", "Office Depot", "quill"],
    "electronics": ["amazon", "newegg", "not-a-site"],
    "restaurant": ["katom"],
    "unknown": ["amazon", "walmart"],
}


class TestSanitizer:
    def test_folds_case_punctuation_and_domains(self):
        assert sanitize_site_id("  STAPLES ") == "staples"
        assert sanitize_site_id("Office Depot") == "officedepot"
        assert sanitize_site_id("www.officedepot.com") == "officedepot"
        assert sanitize_site_id("amazon-business") == "amazon_business"

    def test_unknown_and_non_strings_are_dropped(self):
        assert sanitize_site_id("evil.example") is None
        assert sanitize_site_id(42) is None
        assert sanitize_sites(["amazon", "AMAZON", "bogus", None, "newegg"]) == ["amazon", "newegg"]


class TestResolveCandidates:
    @pytest.mark.asyncio
    async def test_unions_primary_alternates_suggestions_and_generic(self):
        classification = ClassificationResult(
            category="office",
            category_candidates=["electronics", "restaurant"],
            confidence=0.4,
            suggested_sites=["uline"],
        )
        candidates = await resolve_candidates(classification, StaticSitePlanSource(PLANS))
        assert candidates == ["staples", "officedepot", "quill", "amazon", "newegg", "katom", "uline", "walmart"]

    @pytest.mark.asyncio
    async def test_high_confidence_skips_alternates(self):
        classification = ClassificationResult(
            category="office",
            category_candidates=["electronics"],
            confidence=0.9,
        )
        candidates = await resolve_candidates(classification, StaticSitePlanSource(PLANS))
        assert candidates == ["staples", "officedepot", "quill", "amazon", "walmart"]

    @pytest.mark.asyncio
    async def test_at_most_three_alternates(self):
        plans = {
            "office": [], "unknown": [],
            "electronics": ["newegg"], "restaurant": ["katom"], "electrical": ["grainger"],
        }
        classification = ClassificationResult(
            category="office",
            category_candidates=["electronics", "restaurant", "electrical", "unknown"],
            confidence=0.2,
        )
        candidates = await resolve_candidates(classification, StaticSitePlanSource(plans))
        assert candidates == ["newegg", "katom", "grainger"]

    @pytest.mark.asyncio
    async def test_missing_plan_uses_seed_defaults(self):
        classification = ClassificationResult(category="electrical", confidence=0.9)
        candidates = await resolve_candidates(classification, StaticSitePlanSource({"unknown": []}))
        assert candidates == ["grainger", "zoro", "homedepot", "platt", "lowes", "mcmaster"]

    @pytest.mark.asyncio
    async def test_store_failure_uses_seed_defaults(self):
        classification = ClassificationResult(category="restaurant", confidence=0.9)
        candidates = await resolve_candidates(classification, FailingStore())
        assert candidates[:3] == ["webstaurantstore", "katom", "centralrestaurant"]


class TestLoadCatalog:
    @pytest.mark.asyncio
    async def test_returns_exactly_requested_known_sites(self):
        store = InMemoryQuoteStore(catalog=[
            SiteCatalogEntry(site_id="staples", priority=5),
            SiteCatalogEntry(site_id="quill", priority=7),
        ])
        catalog = await load_catalog(store, ["staples", "officedepot"])
        assert list(catalog) == ["staples"]
        assert catalog["staples"].priority == 5

    @pytest.mark.asyncio
    async def test_store_failure_returns_empty_map(self):
        assert await load_catalog(FailingStore(), ["staples"]) == {}

    def test_default_entry_uses_fixed_rates_and_seed_priority(self):
        entry = default_catalog_entry("officedepot")
        assert entry.priority == 20
        assert entry.reliability_score == DEFAULT_RELIABILITY
        assert entry.block_rate == DEFAULT_BLOCK_RATE
        assert entry.avg_latency_ms == DEFAULT_LATENCY_MS
        assert entry.enabled is True
        assert entry.js_heavy is False

    def test_default_entry_keeps_seed_disabled_flag(self):
        assert default_catalog_entry("walmart_business").enabled is False


def test_site_overrides_only_for_enabled_templated_rows():
    catalog = {
        "staples": SiteCatalogEntry(site_id="staples", search_url_template="https://staples.test/s?q={q}"),
        "quill": SiteCatalogEntry(site_id="quill", search_url_template="https://quill.test/search"),
        "uline": SiteCatalogEntry(site_id="uline", enabled=False, search_url_template="https://uline.test/{q}"),
    }
    overrides = build_site_overrides(["staples", "quill", "uline", "officedepot"], catalog)
    assert overrides == {"staples": "https://staples.test/s?q={q}"}
