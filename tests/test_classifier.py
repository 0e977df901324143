"""Tests for the category classifier and its keyword fallback."""

import asyncio

import pytest

from quoting.classifier import FALLBACK_CONFIDENCE, classify_items, keyword_classify
from quoting.models import LineItem
from tests.conftest import FakeAdvisory


def _items(*queries):
    return [LineItem(query=q, qty=1) for q in queries]


class TestKeywordClassify:
    def test_paper_towels_is_office(self):
        result = keyword_classify(_items("paper towels"))
        assert result.category == "office"
        assert result.category_candidates == []
        assert result.confidence == FALLBACK_CONFIDENCE

    def test_top_tie_is_unknown_with_both_as_alternates(self):
        result = keyword_classify(_items("laptop paper"))
        assert result.category == "unknown"
        assert result.category_candidates == ["office", "electronics"]

    def test_no_match_is_unknown(self):
        result = keyword_classify(_items("zzz widget"))
        assert result.category == "unknown"
        assert result.category_candidates == []

    def test_weaker_categories_become_alternates(self):
        result = keyword_classify(_items("gpu monitor", "hdmi switch"))
        # electronics: gpu, monitor, hdmi; electrical: switch
        assert result.category == "electronics"
        assert result.category_candidates == ["electrical"]

    def test_fallback_confidence_is_low(self):
        assert 0.35 <= FALLBACK_CONFIDENCE <= 0.4


class TestClassifyItems:
    @pytest.mark.asyncio
    async def test_without_advisory_uses_fallback(self):
        outcome = await classify_items(_items("paper towels"))
        assert outcome.source == "fallback"
        assert outcome.reason == "advisory_unavailable"
        assert outcome.value.category == "office"

    @pytest.mark.asyncio
    async def test_advisory_result_is_sanitized(self):
        advisory = FakeAdvisory({"classifier": {
            "normalized_items": [{"query": "Dell Monitor", "qty": 2}],
            "category": "electronics",
            "category_candidates": ["office", "bogus", "electronics"],
            "query_variants": ["dell 27 monitor", "  "],
            "confidence": 1.4,
            "site_plan": ["Best Buy", "newegg.com", "evil.com"],
        }})
        outcome = await classify_items(_items("dell monitor"), advisory)

        assert outcome.source == "advisory"
        result = outcome.value
        assert result.category == "electronics"
        assert result.category_candidates == ["office"]
        assert result.confidence == 1.0
        assert result.normalized_items == [LineItem(query="dell monitor", qty=2)]
        assert result.query_variants == ["dell 27 monitor"]
        assert result.suggested_sites == ["bestbuy", "newegg"]

    @pytest.mark.asyncio
    async def test_schema_mismatch_falls_back(self):
        advisory = FakeAdvisory({"classifier": {"category": "office"}})
        outcome = await classify_items(_items("paper towels"), advisory)
        assert outcome.used_fallback
        assert "ValidationError" in outcome.reason
        assert outcome.value.confidence == FALLBACK_CONFIDENCE

    @pytest.mark.asyncio
    async def test_unknown_category_falls_back(self):
        advisory = FakeAdvisory({"classifier": {
            "normalized_items": [],
            "category": "groceries",
            "category_candidates": [],
            "query_variants": [],
            "confidence": 0.9,
            "site_plan": [],
        }})
        outcome = await classify_items(_items("toner"), advisory)
        assert outcome.used_fallback
        assert outcome.value.category == "office"

    @pytest.mark.asyncio
    async def test_timeout_falls_back(self):
        class SlowAdvisory:
            async def complete_json(self, prompt, *, timeout):
                await asyncio.sleep(5)

        outcome = await classify_items(_items("toner"), SlowAdvisory(), timeout=0.01)
        assert outcome.used_fallback
        assert "TimeoutError" in outcome.reason

    @pytest.mark.asyncio
    async def test_grocery_items_never_route_to_electronics(self):
        advisory = FakeAdvisory({"classifier": {
            "normalized_items": [{"query": "stevia packets", "qty": 1}],
            "category": "electronics",
            "category_candidates": [],
            "query_variants": [],
            "confidence": 0.8,
            "site_plan": [],
        }})
        outcome = await classify_items(_items("stevia packets"), advisory)
        assert outcome.source == "advisory"
        assert outcome.value.category == "restaurant"
