"""Tests for static site scoring."""

import math

import pytest

from quoting.models import SiteCatalogEntry
from quoting.scorer import JS_HEAVY_PENALTY, score_candidates, static_score


def _entry(site_id="staples", **kwargs):
    defaults = dict(priority=100, reliability_score=0.62, block_rate=0.35, avg_latency_ms=2200)
    defaults.update(kwargs)
    return SiteCatalogEntry(site_id=site_id, **defaults)


def test_formula():
    entry = _entry(priority=10, reliability_score=0.9, block_rate=0.1, avg_latency_ms=900)
    expected = 1000 - 10 * 3 + 0.9 * 420 - 0.1 * 240 - 900 / 45
    assert static_score(entry) == pytest.approx(expected)


def test_js_heavy_penalty_comes_from_catalog_row():
    plain = _entry(site_id="bestbuy")
    heavy = _entry(site_id="bestbuy", js_heavy=True)
    assert static_score(heavy) == pytest.approx(static_score(plain) - JS_HEAVY_PENALTY)


def test_disabled_site_scores_negative_infinity():
    assert static_score(_entry(enabled=False)) == -math.inf


def test_lower_priority_number_scores_higher():
    assert static_score(_entry(priority=10)) > static_score(_entry(priority=20))


def test_disabled_sites_are_removed_and_order_is_kept():
    catalog = {
        "staples": _entry("staples", priority=10),
        "quill": _entry("quill", enabled=False),
    }
    scores = score_candidates(["officedepot", "staples", "quill"], catalog)
    assert list(scores) == ["officedepot", "staples"]


def test_missing_rows_use_defaults_with_seed_priority():
    scores = score_candidates(["staples", "officedepot", "quill", "amazon_business"], {})
    ordered = sorted(scores, key=scores.get, reverse=True)
    assert ordered == ["staples", "officedepot", "quill", "amazon_business"]


def test_seed_disabled_sites_drop_out_without_catalog_rows():
    scores = score_candidates(["amazon", "walmart", "bestbuy"], {})
    assert list(scores) == ["amazon", "bestbuy"]


def test_empty_catalog_ranks_default_plans_by_seed_priority():
    candidates = ["amazon", "bestbuy", "target", "ebay", "newegg", "google_shopping"]
    scores = score_candidates(candidates, {})
    ordered = sorted(scores, key=scores.get, reverse=True)
    assert ordered == ["amazon", "bestbuy", "google_shopping", "newegg", "target", "ebay"]
