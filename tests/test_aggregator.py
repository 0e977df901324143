"""Tests for match aggregation and best-offer selection."""

import math

from quoting.aggregator import QuoteAggregator, select_best
from quoting.models import BestOffer, LineItem, SiteMatch


def _match(site, status="ok", price=None, url="https://x.example/p"):
    return SiteMatch(site_id=site, status=status, price=price, url=url if price is not None else None)


def test_best_is_cheapest_ok_match():
    matches = [_match("staples", price=12.0), _match("quill", price=9.5), _match("uline", price=11.0)]
    assert select_best(matches) == BestOffer(site_id="quill", price=9.5, url="https://x.example/p")


def test_cached_and_blocked_never_become_best():
    matches = [
        _match("staples", price=12.0),
        _match("quill", status="cached", price=1.0),
        _match("uline", status="blocked", price=2.0),
    ]
    assert select_best(matches).site_id == "staples"


def test_ok_without_url_or_finite_price_is_ineligible():
    matches = [
        SiteMatch(site_id="staples", status="ok", price=5.0, url=None),
        SiteMatch(site_id="quill", status="ok", price=math.inf, url="https://q"),
        SiteMatch(site_id="uline", status="ok", price=None, url="https://u"),
    ]
    assert select_best(matches) is None


def test_ties_go_to_first_seen():
    matches = [_match("staples", price=10.0), _match("quill", price=10.0)]
    assert select_best(matches).site_id == "staples"


def test_best_recomputed_after_every_match():
    agg = QuoteAggregator([LineItem(query="paper towels", qty=1)])
    assert agg.add_match(0, _match("staples", status="not_found")) is None
    assert agg.add_match(0, _match("quill", price=20.0)).site_id == "quill"
    assert agg.add_match(0, _match("staples", price=15.0)).site_id == "staples"
    assert agg.add_match(0, _match("uline", status="cached", price=3.0)).site_id == "staples"
    assert len(agg.results[0].matches) == 4
    assert agg.match_count == 4


def test_hint_only_fills_missing_best():
    agg = QuoteAggregator([LineItem(query="toner", qty=1), LineItem(query="pens", qty=1)])
    agg.add_match(0, _match("staples", price=30.0))
    hint = BestOffer(site_id="quill", price=5.0, url="https://quill.example/p")

    assert agg.merge_hint(0, hint).site_id == "staples"
    assert agg.merge_hint(1, hint) == hint


def test_own_best_overrides_earlier_hint():
    agg = QuoteAggregator([LineItem(query="toner", qty=1)])
    hint = BestOffer(site_id="quill", price=5.0, url="https://quill.example/p")
    agg.merge_hint(0, hint)
    assert agg.best_for(0) == hint
    agg.add_match(0, _match("staples", price=30.0))
    assert agg.best_for(0).site_id == "staples"


def test_unknown_item_index_is_ignored():
    agg = QuoteAggregator([LineItem(query="toner", qty=1)])
    assert agg.add_match(3, _match("staples", price=1.0)) is None
    assert agg.match_count == 0
