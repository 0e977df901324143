"""Per-item match accumulation and best-offer selection."""

import logging
from typing import Dict, List, Optional

from quoting.models import BestOffer, LineItem, QuoteItemResult, SiteMatch

logger = logging.getLogger(__name__)


def select_best(matches: List[SiteMatch]) -> Optional[BestOffer]:
    """Lowest-priced ok match with a finite price and a url; first seen wins ties."""
    best: Optional[SiteMatch] = None
    for match in matches:
        if not match.is_best_eligible():
            continue
        if best is None or match.price < best.price:
            best = match
    if best is None:
        return None
    return BestOffer(site_id=best.site_id, price=best.price, url=best.url)


class QuoteAggregator:
    """
    Accumulates matches for every line item of one run.

    ``best`` is recomputed after each match. A best hint arriving with an
    ``item_done`` event only fills the slot when the item has no computed best.
    """

    def __init__(self, items: List[LineItem]):
        self.items = list(items)
        self.results: List[QuoteItemResult] = [QuoteItemResult(query=item.query) for item in self.items]
        self._hints: Dict[int, BestOffer] = {}

    def has_item(self, item_index: int) -> bool:
        return 0 <= item_index < len(self.results)

    def add_match(self, item_index: int, match: SiteMatch) -> Optional[BestOffer]:
        if not self.has_item(item_index):
            logger.warning(f"[Aggregator] match for unknown item index {item_index} ignored")
            return None
        result = self.results[item_index]
        result.matches.append(match)
        result.best = select_best(result.matches) or self._hints.get(item_index)
        return result.best

    def merge_hint(self, item_index: int, hint: Optional[BestOffer]) -> Optional[BestOffer]:
        if not self.has_item(item_index):
            return None
        if hint is not None and item_index not in self._hints:
            self._hints[item_index] = hint
        result = self.results[item_index]
        computed = select_best(result.matches)
        result.best = computed or self._hints.get(item_index)
        return result.best

    def best_for(self, item_index: int) -> Optional[BestOffer]:
        if not self.has_item(item_index):
            return None
        return self.results[item_index].best

    def query_for(self, item_index: int) -> str:
        return self.results[item_index].query if self.has_item(item_index) else ""

    @property
    def match_count(self) -> int:
        return sum(len(result.matches) for result in self.results)
