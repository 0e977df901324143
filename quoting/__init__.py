"""Adaptive multi-vendor quote orchestration."""

from quoting.models import (
    BestOffer,
    ClassificationResult,
    IntentCluster,
    IntentSiteStat,
    LineItem,
    QuoteEvent,
    QuoteItemResult,
    QuoteRunRequest,
    RankedSitePlan,
    SiteCatalogEntry,
    SiteMatch,
)
from quoting.orchestrator import QuoteOrchestrator, prepare_items
from quoting.store import InMemoryQuoteStore, QuoteStore, SitePlanSource, StaticSitePlanSource
from quoting.transport import ScrapeTransport

__all__ = [
    "BestOffer",
    "ClassificationResult",
    "IntentCluster",
    "IntentSiteStat",
    "LineItem",
    "QuoteEvent",
    "QuoteItemResult",
    "QuoteRunRequest",
    "RankedSitePlan",
    "SiteCatalogEntry",
    "SiteMatch",
    "QuoteOrchestrator",
    "prepare_items",
    "InMemoryQuoteStore",
    "QuoteStore",
    "SitePlanSource",
    "StaticSitePlanSource",
    "ScrapeTransport",
]
