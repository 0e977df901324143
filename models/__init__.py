"""
Table exports.

- quotes.py: site plans, site catalog, per-cluster stats, runs, results, interactions
"""

from models.quotes import (
    SitePlan,
    SiteCatalog,
    IntentSiteStatRow,
    QuoteRun,
    QuoteResult,
    QuoteInteraction,
)

__all__ = [
    "SitePlan",
    "SiteCatalog",
    "IntentSiteStatRow",
    "QuoteRun",
    "QuoteResult",
    "QuoteInteraction",
]
