"""
Persistence interface for plans, catalog rows, per-cluster statistics and run records.

``update_catalog_entry`` / ``update_intent_stat`` take a merge function and
perform the read-modify-write for one key as a unit, so implementations can
wrap it in a transaction with a row lock.
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from quoting.models import (
    InteractionRecord,
    IntentSiteStat,
    RunRecord,
    RunStatus,
    SiteCatalogEntry,
    SiteMatch,
)
from quoting.sites import DEFAULT_SITE_PLANS

CatalogMerge = Callable[[Optional[SiteCatalogEntry]], SiteCatalogEntry]
IntentStatMerge = Callable[[Optional[IntentSiteStat]], IntentSiteStat]


class SitePlanSource(ABC):
    """Read-only category -> site list configuration."""

    @abstractmethod
    async def get_site_plan(self, category: str) -> Optional[List[str]]:
        pass


class StaticSitePlanSource(SitePlanSource):
    def __init__(self, plans: Optional[Dict[str, List[str]]] = None):
        self.plans = {k: list(v) for k, v in (plans if plans is not None else DEFAULT_SITE_PLANS).items()}

    async def get_site_plan(self, category: str) -> Optional[List[str]]:
        sites = self.plans.get(category)
        return list(sites) if sites is not None else None


class QuoteStore(SitePlanSource):
    @abstractmethod
    async def load_catalog(self, site_ids: Iterable[str]) -> Dict[str, SiteCatalogEntry]:
        pass

    @abstractmethod
    async def load_intent_stats(self, cluster_key: str, site_ids: Iterable[str]) -> Dict[str, IntentSiteStat]:
        pass

    @abstractmethod
    async def update_catalog_entry(self, site_id: str, merge: CatalogMerge) -> SiteCatalogEntry:
        pass

    @abstractmethod
    async def update_intent_stat(self, cluster_key: str, site_id: str, merge: IntentStatMerge) -> IntentSiteStat:
        pass

    @abstractmethod
    async def create_run(self, record: RunRecord) -> None:
        pass

    @abstractmethod
    async def finish_run(self, run_id: str, status: RunStatus, duration_ms: Optional[int] = None) -> None:
        pass

    @abstractmethod
    async def record_match(self, run_id: str, item_index: int, match: SiteMatch) -> None:
        pass

    @abstractmethod
    async def record_interaction(self, interaction: InteractionRecord) -> None:
        pass

    @abstractmethod
    async def list_runs(self, limit: int = 20) -> List[RunRecord]:
        pass


class InMemoryQuoteStore(QuoteStore):
    """Process-local store used when no database is configured, and in tests."""

    def __init__(
        self,
        plans: Optional[Dict[str, List[str]]] = None,
        catalog: Optional[Iterable[SiteCatalogEntry]] = None,
        intent_stats: Optional[Iterable[IntentSiteStat]] = None,
    ):
        self.plans: Dict[str, List[str]] = {
            k: list(v) for k, v in (plans if plans is not None else DEFAULT_SITE_PLANS).items()
        }
        self.catalog: Dict[str, SiteCatalogEntry] = {e.site_id: e for e in catalog or []}
        self.intent_stats: Dict[Tuple[str, str], IntentSiteStat] = {
            (s.cluster_key, s.site_id): s for s in intent_stats or []
        }
        self.runs: Dict[str, RunRecord] = {}
        self.matches: List[Tuple[str, int, SiteMatch]] = []
        self.interactions: List[InteractionRecord] = []

    async def get_site_plan(self, category: str) -> Optional[List[str]]:
        sites = self.plans.get(category)
        return list(sites) if sites is not None else None

    async def load_catalog(self, site_ids: Iterable[str]) -> Dict[str, SiteCatalogEntry]:
        return {
            site_id: self.catalog[site_id].model_copy()
            for site_id in site_ids
            if site_id in self.catalog
        }

    async def load_intent_stats(self, cluster_key: str, site_ids: Iterable[str]) -> Dict[str, IntentSiteStat]:
        return {
            site_id: self.intent_stats[(cluster_key, site_id)].model_copy()
            for site_id in site_ids
            if (cluster_key, site_id) in self.intent_stats
        }

    async def update_catalog_entry(self, site_id: str, merge: CatalogMerge) -> SiteCatalogEntry:
        previous = self.catalog.get(site_id)
        updated = merge(previous.model_copy() if previous else None)
        self.catalog[site_id] = updated
        return updated

    async def update_intent_stat(self, cluster_key: str, site_id: str, merge: IntentStatMerge) -> IntentSiteStat:
        previous = self.intent_stats.get((cluster_key, site_id))
        updated = merge(previous.model_copy() if previous else None)
        self.intent_stats[(cluster_key, site_id)] = updated
        return updated

    async def create_run(self, record: RunRecord) -> None:
        self.runs[record.run_id] = record.model_copy()

    async def finish_run(self, run_id: str, status: RunStatus, duration_ms: Optional[int] = None) -> None:
        record = self.runs.get(run_id)
        if record is None:
            return
        record.status = status
        if duration_ms is not None:
            record.duration_ms = duration_ms

    async def record_match(self, run_id: str, item_index: int, match: SiteMatch) -> None:
        self.matches.append((run_id, item_index, match.model_copy()))

    async def record_interaction(self, interaction: InteractionRecord) -> None:
        self.interactions.append(interaction.model_copy())

    async def list_runs(self, limit: int = 20) -> List[RunRecord]:
        runs = sorted(self.runs.values(), key=lambda r: r.created_at, reverse=True)
        return [r.model_copy() for r in runs[:limit]]
