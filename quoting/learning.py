"""
Learning persister: folds one run's per-site outcomes into the catalog and
the per-cluster statistics.

Counters add. Latency is a weighted running mean:

    blended = round((prev * max(prev_runs, 1) + sum_observed) / (max(prev_runs, 1) + n_observed))

Rates are recomputed from the new counters and clamped, reliability into
[0.02, 0.99] and block rate into [0, 1]. The same fold is applied to both
stores.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Dict, Hashable, Iterable, Optional, TypeVar

from exceptions import StoreError
from observability.metrics import store_failures_total
from quoting.candidates import default_catalog_entry
from quoting.models import (
    InteractionRecord,
    IntentSiteStat,
    OutcomeCounters,
    SiteCatalogEntry,
    SiteMatch,
    clamp,
)
from quoting.sites import sanitize_site_id
from quoting.store import QuoteStore

logger = logging.getLogger(__name__)

MIN_RELIABILITY = 0.02
MAX_RELIABILITY = 0.99

C = TypeVar("C", bound=OutcomeCounters)


@dataclass
class SiteOutcomeTally:
    """What one run observed for one site."""

    runs: int = 0
    success: int = 0
    blocked: int = 0
    unsupported: int = 0
    error: int = 0
    not_found: int = 0
    latency_sum: int = 0
    latency_samples: int = 0

    def observe(self, match: SiteMatch) -> None:
        self.runs += 1
        if match.status == "ok":
            self.success += 1
        elif match.status == "blocked":
            self.blocked += 1
        elif match.status == "unsupported_js":
            self.unsupported += 1
        elif match.status == "error":
            self.error += 1
        elif match.status == "not_found":
            self.not_found += 1
        if match.latency_ms is not None and match.latency_ms >= 0:
            self.latency_sum += int(match.latency_ms)
            self.latency_samples += 1


def tally_matches(matches: Iterable[SiteMatch]) -> Dict[str, SiteOutcomeTally]:
    """Per-site tallies; cached matches are skipped since they say nothing about live health."""
    tallies: Dict[str, SiteOutcomeTally] = {}
    for match in matches:
        if match.status == "cached":
            continue
        site_id = sanitize_site_id(match.site_id)
        if site_id is None:
            continue
        tallies.setdefault(site_id, SiteOutcomeTally()).observe(match)
    return tallies


def fold_counters(previous: C, tally: SiteOutcomeTally, now: Optional[datetime] = None) -> C:
    """Return a copy of ``previous`` with ``tally`` folded in."""
    row = previous.model_copy()
    prev_runs = row.runs_count

    row.runs_count += tally.runs
    row.success_count += tally.success
    row.blocked_count += tally.blocked
    row.unsupported_count += tally.unsupported
    row.error_count += tally.error
    row.not_found_count += tally.not_found

    if tally.latency_samples > 0:
        weight = max(prev_runs, 1)
        row.avg_latency_ms = int(round(
            (row.avg_latency_ms * weight + tally.latency_sum) / (weight + tally.latency_samples)
        ))

    if row.runs_count > 0:
        row.block_rate = clamp((row.blocked_count + row.unsupported_count) / row.runs_count)
        row.reliability_score = clamp(row.success_count / row.runs_count, MIN_RELIABILITY, MAX_RELIABILITY)

    row.last_seen_at = now or datetime.utcnow()
    return row


def fold_catalog_entry(previous: Optional[SiteCatalogEntry], site_id: str, tally: SiteOutcomeTally) -> SiteCatalogEntry:
    return fold_counters(previous or default_catalog_entry(site_id), tally)


def fold_intent_stat(
    previous: Optional[IntentSiteStat],
    cluster_key: str,
    site_id: str,
    tally: SiteOutcomeTally,
) -> IntentSiteStat:
    return fold_counters(previous or IntentSiteStat(cluster_key=cluster_key, site_id=site_id), tally)


class KeyedLocks:
    """
    One asyncio.Lock per key, alive only while someone holds or waits on it.

    Cluster keys are open-ended, so an idle key is forgotten as soon as its
    last holder leaves.
    """

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._holders: Dict[Hashable, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if not self._holders[key]:
                del self._holders[key]
                del self._locks[key]


class LearningPersister:
    """
    Applies the fold to the store, serialized per key within this process.

    The store performs each read-modify-write as a unit; the keyed locks keep
    two concurrent runs in this process from interleaving on the same row.
    Store failures are logged and swallowed.
    """

    def __init__(self, store: QuoteStore):
        self.store = store
        self._locks = KeyedLocks()

    async def fold_run(self, cluster_key: str, matches: Iterable[SiteMatch]) -> Dict[str, SiteOutcomeTally]:
        tallies = tally_matches(matches)
        for site_id, tally in tallies.items():
            await self._fold_catalog(site_id, tally)
            await self._fold_cluster(cluster_key, site_id, tally)
        if tallies:
            logger.info(f"[Learning] folded {len(tallies)} sites into cluster {cluster_key}")
        return tallies

    async def _fold_catalog(self, site_id: str, tally: SiteOutcomeTally) -> None:
        async with self._locks.hold(("catalog", site_id)):
            try:
                await self.store.update_catalog_entry(
                    site_id, lambda prev: fold_catalog_entry(prev, site_id, tally)
                )
            except StoreError as e:
                logger.warning(f"[Learning] catalog fold failed for {site_id}: {e}")
                store_failures_total.labels(operation="update_catalog_entry").inc()

    async def _fold_cluster(self, cluster_key: str, site_id: str, tally: SiteOutcomeTally) -> None:
        async with self._locks.hold(("cluster", cluster_key, site_id)):
            try:
                await self.store.update_intent_stat(
                    cluster_key, site_id, lambda prev: fold_intent_stat(prev, cluster_key, site_id, tally)
                )
            except StoreError as e:
                logger.warning(f"[Learning] cluster fold failed for {cluster_key}/{site_id}: {e}")
                store_failures_total.labels(operation="update_intent_stat").inc()

    async def record_interaction(self, interaction: InteractionRecord) -> None:
        """Append the interaction and bump the site's click counters."""
        site_id = sanitize_site_id(interaction.site_id)
        try:
            await self.store.record_interaction(interaction)
        except StoreError as e:
            logger.warning(f"[Learning] interaction insert failed: {e}")
            store_failures_total.labels(operation="record_interaction").inc()
        if site_id is None:
            return

        def bump(prev: Optional[SiteCatalogEntry]) -> SiteCatalogEntry:
            row = (prev or default_catalog_entry(site_id)).model_copy()
            row.click_count += 1
            if interaction.action == "open_result":
                row.open_result_count += 1
            else:
                row.open_listing_count += 1
            return row

        async with self._locks.hold(("catalog", site_id)):
            try:
                await self.store.update_catalog_entry(site_id, bump)
            except StoreError as e:
                logger.warning(f"[Learning] click counter update failed for {site_id}: {e}")
                store_failures_total.labels(operation="update_catalog_entry").inc()
