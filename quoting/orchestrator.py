"""
Quote orchestrator: plans a run, dispatches the probe and expansion waves and
streams typed events back to the caller.

    intake -> classify -> cluster -> candidates -> catalog -> static score
           -> bandit rank -> rerank -> split -> probe wave -> (expansion wave)
           -> learning fold

Each event read from a transport is aggregated, persisted (best-effort) and
yielded before the next one is read.
"""

import asyncio
import json
import logging
import time
import uuid
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncGenerator, Callable, Dict, List, Optional

from config import Settings, get_settings
from exceptions import StoreError, TransportError, ValidationError
from observability.logging import run_context
from observability.metrics import store_failures_total
from quoting.aggregator import QuoteAggregator
from quoting.bandit import rank_with_exploration
from quoting.candidates import build_site_overrides, load_catalog, resolve_candidates
from quoting.classifier import classify_items
from quoting.clustering import resolve_cluster
from quoting.intake import normalize_items
from quoting.learning import LearningPersister
from quoting.metrics import RunMetricsCollector, WaveMetrics
from quoting.models import (
    ClassificationResult,
    DoneEvent,
    ErrorEvent,
    IntentCluster,
    IntentSiteStat,
    ItemDoneEvent,
    LineItem,
    MatchEvent,
    QuoteEvent,
    QuoteRunRequest,
    RankedSite,
    RankedSitePlan,
    RunRecord,
    SiteCatalogEntry,
    SiteMatch,
    StartedEvent,
)
from quoting.reranker import rerank_sites
from quoting.scorer import score_candidates
from quoting.sites import sanitize_site_id
from quoting.staging import CoverageTracker, RunPhase, RunStateMachine, should_expand, split_plan
from quoting.store import QuoteStore
from quoting.transport import ScrapeTransport, WaveEvent, build_payload
from services.llm import AdvisoryBackend

logger = logging.getLogger(__name__)


@dataclass
class RunPlan:
    """Everything decided before the first wave is dispatched."""

    run_id: str
    items: List[LineItem]
    classification: ClassificationResult
    cluster: IntentCluster
    candidates: List[str]
    catalog: Dict[str, SiteCatalogEntry]
    ranking: List[RankedSite]
    plan: RankedSitePlan
    site_overrides: Dict[str, str] = field(default_factory=dict)
    classifier_source: str = "fallback"


def new_run_id() -> str:
    return str(uuid.uuid4())


def prepare_items(request: QuoteRunRequest) -> List[LineItem]:
    """Normalize request items; a request with nothing left is rejected before any run starts."""
    items = normalize_items(request.items)
    if not items:
        raise ValidationError("No valid items in request")
    return items


class QuoteOrchestrator:
    def __init__(
        self,
        store: QuoteStore,
        transport: ScrapeTransport,
        advisory: Optional[AdvisoryBackend] = None,
        settings: Optional[Settings] = None,
        *,
        run_id_factory: Callable[[], str] = new_run_id,
    ):
        self.store = store
        self.transport = transport
        self.advisory = advisory
        self.settings = settings or get_settings()
        self.learning = LearningPersister(store)
        self._new_run_id = run_id_factory

    async def plan_run(self, items: List[LineItem], run_id: str) -> RunPlan:
        timeout = self.settings.advisory_timeout_seconds

        classified = await classify_items(items, self.advisory, timeout=timeout)
        classification = classified.value
        run_items = classification.normalized_items or list(items)

        cluster = (await resolve_cluster(classification.category, run_items, self.advisory, timeout=timeout)).value

        candidates = await resolve_candidates(classification, self.store)
        catalog = await load_catalog(self.store, candidates)
        scores = score_candidates(candidates, catalog)
        intent_stats = await self._load_intent_stats(cluster.cluster_key, list(scores))
        ranking = rank_with_exploration(scores, intent_stats, run_id)

        reranked = await rerank_sites(
            [site.site_id for site in ranking],
            run_items,
            classification.category,
            self.advisory,
            top_n=self.settings.rerank_top_n,
            timeout=timeout,
        )
        plan = split_plan(reranked.value, classification.confidence)
        logger.info(f"[Orchestrator] plan probe={plan.probe} expansion={plan.expansion}")

        return RunPlan(
            run_id=run_id,
            items=run_items,
            classification=classification,
            cluster=cluster,
            candidates=candidates,
            catalog=catalog,
            ranking=ranking,
            plan=plan,
            site_overrides=build_site_overrides(plan.sites, catalog),
            classifier_source=classified.source,
        )

    async def _load_intent_stats(self, cluster_key: str, site_ids: List[str]) -> Dict[str, IntentSiteStat]:
        if not site_ids:
            return {}
        try:
            return await self.store.load_intent_stats(cluster_key, site_ids)
        except StoreError as e:
            logger.warning(f"[Orchestrator] intent stats unavailable, using defaults: {e}")
            store_failures_total.labels(operation="load_intent_stats").inc()
            return {}

    async def _best_effort(self, operation: str, call) -> None:
        try:
            await call
        except StoreError as e:
            logger.warning(f"[Orchestrator] {operation} failed: {e}")
            store_failures_total.labels(operation=operation).inc()

    async def run(
        self,
        request: QuoteRunRequest,
        *,
        run_id: Optional[str] = None,
    ) -> AsyncGenerator[QuoteEvent, None]:
        """Validate the request and stream the run's events."""
        items = prepare_items(request)
        async with aclosing(self.run_items(items, input_type=request.input_type, run_id=run_id)) as events:
            async for event in events:
                yield event

    async def run_items(
        self,
        items: List[LineItem],
        *,
        input_type: str = "text",
        run_id: Optional[str] = None,
    ) -> AsyncGenerator[QuoteEvent, None]:
        run_id = run_id or self._new_run_id()
        with run_context(run_id):
            async with aclosing(self._run(items, input_type, run_id)) as events:
                async for event in events:
                    yield event

    async def _run(self, items: List[LineItem], input_type: str, run_id: str) -> AsyncGenerator[QuoteEvent, None]:
        started = time.monotonic()
        state = RunStateMachine(run_id)
        collector = RunMetricsCollector(run_id, len(items))

        plan = await self.plan_run(items, run_id)
        collector.metrics.category = plan.classification.category
        collector.metrics.cluster_key = plan.cluster.cluster_key
        collector.metrics.classifier_source = plan.classifier_source

        await self._best_effort("create_run", self.store.create_run(RunRecord(
            run_id=run_id,
            status="running",
            input_type=input_type,
            raw_input=json.dumps([item.model_dump() for item in items]),
            category=plan.classification.category,
            cluster_key=plan.cluster.cluster_key,
            persisted_site_plan=plan.plan.sites,
        )))

        aggregator = QuoteAggregator(plan.items)
        coverage = CoverageTracker(len(plan.items))
        observed: List[SiteMatch] = []

        try:
            yield StartedEvent(run_id=run_id, started_at=datetime.now(timezone.utc).isoformat())

            state.advance(RunPhase.PROBING)
            if plan.plan.probe:
                payload = self._payload(plan, plan.plan.probe)
                with collector.track_wave("probe", "stream", plan.plan.probe) as wave:
                    async with aclosing(self._drain(
                        self.transport.stream(payload), run_id, collector, wave, aggregator, coverage, observed
                    )) as events:
                        async for event in events:
                            yield event
            else:
                logger.warning("[Orchestrator] no eligible sites, skipping dispatch")

            if should_expand(plan.plan.expansion, coverage.total_ok, len(coverage.items_with_ok), len(plan.items)):
                state.advance(RunPhase.EXPANDING)
                logger.info(
                    f"[Orchestrator] probe coverage weak (ok={coverage.total_ok}, "
                    f"items_with_ok={len(coverage.items_with_ok)}/{len(plan.items)}), expanding"
                )
                payload = self._payload(plan, plan.plan.expansion)
                with collector.track_wave("expansion", self.transport.expansion_route, plan.plan.expansion) as wave:
                    async with aclosing(self._drain(
                        self.transport.expand(payload), run_id, collector, wave, aggregator, coverage, observed
                    )) as events:
                        async for event in events:
                            # The route can flip to stream on the first expansion.
                            wave.transport = self.transport.expansion_route
                            yield event
        except TransportError as e:
            state.advance(RunPhase.ERROR)
            logger.error(f"[Orchestrator] run {run_id} failed: {e.message}")
            await self._close_failed(run_id, plan.cluster.cluster_key, observed)
            collector.finish("error")
            yield ErrorEvent(message=e.message)
            return
        except (GeneratorExit, asyncio.CancelledError):
            # Caller went away mid-stream; nothing more can be yielded.
            state.advance(RunPhase.ERROR)
            logger.warning(f"[Orchestrator] run {run_id} abandoned after {len(observed)} matches")
            await asyncio.shield(self._close_failed(run_id, plan.cluster.cluster_key, observed))
            collector.finish("error")
            raise

        state.advance(RunPhase.DONE)
        duration_ms = int((time.monotonic() - started) * 1000)
        await self._best_effort("finish_run", self.store.finish_run(run_id, "done", duration_ms))
        await self.learning.fold_run(plan.cluster.cluster_key, observed)
        collector.finish("done")
        yield DoneEvent(duration_ms=duration_ms)

    async def _close_failed(self, run_id: str, cluster_key: str, observed: List[SiteMatch]) -> None:
        await self._best_effort("finish_run", self.store.finish_run(run_id, "error"))
        if observed:
            await self.learning.fold_run(cluster_key, observed)

    def _payload(self, plan: RunPlan, sites: List[str]) -> Dict[str, object]:
        overrides = {site: url for site, url in plan.site_overrides.items() if site in sites}
        return build_payload(
            plan.run_id,
            plan.items,
            plan.classification.category,
            sites,
            overrides,
            cache_ttl=self.settings.cache_ttl_seconds,
        )

    async def _drain(
        self,
        events: AsyncGenerator[WaveEvent, None],
        run_id: str,
        collector: RunMetricsCollector,
        wave: WaveMetrics,
        aggregator: QuoteAggregator,
        coverage: CoverageTracker,
        observed: List[SiteMatch],
    ) -> AsyncGenerator[QuoteEvent, None]:
        async with aclosing(events):
            async for event in events:
                if isinstance(event, MatchEvent):
                    site_id = sanitize_site_id(event.match.site_id)
                    if site_id is None or not aggregator.has_item(event.item_index):
                        logger.warning(f"[Orchestrator] dropping match for site={event.match.site_id!r} item={event.item_index}")
                        continue
                    match = event.match.model_copy(update={"site_id": site_id})
                    aggregator.add_match(event.item_index, match)
                    coverage.observe(event.item_index, match.status)
                    observed.append(match)
                    collector.record_match(wave, site_id, match.status)
                    await self._best_effort("record_match", self.store.record_match(run_id, event.item_index, match))
                    yield MatchEvent(item_index=event.item_index, query=aggregator.query_for(event.item_index), match=match)
                elif isinstance(event, ItemDoneEvent):
                    if not aggregator.has_item(event.item_index):
                        continue
                    best = aggregator.merge_hint(event.item_index, event.best)
                    yield ItemDoneEvent(item_index=event.item_index, query=aggregator.query_for(event.item_index), best=best)

