"""Typed models for the quote orchestration pipeline."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Generic, List, Literal, Optional, TypeVar, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

Category = Literal["office", "electronics", "restaurant", "electrical", "unknown"]
CATEGORIES: tuple = ("office", "electronics", "restaurant", "electrical", "unknown")

MatchStatus = Literal["ok", "blocked", "not_found", "error", "unsupported_js", "cached"]
RunStatus = Literal["running", "done", "error"]
InputType = Literal["text", "sku", "csv"]
AdvisorySource = Literal["advisory", "fallback"]

T = TypeVar("T")


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp into [low, high]; NaN collapses to low."""
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return low
    return max(low, min(high, float(value)))


class LineItem(BaseModel):
    """One procurement line. Frozen once produced by the intake normalizer."""

    model_config = ConfigDict(frozen=True)

    query: str
    qty: int = Field(1, ge=1)


class ClassificationResult(BaseModel):
    category: Category = "unknown"
    category_candidates: List[Category] = Field(default_factory=list)
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    normalized_items: List[LineItem] = Field(default_factory=list)
    query_variants: List[str] = Field(default_factory=list)
    suggested_sites: List[str] = Field(default_factory=list)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: float) -> float:
        return clamp(float(value or 0.0))


class IntentCluster(BaseModel):
    cluster_key: str
    labels: List[str] = Field(default_factory=list)
    confidence: float = Field(0.0, ge=0.0, le=1.0)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: float) -> float:
        return clamp(float(value or 0.0))


class OutcomeCounters(BaseModel):
    """Monotonic outcome counters shared by catalog rows and per-cluster stats."""

    runs_count: int = 0
    success_count: int = 0
    blocked_count: int = 0
    unsupported_count: int = 0
    error_count: int = 0
    not_found_count: int = 0
    avg_latency_ms: int = 2200
    reliability_score: float = 0.62
    block_rate: float = 0.35
    last_seen_at: Optional[datetime] = None


class SiteCatalogEntry(OutcomeCounters):
    site_id: str
    category: str = "unknown"
    domain: str = ""
    search_url_template: str = ""
    enabled: bool = True
    js_heavy: bool = False
    priority: int = 100
    click_count: int = 0
    open_result_count: int = 0
    open_listing_count: int = 0


class IntentSiteStat(OutcomeCounters):
    cluster_key: str
    site_id: str

    @property
    def success_rate(self) -> float:
        if self.runs_count <= 0:
            return 0.55
        return clamp(self.success_count / self.runs_count)


class BestOffer(BaseModel):
    site_id: str = Field(validation_alias=AliasChoices("site_id", "site"))
    price: float
    url: str


class SiteMatch(BaseModel):
    """A single site's answer for one line item, as reported by the scrape engine."""

    model_config = ConfigDict(populate_by_name=True)

    site_id: str = Field(validation_alias=AliasChoices("site_id", "site"))
    title: Optional[str] = None
    price: Optional[float] = None
    currency: Optional[str] = None
    url: Optional[str] = None
    status: MatchStatus
    message: Optional[str] = None
    latency_ms: Optional[int] = None

    def is_best_eligible(self) -> bool:
        return (
            self.status == "ok"
            and self.price is not None
            and math.isfinite(self.price)
            and bool(self.url)
        )


class QuoteItemResult(BaseModel):
    query: str
    matches: List[SiteMatch] = Field(default_factory=list)
    best: Optional[BestOffer] = None


@dataclass
class RankedSite:
    """Score breakdown for one candidate after bandit ranking."""

    site_id: str
    static_score: float
    intent_signal: float
    explore_bonus: float
    site_runs: int

    @property
    def total_score(self) -> float:
        return self.static_score + self.intent_signal + self.explore_bonus


class RankedSitePlan(BaseModel):
    probe: List[str] = Field(default_factory=list)
    expansion: List[str] = Field(default_factory=list)

    @property
    def sites(self) -> List[str]:
        return [*self.probe, *self.expansion]


class RunRecord(BaseModel):
    run_id: str
    status: RunStatus = "running"
    input_type: InputType = "text"
    raw_input: str = ""
    category: str = "unknown"
    cluster_key: Optional[str] = None
    duration_ms: Optional[int] = None
    persisted_site_plan: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class InteractionRecord(BaseModel):
    run_id: Optional[str] = None
    action: Literal["open_result", "open_listing"] = "open_listing"
    site_id: str
    query: Optional[str] = None
    target_url: str
    created_at: datetime = Field(default_factory=datetime.utcnow)


@dataclass
class AdvisoryOutcome(Generic[T]):
    """
    Result of a fail-soft advisory call.

    ``source`` says which path produced ``value``; ``reason`` carries the
    failure that forced the fallback path, if any.
    """

    value: T
    source: AdvisorySource
    reason: Optional[str] = None

    @property
    def used_fallback(self) -> bool:
        return self.source == "fallback"


# =============================================================================
# REQUEST / EVENT WIRE TYPES
# =============================================================================

class RawLineItem(BaseModel):
    query: str = Field(..., min_length=1)
    qty: int = Field(1, gt=0)


class QuoteRunRequest(BaseModel):
    items: List[RawLineItem]
    input_type: InputType = "text"


class StartedEvent(BaseModel):
    type: Literal["started"] = "started"
    run_id: str
    started_at: str


class MatchEvent(BaseModel):
    type: Literal["match"] = "match"
    item_index: int
    query: str
    match: SiteMatch


class ItemDoneEvent(BaseModel):
    type: Literal["item_done"] = "item_done"
    item_index: int
    query: str
    best: Optional[BestOffer] = None


class DoneEvent(BaseModel):
    type: Literal["done"] = "done"
    duration_ms: int


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str


QuoteEvent = Union[StartedEvent, MatchEvent, ItemDoneEvent, DoneEvent, ErrorEvent]


class BulkItemResult(BaseModel):
    query: str = ""
    matches: List[Dict[str, object]] = Field(default_factory=list)
    best: Optional[Dict[str, object]] = None


class BulkQuoteResponse(BaseModel):
    items: List[BulkItemResult] = Field(default_factory=list)
    duration_ms: int = 0
