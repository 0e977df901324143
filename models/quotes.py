"""Quote orchestration tables: site plans, catalog, learned stats and run history."""

from typing import Optional
from datetime import datetime
from sqlmodel import Field, SQLModel


class SitePlan(SQLModel, table=True):
    """Category -> ordered list of site ids to consider."""
    __tablename__ = "site_plans"

    category: str = Field(primary_key=True)
    sites: str = "[]"  # JSON array of site ids
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class SiteCatalog(SQLModel, table=True):
    """
    Per-site metadata and global outcome counters.

    Counters only ever grow; reliability_score and block_rate are derived from
    them after every fold.
    """
    __tablename__ = "site_catalog"

    site_id: str = Field(primary_key=True)
    category: str = Field(default="unknown", index=True)
    domain: str = ""
    search_url_template: str = ""
    enabled: bool = True
    js_heavy: bool = False  # rendered client-side; scored down
    priority: int = 100

    reliability_score: float = 0.62
    block_rate: float = 0.35
    avg_latency_ms: int = 2200

    runs_count: int = 0
    success_count: int = 0
    blocked_count: int = 0
    unsupported_count: int = 0
    error_count: int = 0
    not_found_count: int = 0

    # Interaction counters
    click_count: int = 0
    open_result_count: int = 0
    open_listing_count: int = 0

    last_seen_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class IntentSiteStatRow(SQLModel, table=True):
    """Outcome counters for one site within one intent cluster."""
    __tablename__ = "query_intent_site_stats"

    cluster_key: str = Field(primary_key=True)
    site_id: str = Field(primary_key=True, index=True)

    reliability_score: float = 0.62
    block_rate: float = 0.35
    avg_latency_ms: int = 2200

    runs_count: int = 0
    success_count: int = 0
    blocked_count: int = 0
    unsupported_count: int = 0
    error_count: int = 0
    not_found_count: int = 0

    last_seen_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class QuoteRun(SQLModel, table=True):
    __tablename__ = "quote_runs"

    id: str = Field(primary_key=True)
    status: str = Field(default="running", index=True)  # running, done, error
    input_type: str = "text"  # text, sku, csv
    raw_input: str = ""  # JSON of normalized items
    category: str = "unknown"
    cluster_key: Optional[str] = Field(default=None, index=True)
    site_plan: str = "[]"  # JSON array of dispatched site ids
    duration_ms: Optional[int] = None
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)


class QuoteResult(SQLModel, table=True):
    """One match event, appended as it is streamed."""
    __tablename__ = "quote_results"

    id: Optional[int] = Field(default=None, primary_key=True)
    run_id: str = Field(foreign_key="quote_runs.id", index=True)
    item_index: int
    site: str = Field(index=True)
    title: Optional[str] = None
    price: Optional[float] = None
    currency: str = "USD"
    url: Optional[str] = None
    status: str
    message: Optional[str] = None
    latency_ms: Optional[int] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class QuoteInteraction(SQLModel, table=True):
    """Outbound clicks from quote results."""
    __tablename__ = "quote_interactions"

    id: Optional[int] = Field(default=None, primary_key=True)
    run_id: Optional[str] = Field(default=None, index=True)
    action: str = "open_listing"  # open_result, open_listing
    site: str = Field(index=True)
    query: Optional[str] = None
    target_url: str
    created_at: datetime = Field(default_factory=datetime.utcnow)
