import json
import os
import sys
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

# Add parent directory to path to allow importing the service modules
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Settings
from quoting.store import InMemoryQuoteStore
from quoting.transport import ScrapeTransport

ENGINE_URL = "http://engine.test"

OFFICE_PLAN = ["staples", "officedepot", "quill", "amazon_business"]


def sse(*events: Dict[str, Any]) -> bytes:
    """Frame events the way the scrape engine streams them."""
    return "".join(f"data: {json.dumps(event)}\n\n" for event in events).encode()


def match_event(item_index: int, query: str, site: str, status: str = "ok", price: Optional[float] = None, **extra) -> Dict[str, Any]:
    match = {"site": site, "status": status, "latency_ms": extra.pop("latency_ms", 900)}
    if price is not None:
        match["price"] = price
        match["currency"] = "USD"
        match["url"] = extra.pop("url", f"https://{site}.example/p/{item_index}")
    match.update(extra)
    return {"type": "match", "item_index": item_index, "query": query, "match": match}


def item_done(item_index: int, query: str, best: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {"type": "item_done", "item_index": item_index, "query": query, "best": best}


class FakeAdvisory:
    """Advisory backend returning canned JSON per prompt kind, or raising."""

    def __init__(self, responses: Optional[Dict[str, Any]] = None):
        self.responses = responses or {}
        self.prompts: List[str] = []

    async def complete_json(self, prompt: str, *, timeout: float) -> Dict[str, Any]:
        self.prompts.append(prompt)
        if "Classify procurement items" in prompt:
            kind = "classifier"
        elif "Reorder vendor sites" in prompt:
            kind = "reranker"
        else:
            kind = "cluster"
        response = self.responses.get(kind)
        if isinstance(response, Exception):
            raise response
        if response is None:
            raise ValueError(f"no canned {kind} response")
        return response


class EngineRecorder:
    """MockTransport handler that records requests and replays canned responses."""

    def __init__(self, stream: Optional[Callable[[Dict[str, Any]], httpx.Response]] = None,
                 bulk: Optional[Callable[[Dict[str, Any]], httpx.Response]] = None):
        self._stream = stream
        self._bulk = bulk
        self.requests: List[Dict[str, Any]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content or b"{}")
        self.requests.append({"path": request.url.path, "payload": payload})
        if request.url.path == "/api/quote_stream" and self._stream:
            return self._stream(payload)
        if request.url.path == "/api/quote" and self._bulk:
            return self._bulk(payload)
        return httpx.Response(404)

    def paths(self) -> List[str]:
        return [r["path"] for r in self.requests]


@pytest.fixture
def settings() -> Settings:
    return Settings(quote_engine_base_url=ENGINE_URL, advisory_timeout_seconds=1.0)


@pytest.fixture
def office_store() -> InMemoryQuoteStore:
    """Office plan of four sites and an empty generic plan; no catalog rows."""
    return InMemoryQuoteStore(plans={"office": list(OFFICE_PLAN), "unknown": []})


@pytest.fixture
def make_transport():
    def _make(recorder: EngineRecorder) -> ScrapeTransport:
        client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
        return ScrapeTransport(ENGINE_URL, client, probe_timeout=5.0, expansion_timeout=5.0)
    return _make
