"""API tests: NDJSON streaming, click tracking, run history, health and metrics."""

import json

import httpx
import pytest

from exceptions import StoreError
from main import create_app
from quoting.store import InMemoryQuoteStore
from tests.conftest import EngineRecorder, item_done, match_event, sse


def _client(app):
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


@pytest.fixture
def engine_recorder():
    body = sse(
        {"type": "started", "run_id": "engine"},
        match_event(0, "paper towels", "staples", price=18.5),
        item_done(0, "paper towels"),
        {"type": "done", "duration_ms": 5},
    )
    return EngineRecorder(stream=lambda payload: httpx.Response(200, content=body))


@pytest.fixture
def app(office_store, make_transport, engine_recorder, settings):
    return create_app(settings, store=office_store, transport=make_transport(engine_recorder))


class TestRunQuote:
    @pytest.mark.asyncio
    async def test_streams_ndjson_events(self, app, office_store):
        async with _client(app) as client:
            response = await client.post("/api/run-quote", json={"items": [{"query": "Paper Towels", "qty": 2}]})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/x-ndjson")
        events = [json.loads(line) for line in response.text.splitlines() if line]
        assert [e["type"] for e in events] == ["started", "match", "item_done", "done"]
        assert events[1]["match"]["site_id"] == "staples"
        assert events[2]["best"]["price"] == 18.5

        run_id = events[0]["run_id"]
        assert office_store.runs[run_id].status == "done"

    @pytest.mark.asyncio
    async def test_no_valid_items_is_400(self, app, engine_recorder):
        async with _client(app) as client:
            response = await client.post("/api/run-quote", json={"items": [{"query": "   "}]})
        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"
        assert engine_recorder.requests == []

    @pytest.mark.asyncio
    async def test_malformed_body_is_rejected(self, app):
        async with _client(app) as client:
            response = await client.post("/api/run-quote", json={"items": [{"qty": 1}]})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_engine_failure_is_an_error_event(self, office_store, make_transport, settings):
        app = create_app(settings, store=office_store, transport=make_transport(
            EngineRecorder(stream=lambda payload: httpx.Response(500))
        ))
        async with _client(app) as client:
            response = await client.post("/api/run-quote", json={"items": [{"query": "toner"}]})
        events = [json.loads(line) for line in response.text.splitlines() if line]
        assert response.status_code == 200
        assert [e["type"] for e in events] == ["started", "error"]


class TestTrackClick:
    @pytest.mark.asyncio
    async def test_records_and_redirects(self, app, office_store):
        async with _client(app) as client:
            response = await client.get("/api/track-click", params={
                "target": "https://www.staples.com/p/123",
                "site": "Staples",
                "action": "open_result",
                "run_id": "run-1",
                "query": "toner",
            })
        assert response.status_code == 302
        assert response.headers["location"] == "https://www.staples.com/p/123"
        assert office_store.interactions[0].site_id == "staples"
        assert office_store.interactions[0].action == "open_result"
        assert office_store.catalog["staples"].open_result_count == 1

    @pytest.mark.asyncio
    async def test_unsafe_target_redirects_home(self, app, office_store):
        async with _client(app) as client:
            response = await client.get("/api/track-click", params={"target": "javascript:alert(1)", "site": "quill"})
        assert response.status_code == 302
        assert response.headers["location"] == "/"
        assert office_store.interactions == []

    @pytest.mark.asyncio
    async def test_missing_target_uses_vendor_search(self, app):
        async with _client(app) as client:
            response = await client.get("/api/track-click", params={"site": "quill", "query": "copy paper"})
        assert response.headers["location"] == "https://www.quill.com/search?keywords=copy+paper"


class TestRunsAndOps:
    @pytest.mark.asyncio
    async def test_run_history(self, app):
        async with _client(app) as client:
            await client.post("/api/run-quote", json={"items": [{"query": "paper towels"}]})
            response = await client.get("/api/runs")
        runs = response.json()["runs"]
        assert len(runs) == 1
        assert runs[0]["status"] == "done"
        assert runs[0]["category"] == "office"
        assert json.loads(runs[0]["raw_input"]) == [{"query": "paper towels", "qty": 1}]

    @pytest.mark.asyncio
    async def test_run_history_store_failure_is_500(self, make_transport, engine_recorder, settings):
        class BrokenHistory(InMemoryQuoteStore):
            async def list_runs(self, limit=20):
                raise StoreError("down")

        app = create_app(settings, store=BrokenHistory(), transport=make_transport(engine_recorder))
        async with _client(app) as client:
            response = await client.get("/api/runs")
        assert response.status_code == 500

    @pytest.mark.asyncio
    async def test_health_and_metrics(self, app):
        async with _client(app) as client:
            health = await client.get("/health")
            await client.post("/api/run-quote", json={"items": [{"query": "paper towels"}]})
            metrics = await client.get("/metrics")

        assert health.json()["status"] == "healthy"
        assert health.json()["store"] == "InMemoryQuoteStore"
        assert health.json()["advisory"] is False
        assert metrics.status_code == 200
        assert "quote_runs_total" in metrics.text
