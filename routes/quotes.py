"""Quote routes - run streaming, click tracking and run history."""
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse, StreamingResponse
from typing import AsyncGenerator, Optional
from urllib.parse import urlparse
import logging

from exceptions import StoreError
from quoting.learning import LearningPersister
from quoting.models import InteractionRecord, QuoteRunRequest
from quoting.orchestrator import QuoteOrchestrator, prepare_items
from quoting.sites import sanitize_site_id, vendor_search_url
from quoting.store import QuoteStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["quotes"])

RUN_HISTORY_LIMIT = 20


def get_orchestrator(request: Request) -> QuoteOrchestrator:
    return request.app.state.orchestrator


def get_store(request: Request) -> QuoteStore:
    return request.app.state.store


def get_learning(request: Request) -> LearningPersister:
    return request.app.state.orchestrator.learning


def _safe_url(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    parsed = urlparse(raw.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None
    return raw.strip()


@router.post("/api/run-quote")
async def run_quote(
    body: QuoteRunRequest,
    orchestrator: QuoteOrchestrator = Depends(get_orchestrator),
):
    """
    Run a quote and stream its events as NDJSON.

    Events: started, match, item_done, done | error.
    """
    # Raises ValidationError (400) before the stream opens.
    items = prepare_items(body)
    logger.info(f"[RUN QUOTE] {len(items)} items input_type={body.input_type}")

    async def generate_ndjson() -> AsyncGenerator[str, None]:
        async for event in orchestrator.run_items(items, input_type=body.input_type):
            yield event.model_dump_json() + "\n"

    return StreamingResponse(
        generate_ndjson(),
        media_type="application/x-ndjson; charset=utf-8",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/api/track-click")
async def track_click(
    target: Optional[str] = None,
    site: str = "unknown",
    action: str = "open_listing",
    run_id: Optional[str] = None,
    query: Optional[str] = None,
    learning: LearningPersister = Depends(get_learning),
):
    """
    Record an outbound click and redirect to the target.

    Query params:
        target: http(s) destination; anything else redirects to /
        site: site id the result came from
        action: open_result | open_listing
        run_id, query: context for the interaction record
    """
    if target is None and query and sanitize_site_id(site):
        resolved = vendor_search_url(sanitize_site_id(site), query)
    else:
        resolved = _safe_url(target)
    if not resolved:
        return RedirectResponse(url="/", status_code=302)

    interaction = InteractionRecord(
        run_id=run_id,
        action="open_result" if action == "open_result" else "open_listing",
        site_id=sanitize_site_id(site) or site,
        query=query,
        target_url=resolved,
    )
    await learning.record_interaction(interaction)
    return RedirectResponse(url=resolved, status_code=302)


@router.get("/api/runs")
async def list_runs(store: QuoteStore = Depends(get_store)):
    try:
        runs = await store.list_runs(limit=RUN_HISTORY_LIMIT)
    except StoreError as e:
        logger.error(f"[RUNS] history read failed: {e}")
        raise HTTPException(status_code=500, detail="Run history unavailable")
    return {
        "runs": [
            {
                "id": run.run_id,
                "status": run.status,
                "input_type": run.input_type,
                "raw_input": run.raw_input,
                "category": run.category,
                "duration_ms": run.duration_ms,
                "site_plan": run.persisted_site_plan,
                "created_at": run.created_at.isoformat(),
            }
            for run in runs
        ]
    }
