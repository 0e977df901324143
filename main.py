"""
Quote orchestrator service.

Streams adaptive multi-vendor quote runs over NDJSON and exposes health,
run history and Prometheus metrics.
"""
from contextlib import asynccontextmanager
from typing import Optional
import logging
import os

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from config import Settings, get_settings
from database import build_engine, check_db_health, init_db, session_factory
from exceptions import QuoteOrchestratorError
from observability import metrics_registry, setup_logging
from quoting.orchestrator import QuoteOrchestrator
from quoting.sql_store import SqlQuoteStore
from quoting.store import InMemoryQuoteStore, QuoteStore
from quoting.transport import ScrapeTransport
from routes.quotes import router as quotes_router
from services.llm import AdvisoryBackend, build_advisory_client

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    *,
    store: Optional[QuoteStore] = None,
    transport: Optional[ScrapeTransport] = None,
    advisory: Optional[AdvisoryBackend] = None,
) -> FastAPI:
    """Build the app; collaborators not passed in are built from settings."""
    settings = settings or get_settings()
    engine = None

    if store is None:
        if settings.database_url:
            engine = build_engine(settings.database_url)
            store = SqlQuoteStore(session_factory(engine))
        else:
            logger.warning("[Startup] DATABASE_URL not set, using in-memory store")
            store = InMemoryQuoteStore()

    if transport is None:
        transport = ScrapeTransport(
            settings.quote_engine_base_url,
            probe_timeout=settings.probe_timeout_seconds,
            expansion_timeout=settings.expansion_timeout_seconds,
        )

    if advisory is None:
        advisory = build_advisory_client(settings)

    orchestrator = QuoteOrchestrator(store, transport, advisory, settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Quote orchestrator starting (environment={os.getenv('ENVIRONMENT', 'development')})")
        if engine is not None and isinstance(store, SqlQuoteStore):
            await init_db(engine)
            await store.seed_defaults()
        yield
        if engine is not None:
            await engine.dispose()
        logger.info("Quote orchestrator shutting down")

    app = FastAPI(
        title="Quote Orchestrator",
        description="Adaptive multi-vendor quote orchestration",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.orchestrator = orchestrator
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(QuoteOrchestratorError)
    async def orchestrator_exception_handler(request: Request, exc: QuoteOrchestratorError):
        logger.warning(f"[API] {request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        body = {
            "status": "healthy",
            "version": "0.1.0",
            "store": type(store).__name__,
            "advisory": advisory is not None,
        }
        if engine is not None:
            body["database_pool"] = await check_db_health(engine)
        return body

    @app.get("/metrics")
    async def metrics():
        return Response(content=generate_latest(metrics_registry), media_type=CONTENT_TYPE_LATEST)

    app.include_router(quotes_router)
    return app


setup_logging()
app = create_app()
