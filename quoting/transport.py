"""
Scrape engine transports.

Probe waves stream ``data: {...}`` frames from ``POST /api/quote_stream`` and
hand each parsed event to the caller before reading the next frame.
Expansion waves prefer the bulk ``POST /api/quote`` endpoint; when it answers
405 the transport selector switches to the stream for that wave and every
later one.
"""

import json
import logging
import time
from enum import Enum
from typing import Any, AsyncGenerator, Dict, List, Optional, Union

import httpx
from pydantic import ValidationError as SchemaError

from exceptions import StreamingOnlyError, TransportError
from quoting.models import (
    BestOffer,
    BulkQuoteResponse,
    ItemDoneEvent,
    LineItem,
    MatchEvent,
    SiteMatch,
)

logger = logging.getLogger(__name__)

STREAM_PATH = "/api/quote_stream"
BULK_PATH = "/api/quote"

WaveEvent = Union[MatchEvent, ItemDoneEvent]


def build_payload(
    run_id: str,
    items: List[LineItem],
    category: str,
    site_plan: List[str],
    site_overrides: Dict[str, str],
    cache_ttl: int = 0,
) -> Dict[str, Any]:
    return {
        "run_id": run_id,
        "items": [item.model_dump() for item in items],
        "category": category,
        "site_plan": list(site_plan),
        "site_overrides": dict(site_overrides),
        "options": {"cache_ttl": cache_ttl},
    }


def _parse_event(data: Dict[str, Any]) -> Optional[WaveEvent]:
    """
    Convert one upstream frame into a wave event.

    Upstream ``started``/``done`` frames are consumed here; an upstream
    ``error`` frame is fatal to the wave.
    """
    kind = data.get("type")
    if kind == "match":
        return MatchEvent(
            item_index=int(data["item_index"]),
            query=str(data.get("query") or ""),
            match=SiteMatch.model_validate(data["match"]),
        )
    if kind == "item_done":
        best = data.get("best")
        return ItemDoneEvent(
            item_index=int(data["item_index"]),
            query=str(data.get("query") or ""),
            best=BestOffer.model_validate(best) if best else None,
        )
    if kind == "error":
        raise TransportError(str(data.get("message") or "Quote engine reported an error"), detail={"event": data})
    return None


class TransportRoute(str, Enum):
    BULK = "bulk"
    STREAM = "stream"


class ExpansionTransportSelector:
    """BULK until the engine says streaming only, then STREAM for good."""

    def __init__(self):
        self.route = TransportRoute.BULK

    def on_streaming_only(self) -> None:
        if self.route is TransportRoute.BULK:
            logger.info("[Transport] bulk endpoint is streaming-only, routing expansions to the stream")
        self.route = TransportRoute.STREAM


class ScrapeTransport:
    def __init__(
        self,
        base_url: str,
        http_client: Optional[httpx.AsyncClient] = None,
        *,
        probe_timeout: float = 45.0,
        expansion_timeout: float = 60.0,
    ):
        self.base_url = base_url.rstrip("/")
        self._http_client = http_client
        self.probe_timeout = probe_timeout
        self.expansion_timeout = expansion_timeout
        self.selector = ExpansionTransportSelector()

    def _client(self) -> httpx.AsyncClient:
        return self._http_client or httpx.AsyncClient()

    async def stream(self, payload: Dict[str, Any], *, timeout: Optional[float] = None) -> AsyncGenerator[WaveEvent, None]:
        """Yield events from the streaming endpoint as frames arrive."""
        timeout = timeout or self.probe_timeout
        deadline = time.monotonic() + timeout
        url = f"{self.base_url}{STREAM_PATH}"
        client = self._client()
        try:
            async with client.stream("POST", url, json=payload, timeout=timeout) as resp:
                if resp.status_code < 200 or resp.status_code >= 300:
                    raise TransportError(
                        f"Quote stream failed with status {resp.status_code}",
                        detail={"status": resp.status_code},
                    )
                data_lines: List[str] = []
                async for line in resp.aiter_lines():
                    if time.monotonic() > deadline:
                        raise TransportError(f"Quote stream exceeded {timeout:.0f}s", detail={"timeout": timeout})
                    if line.startswith("data:"):
                        data_lines.append(line[5:].strip())
                        continue
                    if line.strip() or not data_lines:
                        continue
                    event = self._decode_frame(data_lines)
                    data_lines = []
                    if event is not None:
                        yield event
                if data_lines:
                    event = self._decode_frame(data_lines)
                    if event is not None:
                        yield event
        except httpx.HTTPError as e:
            raise TransportError(f"Quote stream request failed: {type(e).__name__}", detail={"url": url}) from e
        finally:
            if self._http_client is None:
                await client.aclose()

    @staticmethod
    def _decode_frame(data_lines: List[str]) -> Optional[WaveEvent]:
        raw = "\n".join(data_lines)
        if not raw:
            return None
        try:
            return _parse_event(json.loads(raw))
        except (json.JSONDecodeError, SchemaError, KeyError, TypeError, ValueError) as e:
            raise TransportError(f"Malformed quote stream frame: {type(e).__name__}", detail={"frame": raw[:200]}) from e

    async def bulk(self, payload: Dict[str, Any], *, timeout: Optional[float] = None) -> BulkQuoteResponse:
        """Single request/response call; HTTP 405 raises StreamingOnlyError."""
        timeout = timeout or self.expansion_timeout
        url = f"{self.base_url}{BULK_PATH}"
        client = self._client()
        try:
            resp = await client.post(url, json=payload, timeout=timeout)
            if resp.status_code == 405:
                raise StreamingOnlyError(detail={"status": 405})
            if resp.status_code < 200 or resp.status_code >= 300:
                raise TransportError(
                    f"Bulk quote failed with status {resp.status_code}",
                    transport="bulk",
                    detail={"status": resp.status_code},
                )
            return BulkQuoteResponse.model_validate(resp.json())
        except httpx.HTTPError as e:
            raise TransportError(f"Bulk quote request failed: {type(e).__name__}", transport="bulk", detail={"url": url}) from e
        except (json.JSONDecodeError, SchemaError) as e:
            raise TransportError("Malformed bulk quote response", transport="bulk") from e
        finally:
            if self._http_client is None:
                await client.aclose()

    async def expand(self, payload: Dict[str, Any]) -> AsyncGenerator[WaveEvent, None]:
        """
        Run an expansion wave on the currently selected route.

        The bulk response is fully resolved before any of its events are
        yielded.
        """
        if self.selector.route is TransportRoute.BULK:
            try:
                response = await self.bulk(payload)
            except StreamingOnlyError:
                self.selector.on_streaming_only()
            else:
                for event in bulk_events(response):
                    yield event
                return

        async for event in self.stream(payload, timeout=self.expansion_timeout):
            yield event

    @property
    def expansion_route(self) -> str:
        return self.selector.route.value


def bulk_events(response: BulkQuoteResponse) -> List[WaveEvent]:
    """Flatten a bulk response into the per-item match/item_done sequence."""
    events: List[WaveEvent] = []
    for index, item in enumerate(response.items):
        for raw_match in item.matches:
            try:
                match = SiteMatch.model_validate(raw_match)
            except SchemaError as e:
                logger.warning(f"[Transport] skipping malformed bulk match for item {index}: {e.error_count()} errors")
                continue
            events.append(MatchEvent(item_index=index, query=item.query, match=match))
        best = None
        if item.best:
            try:
                best = BestOffer.model_validate(item.best)
            except SchemaError:
                best = None
        events.append(ItemDoneEvent(item_index=index, query=item.query, best=best))
    return events
