"""Fail-soft wrapper shared by the classifier, cluster resolver and reranker."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

import httpx
from pydantic import ValidationError as SchemaError

from exceptions import AdvisoryError
from observability.metrics import advisory_calls_total
from quoting.models import AdvisoryOutcome

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Everything an advisory call can reasonably fail with; anything else is a bug
# and propagates.
ADVISORY_FAILURES = (
    AdvisoryError,
    SchemaError,
    httpx.HTTPError,
    asyncio.TimeoutError,
    ValueError,
    KeyError,
    TypeError,
)


async def consult(
    service: str,
    call: Optional[Callable[[], Awaitable[T]]],
    fallback: Callable[[], T],
    *,
    timeout: float,
) -> AdvisoryOutcome[T]:
    """
    Run ``call`` under ``timeout`` and fall back to the pure ``fallback`` on any failure.

    ``call`` is None when the advisory backend is not configured.
    """
    if call is None:
        advisory_calls_total.labels(service=service, path="fallback").inc()
        return AdvisoryOutcome(value=fallback(), source="fallback", reason="advisory_unavailable")

    try:
        value = await asyncio.wait_for(call(), timeout=timeout)
    except ADVISORY_FAILURES as e:
        reason = f"{type(e).__name__}: {str(e)[:160]}"
        logger.warning(f"[Advisory:{service}] falling back: {reason}")
        advisory_calls_total.labels(service=service, path="fallback").inc()
        return AdvisoryOutcome(value=fallback(), source="fallback", reason=reason)

    advisory_calls_total.labels(service=service, path="advisory").inc()
    return AdvisoryOutcome(value=value, source="advisory")
