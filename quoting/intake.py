"""Intake normalizer: trims, folds and dedupes raw line items."""

import re
from typing import Any, Dict, Iterable, List, Mapping, Union

from quoting.models import LineItem, RawLineItem

_WHITESPACE = re.compile(r"\s+")

RawItem = Union[RawLineItem, LineItem, Mapping[str, Any]]


def _coerce_qty(value: Any) -> int:
    try:
        qty = int(value)
    except (TypeError, ValueError):
        return 1
    if isinstance(value, float) and not value.is_integer():
        return 1
    return qty if qty > 0 else 1


def normalize_query(query: Any) -> str:
    if not isinstance(query, str):
        return ""
    return _WHITESPACE.sub(" ", query).strip().lower()


def normalize_items(items: Iterable[RawItem]) -> List[LineItem]:
    """
    Normalize raw line items.

    Queries are lower-cased with whitespace collapsed; blank queries are
    dropped; invalid quantities become 1. Repeated queries are merged into the
    first occurrence with their quantities summed.
    """
    merged: Dict[str, int] = {}
    for item in items or []:
        if isinstance(item, Mapping):
            query, qty = item.get("query"), item.get("qty", 1)
        else:
            query, qty = getattr(item, "query", None), getattr(item, "qty", 1)

        normalized = normalize_query(query)
        if not normalized:
            continue
        merged[normalized] = merged.get(normalized, 0) + _coerce_qty(qty)

    return [LineItem(query=query, qty=qty) for query, qty in merged.items()]
