"""
Staged execution policy: probe wave first, expansion wave only on weak coverage.

Run lifecycle:

    STARTED -> PROBING -> (EXPANDING) -> DONE
                  \\           \\
                   +-----------+-> ERROR

ERROR is terminal. DONE is only reachable once every dispatched wave has
fully drained.
"""

import logging
from enum import Enum
from typing import Iterable, List, Set

from quoting.models import RankedSitePlan

logger = logging.getLogger(__name__)

HIGH_CONFIDENCE = 0.75
CONFIDENT_PROBE_SIZE = 4
UNSURE_PROBE_SIZE = 6
MIN_OK_TARGET = 4


class RunPhase(str, Enum):
    STARTED = "started"
    PROBING = "probing"
    EXPANDING = "expanding"
    DONE = "done"
    ERROR = "error"


_TRANSITIONS = {
    RunPhase.STARTED: {RunPhase.PROBING, RunPhase.ERROR},
    RunPhase.PROBING: {RunPhase.EXPANDING, RunPhase.DONE, RunPhase.ERROR},
    RunPhase.EXPANDING: {RunPhase.DONE, RunPhase.ERROR},
    RunPhase.DONE: set(),
    RunPhase.ERROR: set(),
}


class InvalidTransition(RuntimeError):
    pass


class RunStateMachine:
    """Tracks one run's phase and rejects out-of-order transitions."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        self.phase = RunPhase.STARTED
        self.history: List[RunPhase] = [RunPhase.STARTED]

    @property
    def terminal(self) -> bool:
        return self.phase in (RunPhase.DONE, RunPhase.ERROR)

    def advance(self, target: RunPhase) -> RunPhase:
        if target not in _TRANSITIONS[self.phase]:
            raise InvalidTransition(f"{self.phase.value} -> {target.value}")
        logger.debug(f"[Staging] run {self.run_id}: {self.phase.value} -> {target.value}")
        self.phase = target
        self.history.append(target)
        return target


def probe_size(confidence: float) -> int:
    return CONFIDENT_PROBE_SIZE if confidence >= HIGH_CONFIDENCE else UNSURE_PROBE_SIZE


def split_plan(ranked_sites: List[str], confidence: float) -> RankedSitePlan:
    size = probe_size(confidence)
    return RankedSitePlan(probe=list(ranked_sites[:size]), expansion=list(ranked_sites[size:]))


class CoverageTracker:
    """Counts ok matches per item while a wave drains."""

    def __init__(self, item_count: int):
        self.item_count = item_count
        self.total_ok = 0
        self.items_with_ok: Set[int] = set()

    def observe(self, item_index: int, status: str) -> None:
        if status == "ok":
            self.total_ok += 1
            self.items_with_ok.add(item_index)


def should_expand(expansion_pool: Iterable[str], total_ok: int, items_with_ok: int, item_count: int) -> bool:
    """
    Expansion runs iff the pool is non-empty and probe coverage is weak:
    no ok match at all, an item without any ok match, or fewer ok matches than
    ``min(item_count * 2, 4)``.
    """
    if not list(expansion_pool):
        return False
    if total_ok == 0:
        return True
    if items_with_ok < item_count:
        return True
    return total_ok < min(item_count * 2, MIN_OK_TARGET)
