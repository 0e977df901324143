"""Tests for the staged execution policy."""

import pytest

from quoting.staging import (
    CoverageTracker,
    InvalidTransition,
    RunPhase,
    RunStateMachine,
    probe_size,
    should_expand,
    split_plan,
)

SITES = ["s1", "s2", "s3", "s4", "s5", "s6", "s7", "s8"]


def test_probe_size_follows_confidence():
    assert probe_size(0.75) == 4
    assert probe_size(0.95) == 4
    assert probe_size(0.74) == 6
    assert probe_size(0.0) == 6


def test_split_plan():
    plan = split_plan(SITES, 0.9)
    assert plan.probe == ["s1", "s2", "s3", "s4"]
    assert plan.expansion == ["s5", "s6", "s7", "s8"]
    assert plan.sites == SITES

    short = split_plan(["s1", "s2"], 0.1)
    assert short.probe == ["s1", "s2"]
    assert short.expansion == []


class TestShouldExpand:
    def test_empty_pool_never_expands(self):
        assert not should_expand([], total_ok=0, items_with_ok=0, item_count=3)
        assert not should_expand([], total_ok=0, items_with_ok=0, item_count=1)

    def test_zero_ok_expands(self):
        assert should_expand(["s5"], total_ok=0, items_with_ok=0, item_count=1)

    def test_uncovered_item_expands(self):
        assert should_expand(["s5"], total_ok=5, items_with_ok=1, item_count=2)

    def test_too_few_ok_expands(self):
        # min(1 * 2, 4) = 2
        assert should_expand(["s5"], total_ok=1, items_with_ok=1, item_count=1)
        assert not should_expand(["s5"], total_ok=2, items_with_ok=1, item_count=1)

    def test_ok_target_caps_at_four(self):
        assert should_expand(["s5"], total_ok=3, items_with_ok=3, item_count=3)
        assert not should_expand(["s5"], total_ok=4, items_with_ok=3, item_count=3)


def test_coverage_tracker_counts_only_ok():
    tracker = CoverageTracker(item_count=2)
    tracker.observe(0, "ok")
    tracker.observe(0, "ok")
    tracker.observe(1, "cached")
    tracker.observe(1, "blocked")
    assert tracker.total_ok == 2
    assert tracker.items_with_ok == {0}


class TestRunStateMachine:
    def test_happy_path_with_expansion(self):
        state = RunStateMachine("run-1")
        state.advance(RunPhase.PROBING)
        state.advance(RunPhase.EXPANDING)
        state.advance(RunPhase.DONE)
        assert state.terminal
        assert state.history == [RunPhase.STARTED, RunPhase.PROBING, RunPhase.EXPANDING, RunPhase.DONE]

    def test_error_reachable_from_either_wave(self):
        for path in ([RunPhase.PROBING], [RunPhase.PROBING, RunPhase.EXPANDING]):
            state = RunStateMachine("run-1")
            for phase in path:
                state.advance(phase)
            state.advance(RunPhase.ERROR)
            assert state.phase is RunPhase.ERROR

    def test_done_requires_probe(self):
        state = RunStateMachine("run-1")
        with pytest.raises(InvalidTransition):
            state.advance(RunPhase.DONE)

    def test_terminal_states_are_final(self):
        state = RunStateMachine("run-1")
        state.advance(RunPhase.PROBING)
        state.advance(RunPhase.ERROR)
        with pytest.raises(InvalidTransition):
            state.advance(RunPhase.DONE)
