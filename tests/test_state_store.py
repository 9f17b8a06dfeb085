from __future__ import annotations

import pytest

from agentpilot.failures import InvalidTransitionError
from agentpilot.observations import ObservationGenerator
from agentpilot.state import AgentStatus, StateStore


def make_store(max_iterations: int = 3) -> StateStore:
    return StateStore("weather in London", max_iterations=max_iterations, clock=lambda: 100.0)


def test_iterations_never_exceed_limit():
    store = make_store(max_iterations=2)
    store.start()
    assert store.next_iteration()
    assert store.next_iteration()
    assert not store.next_iteration()
    assert store.state.current_iteration == 2
    assert not store.should_continue()


def test_confidence_is_clamped():
    store = make_store()
    assert store.set_confidence(1.7) == 1.0
    assert store.adjust_confidence(-3.0) == 0.0
    store.add_reasoning("thinking", confidence=4.0)
    assert store.state.reasoning[-1].confidence == 1.0


def test_status_transitions_are_forward_only():
    store = make_store()
    store.start()
    store.set_status(AgentStatus.PROCESSING)
    store.set_status(AgentStatus.COMPLETED, "done")
    assert store.state.stop_reason == "done"
    assert store.state.end_time == 100.0
    with pytest.raises(InvalidTransitionError):
        store.set_status(AgentStatus.PROCESSING)


def test_not_started_cannot_complete():
    store = make_store()
    with pytest.raises(InvalidTransitionError):
        store.set_status(AgentStatus.COMPLETED)


def test_checkpoints_block_and_release_the_loop():
    store = make_store()
    with pytest.raises(InvalidTransitionError):
        store.add_checkpoint("cp-1", "safety_concern")
    store.start()
    store.next_iteration()
    store.add_checkpoint("cp-1", "safety_concern")
    assert store.state.awaiting_human_input
    assert not store.should_continue()
    assert store.resolve_checkpoint("cp-1")
    assert not store.resolve_checkpoint("cp-1")
    assert not store.state.awaiting_human_input


def test_terminal_status_clears_awaiting_flag():
    store = make_store()
    store.start()
    store.add_checkpoint("cp-1", "low_confidence")
    store.set_status(AgentStatus.ERROR, "cancelled")
    assert not store.state.awaiting_human_input


def test_history_entries_carry_the_iteration():
    store = make_store()
    store.start()
    store.next_iteration()
    store.add_action("tool_call", "Use weather-service", success=True, tool_name="weather-service")
    store.add_observation(ObservationGenerator().progress("working"))
    store.add_error("ValidationError", "bad input", recoverable=True, phase="tool_execution")
    state = store.state
    assert state.actions[0].iteration == 1
    assert state.observations[0].iteration == 1
    assert state.errors[0].phase == "tool_execution"
    assert state.tools_used() == ["weather-service"]


def test_snapshot_is_detached():
    store = make_store()
    snapshot = store.snapshot()
    store.add_reasoning("later")
    assert snapshot.reasoning == []


def test_max_iterations_cannot_drop_below_progress():
    store = make_store(max_iterations=5)
    store.start()
    for _ in range(3):
        store.next_iteration()
    assert store.set_max_iterations(1) == 3
    with pytest.raises(ValueError):
        store.set_max_iterations(0)


def test_metrics_counters():
    store = make_store()
    store.record_llm_call()
    store.record_tool_call(True)
    store.record_tool_call(False)
    metrics = store.state.metrics
    assert (metrics.llm_calls, metrics.tool_calls, metrics.successes, metrics.failures) == (1, 2, 1, 1)
