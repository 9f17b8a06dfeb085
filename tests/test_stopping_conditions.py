from __future__ import annotations

import pytest

from agentpilot.state import AgentState, StateStore
from agentpilot.stopping import StopCheck, StoppingConditions, create_custom_condition


def make_store(max_iterations: int = 5) -> StateStore:
    store = StateStore("weather in London", max_iterations=max_iterations, clock=lambda: 0.0)
    store.start()
    store.next_iteration()
    return store


def test_nothing_fires_on_a_fresh_session():
    conditions = StoppingConditions(clock=lambda: 1.0)
    decision = conditions.evaluate(make_store().state)
    assert not decision.should_stop
    assert decision.reason == "No stopping conditions met"
    assert [result.name for result in decision.results] == conditions.condition_names()


def test_first_firing_condition_wins():
    store = make_store(max_iterations=1)
    store.add_reasoning("Therefore, the result is sunny.")
    decision = StoppingConditions(clock=lambda: 1.0).evaluate(store.state)
    assert decision.should_stop
    assert decision.condition == "max_iterations"
    assert decision.confidence == 1.0


def test_solution_keywords_stop_the_loop():
    store = make_store()
    store.add_reasoning("In summary, London is mild today.")
    decision = StoppingConditions(clock=lambda: 1.0).evaluate(store.state)
    assert decision.condition == "solution_found"
    assert decision.confidence == 0.8


def test_error_threshold():
    store = make_store()
    for index in range(3):
        store.add_error("tool_error", f"failure {index}")
    decision = StoppingConditions(clock=lambda: 1.0).evaluate(store.state)
    assert decision.condition == "error_threshold"
    assert decision.reason == "Error threshold reached (3 errors)"


def test_stagnation_needs_similar_reasoning():
    store = make_store()
    for _ in range(3):
        store.add_reasoning("Looking up the weather for London now")
    assert StoppingConditions(clock=lambda: 1.0).evaluate(store.state).condition == "stagnation"


def test_time_limit():
    conditions = StoppingConditions(max_execution_seconds=10, clock=lambda: 11.0)
    decision = conditions.evaluate(make_store().state)
    assert decision.condition == "time_limit"


def test_raising_predicate_counts_as_not_firing():
    def broken(state: AgentState) -> StopCheck:
        raise RuntimeError("boom")

    conditions = StoppingConditions(clock=lambda: 1.0)
    conditions.add_condition("broken", broken)
    decision = conditions.evaluate(make_store().state)
    assert not decision.should_stop
    failed = [result for result in decision.results if result.name == "broken"][0]
    assert failed.error
    assert failed.reason == "Error in condition evaluation: boom"


def test_custom_condition_on_nested_attribute():
    conditions = StoppingConditions(clock=lambda: 1.0)
    conditions.add_condition(
        "enough_tools", create_custom_condition("metrics.tool_calls", ">=", 2, "Enough tool calls")
    )
    store = make_store()
    store.record_tool_call(True)
    assert not conditions.evaluate(store.state).should_stop
    store.record_tool_call(True)
    decision = conditions.evaluate(store.state)
    assert decision.condition == "enough_tools"
    assert decision.reason == "Enough tool calls"


def test_custom_condition_missing_path_never_fires():
    predicate = create_custom_condition("metrics.nothing_here", "==", 0)
    assert not predicate(make_store().state).should_stop
    with pytest.raises(ValueError):
        create_custom_condition("confidence", "!=", 1)


def test_conditions_can_be_removed():
    conditions = StoppingConditions(clock=lambda: 1.0)
    assert conditions.remove_condition("max_iterations")
    assert not conditions.remove_condition("max_iterations")
    assert "max_iterations" not in conditions.condition_names()
    with pytest.raises(KeyError):
        conditions.evaluate_condition("max_iterations", make_store().state)
