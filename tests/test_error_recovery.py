from __future__ import annotations

import pytest

from agentpilot.failures import ErrorClassification
from agentpilot.observations import ObservationGenerator
from agentpilot.recovery import ErrorRecoverySystem, classify_error, next_strategy
from agentpilot.state import StateStore

generator = ObservationGenerator()


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def store_with(*observations) -> StateStore:
    store = StateStore("weather in London", max_iterations=10)
    store.start()
    store.next_iteration()
    for observation in observations:
        store.add_observation(observation)
    return store


def failed_call(tool: str = "weather-service"):
    return [
        generator.tool_failure(tool, "service unavailable", error_name="RuntimeError"),
        generator.environment("tool_error", tool_name=tool),
    ]


def test_repeated_tool_failures_plan_tool_and_strategy_recovery():
    store = store_with(*failed_call(), *failed_call(), *failed_call())
    recovery = ErrorRecoverySystem()
    plan = recovery.plan(store.state)
    classifications = {error.classification for error in plan.detected_errors}
    assert classifications == {
        ErrorClassification.TOOL_EXECUTION_FAILED,
        ErrorClassification.STRATEGY_INEFFECTIVE,
    }
    assert [item.strategy_name for item in plan.strategies] == ["tool_recovery", "strategy_recovery"]
    assert plan.top_action.type == "tool_recovery"
    assert plan.top_action.tool_name == "weather-service"
    assert plan.confidence_adjustment == pytest.approx(-0.04)
    assert plan.confidence_adjustment <= 0


def test_success_after_error_resolves_it():
    store = store_with(*failed_call(), generator.success("weather-service", "sunny"))
    plan = ErrorRecoverySystem().plan(store.state)
    assert plan.is_empty
    assert plan.detected_errors == []
    assert plan.confidence_adjustment == 0.0


def test_attempts_are_rate_limited_per_classification():
    clock = FakeClock()
    recovery = ErrorRecoverySystem(max_recovery_attempts=3, window_seconds=300, clock=clock)
    store = store_with(*failed_call())
    for _ in range(3):
        assert recovery.plan(store.state).top_action.type == "tool_recovery"
    assert recovery.plan(store.state).is_empty
    clock.now += 301
    assert not recovery.plan(store.state).is_empty
    assert recovery.status()["recent_recoveries"] == 1


def test_rate_limit_is_tracked_per_session():
    recovery = ErrorRecoverySystem(max_recovery_attempts=2, clock=FakeClock())
    busy = store_with(*failed_call())
    for _ in range(2):
        recovery.plan(busy.state)
    assert recovery.plan(busy.state).is_empty
    fresh = store_with(*failed_call())
    assert recovery.plan(fresh.state).top_action.type == "tool_recovery"
    assert recovery.forget_session(busy.session_id) == 2
    assert recovery.can_attempt(ErrorClassification.TOOL_EXECUTION_FAILED, busy.session_id)


def test_unknown_errors_are_not_planned():
    store = store_with(generator.error("something odd"))
    plan = ErrorRecoverySystem().plan(store.state)
    assert plan.detected_errors[0].classification == ErrorClassification.UNKNOWN_ERROR
    assert not plan.detected_errors[0].recoverable
    assert plan.is_empty
    assert plan.confidence_adjustment == pytest.approx(-0.05)


def test_classification_rules():
    validation = generator.tool_failure(
        "area-calculator", "Missing required parameter", error_name="ValidationError", tool_failed=False
    )
    network = generator.tool_failure(
        "weather-service", "timed out", error_name="TimeoutError", tool_failed=False
    )
    resource = generator.error("quota", context="rate limit reached")
    plain = generator.error("odd")
    assert classify_error(validation, []) == ErrorClassification.PARAMETER_VALIDATION_FAILED
    assert classify_error(network, []) == ErrorClassification.NETWORK_FAILURE
    assert classify_error(resource, []) == ErrorClassification.RESOURCE_EXHAUSTION
    assert classify_error(plain, [plain, plain]) == ErrorClassification.STRATEGY_INEFFECTIVE
    assert classify_error(plain, []) == ErrorClassification.UNKNOWN_ERROR


def test_network_failure_plans_retry():
    failure = generator.tool_failure(
        "weather-service", "connection refused", error_name="NetworkError", tool_failed=False
    )
    plan = ErrorRecoverySystem().plan(store_with(failure).state)
    action = plan.top_action
    assert action.type == "network_recovery"
    assert action.actions[0].action == "retry_with_backoff"
    assert plan.confidence_adjustment == pytest.approx(-0.05 + 0.03 - 0.05)


def test_progress_stagnation_is_detected():
    store = store_with(*(generator.progress("Step: still looking") for _ in range(4)))
    detected = ErrorRecoverySystem().detect_errors(store.state)
    assert [error.pattern for error in detected] == ["progress_stagnation"]


def test_history_is_trimmed():
    recovery = ErrorRecoverySystem(history_limit=4, history_keep=2)
    for _ in range(5):
        recovery.record_attempt(ErrorClassification.NETWORK_FAILURE, "network_recovery")
    assert len(recovery.history) == 2


def test_strategy_rotation():
    assert next_strategy("default") == "conservative"
    assert next_strategy("exploratory") == "focused"
    assert next_strategy("focused") == "default"
    assert next_strategy("unheard-of") == "default"
