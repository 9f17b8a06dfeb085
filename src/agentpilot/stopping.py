"""Named stopping predicates evaluated in registration order."""

from __future__ import annotations

import operator
import threading
import time
from typing import Any, Callable

from pydantic import BaseModel, Field

from agentpilot.heuristics import DEFAULT_HEURISTICS, Heuristics, average_consecutive_similarity
from agentpilot.state import AgentState
from agentpilot.util.logging import get_logger

logger = get_logger(__name__)


class StopCheck(BaseModel):
    should_stop: bool = False
    reason: str = ""
    confidence: float = 0.0


class StopResult(StopCheck):
    name: str
    error: bool = False


class StopDecision(BaseModel):
    should_stop: bool
    condition: str | None = None
    reason: str = "No stopping conditions met"
    confidence: float = 0.0
    results: list[StopResult] = Field(default_factory=list)


Predicate = Callable[[AgentState], StopCheck]

_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    ">=": operator.ge,
    "<=": operator.le,
    "==": operator.eq,
    ">": operator.gt,
    "<": operator.lt,
}


def _lookup(state: AgentState, path: str) -> Any:
    value: Any = state
    for key in path.split("."):
        if value is None:
            return None
        if isinstance(value, dict):
            value = value.get(key)
        else:
            value = getattr(value, key, None)
    return value


def create_custom_condition(
    property_path: str, op: str, threshold: Any, reason: str | None = None
) -> Predicate:
    """Build a predicate comparing a dotted state attribute against a threshold."""
    if op not in _OPERATORS:
        raise ValueError(f"Unsupported operator {op!r}")
    compare = _OPERATORS[op]
    message = reason or f"Custom condition: {property_path} {op} {threshold}"

    def predicate(state: AgentState) -> StopCheck:
        value = _lookup(state, property_path)
        if value is None:
            return StopCheck(reason=message)
        should_stop = bool(compare(value, threshold))
        return StopCheck(should_stop=should_stop, reason=message, confidence=0.7 if should_stop else 0.0)

    return predicate


class StoppingConditions:
    """First firing predicate wins; a raising predicate counts as not firing."""

    def __init__(
        self,
        max_execution_seconds: float = 300.0,
        error_threshold: int = 3,
        high_confidence: float = 0.9,
        stagnation_threshold: float = 0.7,
        heuristics: Heuristics | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_execution_seconds = max_execution_seconds
        self.error_threshold = error_threshold
        self.high_confidence = high_confidence
        self.stagnation_threshold = stagnation_threshold
        self.heuristics = heuristics or DEFAULT_HEURISTICS
        self._clock = clock
        self._conditions: dict[str, Predicate] = {}
        self._lock = threading.Lock()
        self.add_condition("max_iterations", self._max_iterations)
        self.add_condition("solution_found", self._solution_found)
        self.add_condition("high_confidence", self._high_confidence)
        self.add_condition("error_threshold", self._error_threshold)
        self.add_condition("stagnation", self._stagnation)
        self.add_condition("human_intervention", self._human_intervention)
        self.add_condition("time_limit", self._time_limit)

    def add_condition(self, name: str, predicate: Predicate) -> None:
        with self._lock:
            self._conditions = {**self._conditions, name: predicate}

    def remove_condition(self, name: str) -> bool:
        with self._lock:
            if name not in self._conditions:
                return False
            self._conditions = {key: fn for key, fn in self._conditions.items() if key != name}
        return True

    def condition_names(self) -> list[str]:
        return list(self._conditions)

    def evaluate_all(self, state: AgentState) -> list[StopResult]:
        results: list[StopResult] = []
        for name, predicate in self._conditions.items():
            try:
                check = predicate(state)
                results.append(StopResult(name=name, **check.model_dump()))
            except Exception as exc:
                logger.warning("Stopping condition %s raised: %s", name, exc, exc_info=True)
                results.append(
                    StopResult(
                        name=name,
                        reason=f"Error in condition evaluation: {exc}",
                        error=True,
                    )
                )
        return results

    def evaluate(self, state: AgentState) -> StopDecision:
        results = self.evaluate_all(state)
        for result in results:
            if result.should_stop:
                return StopDecision(
                    should_stop=True,
                    condition=result.name,
                    reason=result.reason,
                    confidence=result.confidence,
                    results=results,
                )
        return StopDecision(should_stop=False, results=results)

    def evaluate_condition(self, name: str, state: AgentState) -> StopCheck:
        predicate = self._conditions.get(name)
        if predicate is None:
            raise KeyError(f"Stopping condition '{name}' not found")
        return predicate(state)

    def _max_iterations(self, state: AgentState) -> StopCheck:
        return StopCheck(
            should_stop=state.current_iteration >= state.max_iterations,
            reason="Maximum iterations reached",
            confidence=1.0,
        )

    def _solution_found(self, state: AgentState) -> StopCheck:
        last = state.last_reasoning
        if last is None:
            return StopCheck()
        found = self.heuristics.contains_solution(last.content)
        return StopCheck(
            should_stop=found, reason="Solution found in reasoning", confidence=0.8 if found else 0.0
        )

    def _high_confidence(self, state: AgentState) -> StopCheck:
        return StopCheck(
            should_stop=state.confidence >= self.high_confidence,
            reason="High confidence threshold reached",
            confidence=state.confidence,
        )

    def _error_threshold(self, state: AgentState) -> StopCheck:
        return StopCheck(
            should_stop=len(state.errors) >= self.error_threshold,
            reason=f"Error threshold reached ({len(state.errors)} errors)",
            confidence=0.1,
        )

    def _stagnation(self, state: AgentState) -> StopCheck:
        if len(state.reasoning) < 3:
            return StopCheck()
        texts = [entry.content for entry in state.reasoning[-3:]]
        similarity = average_consecutive_similarity(texts, self.heuristics.similarity)
        return StopCheck(
            should_stop=similarity > self.stagnation_threshold,
            reason=f"Reasoning stagnation detected (similarity {similarity:.2f})",
            confidence=0.6,
        )

    def _human_intervention(self, state: AgentState) -> StopCheck:
        return StopCheck(
            should_stop=state.awaiting_human_input, reason="Awaiting human input", confidence=0.5
        )

    def _time_limit(self, state: AgentState) -> StopCheck:
        elapsed = state.elapsed_seconds(self._clock())
        return StopCheck(
            should_stop=elapsed > self.max_execution_seconds,
            reason=f"Time limit exceeded ({elapsed:.0f}s)",
            confidence=0.3,
        )
