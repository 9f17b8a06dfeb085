"""Error detection and rate-limited recovery planning."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from pydantic import BaseModel, Field

from agentpilot.failures import ErrorClassification, is_recoverable
from agentpilot.observations import Observation, ObservationType
from agentpilot.state import AgentState
from agentpilot.util.logging import get_logger

logger = get_logger(__name__)

STRATEGY_ROTATION = ("default", "conservative", "aggressive", "exploratory", "focused")


class RecoveryStep(BaseModel):
    action: str
    details: str
    parameters: dict[str, Any] = Field(default_factory=dict)


class RecoveryAction(BaseModel):
    type: str
    description: str
    priority: float
    actions: list[RecoveryStep] = Field(default_factory=list)
    expected_outcome: str = ""
    confidence_impact: float = 0.0
    classification: ErrorClassification
    tool_name: str | None = None


class DetectedError(BaseModel):
    classification: ErrorClassification
    severity: float
    recoverable: bool
    content: str
    tool_name: str | None = None
    pattern: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: float = Field(default_factory=time.time)


class PlannedStrategy(BaseModel):
    classification: ErrorClassification
    strategy_name: str
    priority: float
    action: RecoveryAction


class RecoveryPlan(BaseModel):
    detected_errors: list[DetectedError] = Field(default_factory=list)
    strategies: list[PlannedStrategy] = Field(default_factory=list)
    total_errors: int = 0
    recoverable_errors: int = 0
    confidence_adjustment: float = 0.0

    @property
    def prioritized_actions(self) -> list[RecoveryAction]:
        return [strategy.action for strategy in self.strategies]

    @property
    def top_action(self) -> RecoveryAction | None:
        return self.strategies[0].action if self.strategies else None

    @property
    def is_empty(self) -> bool:
        return not self.strategies


class RecoveryRecord(BaseModel):
    classification: ErrorClassification
    action_type: str
    session_id: str | None = None
    success: bool | None = None
    timestamp: float


ActionFactory = Callable[[DetectedError, AgentState], RecoveryAction]


@dataclass(frozen=True)
class RecoveryStrategy:
    classification: ErrorClassification
    name: str
    priority: float
    factory: ActionFactory


def _tool_recovery(error: DetectedError, state: AgentState) -> RecoveryAction:
    failed = error.tool_name or "unknown"
    return RecoveryAction(
        type="tool_recovery",
        description=f"Recover from {failed} failure by trying alternative approach",
        priority=0.9,
        actions=[
            RecoveryStep(
                action="try_alternative_tool",
                details=f"Find alternative to {failed}",
                parameters={"failed_tool": failed},
            ),
            RecoveryStep(
                action="adjust_parameters",
                details="Modify parameters based on error feedback",
                parameters={"original_error": error.data},
            ),
        ],
        expected_outcome="Tool execution succeeds with alternative approach",
        confidence_impact=0.1,
        classification=error.classification,
        tool_name=error.tool_name,
    )


def _parameter_recovery(error: DetectedError, state: AgentState) -> RecoveryAction:
    return RecoveryAction(
        type="parameter_recovery",
        description="Recover from parameter validation failure",
        priority=0.8,
        actions=[
            RecoveryStep(
                action="validate_and_correct_parameters",
                details="Analyze and correct parameter issues",
                parameters={"error_details": error.data},
            ),
            RecoveryStep(
                action="request_parameter_clarification",
                details="Request clarification for ambiguous parameters",
                parameters={"validation_error": error.content},
            ),
        ],
        expected_outcome="Parameters validated and tool execution succeeds",
        confidence_impact=0.05,
        classification=error.classification,
        tool_name=error.tool_name,
    )


def _network_recovery(error: DetectedError, state: AgentState) -> RecoveryAction:
    return RecoveryAction(
        type="network_recovery",
        description="Recover from network connectivity issues",
        priority=0.7,
        actions=[
            RecoveryStep(
                action="retry_with_backoff",
                details="Retry operation with exponential backoff",
                parameters={"retry_count": 3, "backoff_multiplier": 2},
            ),
            RecoveryStep(
                action="use_cached_data",
                details="Fall back to cached data if available",
                parameters={"cache_key": error.tool_name},
            ),
        ],
        expected_outcome="Network operation succeeds or graceful degradation",
        confidence_impact=-0.05,
        classification=error.classification,
        tool_name=error.tool_name,
    )


def _strategy_recovery(error: DetectedError, state: AgentState) -> RecoveryAction:
    return RecoveryAction(
        type="strategy_recovery",
        description="Adapt strategy based on repeated failures",
        priority=0.6,
        actions=[
            RecoveryStep(
                action="change_strategy",
                details="Switch to alternative problem-solving strategy",
                parameters={"current_strategy": state.strategy, "failure_pattern": error.pattern},
            ),
            RecoveryStep(
                action="break_down_problem",
                details="Break complex problem into smaller parts",
                parameters={"original_query": state.original_query},
            ),
        ],
        expected_outcome="New strategy shows improved progress",
        confidence_impact=-0.1,
        classification=error.classification,
        tool_name=error.tool_name,
    )


def _resource_recovery(error: DetectedError, state: AgentState) -> RecoveryAction:
    return RecoveryAction(
        type="resource_recovery",
        description="Recover from resource limitations",
        priority=0.5,
        actions=[
            RecoveryStep(
                action="optimize_resource_usage",
                details="Reduce resource consumption",
                parameters={"context": error.data.get("context")},
            ),
            RecoveryStep(
                action="prioritize_essential_operations",
                details="Focus on most important operations only",
            ),
        ],
        expected_outcome="Operations continue within resource limits",
        confidence_impact=-0.15,
        classification=error.classification,
        tool_name=error.tool_name,
    )


DEFAULT_STRATEGIES: tuple[RecoveryStrategy, ...] = (
    RecoveryStrategy(ErrorClassification.TOOL_EXECUTION_FAILED, "tool_recovery", 0.9, _tool_recovery),
    RecoveryStrategy(
        ErrorClassification.PARAMETER_VALIDATION_FAILED, "parameter_recovery", 0.8, _parameter_recovery
    ),
    RecoveryStrategy(ErrorClassification.NETWORK_FAILURE, "network_recovery", 0.7, _network_recovery),
    RecoveryStrategy(ErrorClassification.STRATEGY_INEFFECTIVE, "strategy_recovery", 0.6, _strategy_recovery),
    RecoveryStrategy(ErrorClassification.RESOURCE_EXHAUSTION, "resource_recovery", 0.5, _resource_recovery),
)


def next_strategy(current: str) -> str:
    if current in STRATEGY_ROTATION:
        index = STRATEGY_ROTATION.index(current)
        return STRATEGY_ROTATION[(index + 1) % len(STRATEGY_ROTATION)]
    return STRATEGY_ROTATION[0]


def classify_error(observation: Observation, preceding: Sequence[Observation]) -> ErrorClassification:
    error_name = observation.data.get("error_name")
    if observation.tool_name:
        if observation.ground_truth.get("tool_failed"):
            return ErrorClassification.TOOL_EXECUTION_FAILED
        if error_name == "ValidationError":
            return ErrorClassification.PARAMETER_VALIDATION_FAILED
    if error_name in {"NetworkError", "TimeoutError"}:
        return ErrorClassification.NETWORK_FAILURE
    context = str(observation.data.get("context") or "")
    if "limit" in context or "exhausted" in context:
        return ErrorClassification.RESOURCE_EXHAUSTION
    if sum(1 for obs in preceding if obs.type == ObservationType.ERROR) >= 2:
        return ErrorClassification.STRATEGY_INEFFECTIVE
    return ErrorClassification.UNKNOWN_ERROR


def error_severity(
    observation: Observation, preceding: Sequence[Observation], following: Sequence[Observation]
) -> float:
    severity = 0.5
    if observation.tool_name:
        severity += 0.2
    severity += 0.1 * sum(1 for obs in preceding if obs.type == ObservationType.ERROR)
    if observation.confidence > 0.8:
        severity += 0.1
    if not following:
        severity += 0.2
    return min(1.0, severity)


class ErrorRecoverySystem:
    """Classify recent errors and plan rate-limited recoveries.

    Attempts are rate limited per session. The history is capped, shared by
    every caller of one instance and guarded by a lock.
    """

    def __init__(
        self,
        max_recovery_attempts: int = 3,
        window_seconds: float = 300.0,
        observation_window: int = 5,
        history_limit: int = 100,
        history_keep: int = 50,
        clock: Callable[[], float] = time.time,
        strategies: Sequence[RecoveryStrategy] = DEFAULT_STRATEGIES,
    ) -> None:
        self.max_recovery_attempts = max_recovery_attempts
        self.window_seconds = window_seconds
        self.observation_window = observation_window
        self.history_limit = history_limit
        self.history_keep = history_keep
        self._clock = clock
        self._strategies = {strategy.classification: strategy for strategy in strategies}
        self._history: list[RecoveryRecord] = []
        self._lock = threading.Lock()

    def register_strategy(self, strategy: RecoveryStrategy) -> None:
        self._strategies[strategy.classification] = strategy

    @property
    def history(self) -> list[RecoveryRecord]:
        with self._lock:
            return list(self._history)

    def detect_errors(self, state: AgentState) -> list[DetectedError]:
        """Classify the latest unresolved error and any failure patterns."""
        observations = state.observations
        start = max(0, len(observations) - self.observation_window)
        detected: list[DetectedError] = []
        latest = self._latest_unresolved_error(observations, start)
        if latest is not None:
            observation = observations[latest]
            preceding = observations[max(0, latest - 3) : latest]
            following = observations[latest + 1 : latest + 4]
            classification = classify_error(observation, preceding)
            detected.append(
                DetectedError(
                    classification=classification,
                    severity=error_severity(observation, preceding, following),
                    recoverable=is_recoverable(classification),
                    content=observation.content,
                    tool_name=observation.tool_name,
                    data=dict(observation.data),
                    timestamp=observation.timestamp,
                )
            )
        detected.extend(self._pattern_errors(observations[start:]))
        return sorted(detected, key=lambda error: error.severity, reverse=True)

    def _latest_unresolved_error(self, observations: Sequence[Observation], start: int) -> int | None:
        for index in range(len(observations) - 1, start - 1, -1):
            obs = observations[index]
            if obs.type == ObservationType.SUCCESS:
                return None
            if obs.type == ObservationType.ERROR:
                return index
        return None

    def _pattern_errors(self, window: Sequence[Observation]) -> list[DetectedError]:
        now = self._clock()
        errors: list[DetectedError] = []
        failures: dict[str, int] = {}
        for obs in window:
            if obs.type == ObservationType.ERROR and obs.tool_name:
                failures[obs.tool_name] = failures.get(obs.tool_name, 0) + 1
        repeated = [tool for tool, count in failures.items() if count >= 2]
        if repeated:
            errors.append(
                DetectedError(
                    classification=ErrorClassification.STRATEGY_INEFFECTIVE,
                    severity=0.8,
                    recoverable=True,
                    content=f"Pattern detected: Repeated failures with tools {', '.join(repeated)}",
                    pattern="repeated_tool_failures",
                    data={"tools": repeated},
                    timestamp=now,
                )
            )
        progress = [obs.content for obs in window if obs.type == ObservationType.PROGRESS]
        if len(progress) >= 3:
            recent = progress[-5:]
            ratio = len(set(recent)) / len(recent)
            if ratio < 0.6:
                errors.append(
                    DetectedError(
                        classification=ErrorClassification.STRATEGY_INEFFECTIVE,
                        severity=0.7,
                        recoverable=True,
                        content="Pattern detected: Progress stagnation with similar observations",
                        pattern="progress_stagnation",
                        data={"stagnation_ratio": ratio},
                        timestamp=now,
                    )
                )
        return errors

    def can_attempt(self, classification: ErrorClassification, session_id: str | None = None) -> bool:
        cutoff = self._clock() - self.window_seconds
        with self._lock:
            recent = [
                record
                for record in self._history
                if record.classification == classification
                and record.session_id == session_id
                and record.timestamp > cutoff
            ]
        return len(recent) < self.max_recovery_attempts

    def record_attempt(
        self,
        classification: ErrorClassification,
        action_type: str,
        success: bool | None = None,
        session_id: str | None = None,
    ) -> None:
        with self._lock:
            self._history.append(
                RecoveryRecord(
                    classification=classification,
                    action_type=action_type,
                    success=success,
                    session_id=session_id,
                    timestamp=self._clock(),
                )
            )
            if len(self._history) > self.history_limit:
                self._history = self._history[-self.history_keep :]

    def forget_session(self, session_id: str) -> int:
        with self._lock:
            kept = [record for record in self._history if record.session_id != session_id]
            removed = len(self._history) - len(kept)
            self._history = kept
        return removed

    def plan(self, state: AgentState, detected: list[DetectedError] | None = None) -> RecoveryPlan:
        """Build a recovery plan and record an attempt for every planned strategy."""
        if detected is None:
            detected = self.detect_errors(state)
        recoverable = [error for error in detected if error.recoverable]
        planned: list[PlannedStrategy] = []
        seen: set[ErrorClassification] = set()
        for error in recoverable:
            if error.classification in seen:
                continue
            strategy = self._strategies.get(error.classification)
            if strategy is None or not self.can_attempt(error.classification, state.session_id):
                continue
            seen.add(error.classification)
            action = strategy.factory(error, state)
            planned.append(
                PlannedStrategy(
                    classification=error.classification,
                    strategy_name=strategy.name,
                    priority=strategy.priority,
                    action=action,
                )
            )
            self.record_attempt(error.classification, action.type, session_id=state.session_id)
        planned.sort(key=lambda item: item.priority, reverse=True)
        plan = RecoveryPlan(
            detected_errors=detected,
            strategies=planned,
            total_errors=len(detected),
            recoverable_errors=len(recoverable),
            confidence_adjustment=self.confidence_adjustment(detected, planned),
        )
        if planned:
            logger.info(
                "Recovery plan for %s: %s",
                state.session_id,
                ", ".join(item.strategy_name for item in planned),
            )
        return plan

    def confidence_adjustment(
        self, detected: Sequence[DetectedError], planned: Sequence[PlannedStrategy]
    ) -> float:
        adjustment = -0.05 * len(detected) + 0.03 * len(planned)
        if planned:
            adjustment += sum(item.action.confidence_impact for item in planned) / len(planned)
        return max(-0.3, min(0.1, adjustment))

    def status(self) -> dict[str, Any]:
        cutoff = self._clock() - self.window_seconds
        history = self.history
        return {
            "available_strategies": [item.value for item in self._strategies],
            "recent_history": [record.model_dump() for record in history[-10:]],
            "max_recovery_attempts": self.max_recovery_attempts,
            "recent_recoveries": sum(1 for record in history if record.timestamp > cutoff),
        }
