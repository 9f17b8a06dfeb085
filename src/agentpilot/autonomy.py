"""Risk-based escalation and task-completion scoring."""

from __future__ import annotations

import math
import threading
import time
from typing import Any, Callable, Iterable

from pydantic import BaseModel, Field

from agentpilot.config import validate_operation_mode
from agentpilot.heuristics import DEFAULT_HEURISTICS, RISKY_ACTION_TYPES, Heuristics, meaningful_terms
from agentpilot.observations import ObservationType
from agentpilot.state import AgentState
from agentpilot.util.logging import get_logger

logger = get_logger(__name__)

DEFAULT_FACTOR_WEIGHTS: dict[str, float] = {
    "confidence": 0.3,
    "complexity": 0.25,
    "error_rate": 0.2,
    "progress": 0.15,
    "uncertainty": 0.1,
    "safety": 0.3,
    "resources": 0.1,
}
DEFAULT_COMPLETION_WEIGHTS: dict[str, float] = {
    "solution_present": 0.3,
    "high_confidence": 0.25,
    "no_recent_errors": 0.2,
    "reasoning_complete": 0.15,
    "query_addressed": 0.1,
}
# Most severe first; picks the trigger reported when several factors are risky.
TRIGGER_SEVERITY: tuple[str, ...] = (
    "safety_concern",
    "repeated_errors",
    "resource_limit",
    "high_complexity",
    "stagnation",
    "high_uncertainty",
    "low_confidence",
)
DECISION_HISTORY_LIMIT = 100


class AutonomyConfig(BaseModel):
    """Tunable thresholds and weights; the defaults are uncalibrated heuristics."""

    confidence_threshold: float = 0.7
    error_threshold: int = 2
    complexity_threshold: float = 0.8
    uncertainty_threshold: float = 0.6
    safety_threshold: float = 0.7
    resource_threshold: float = 0.8
    progress_similarity_threshold: float = 0.8
    weights: dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_FACTOR_WEIGHTS))
    risk_thresholds: dict[str, float] = Field(
        default_factory=lambda: {"supervised": 0.3, "autonomous": 0.5}
    )
    completion_weights: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_COMPLETION_WEIGHTS)
    )
    completion_threshold: float = 0.7
    completion_confidence_cap: float = 0.95
    recent_error_seconds: float = 60.0
    max_execution_seconds: float = 300.0
    max_llm_calls: int = 20


class FactorResult(BaseModel):
    name: str
    value: float
    is_risky: bool
    trigger: str | None = None
    weight: float
    description: str = ""
    acknowledged: bool = False


class AutonomyDecision(BaseModel):
    should_continue: bool
    reason: str
    trigger: str | None = None
    confidence: float
    risk_score: float = 0.0
    risk_threshold: float | None = None
    operation_mode: str
    factors: list[FactorResult] = Field(default_factory=list)

    @property
    def risk_factors(self) -> list[FactorResult]:
        return [factor for factor in self.factors if factor.is_risky and not factor.acknowledged]


class DecisionRecord(BaseModel):
    session_id: str
    iteration: int
    should_continue: bool
    reason: str
    trigger: str | None = None
    confidence: float
    risk_score: float
    operation_mode: str
    agent_confidence: float
    timestamp: float


class CompletionIndicator(BaseModel):
    name: str
    is_complete: bool
    confidence: float
    weight: float
    description: str = ""


class CompletionResult(BaseModel):
    is_complete: bool
    confidence: float
    score: float
    indicators: list[CompletionIndicator] = Field(default_factory=list)
    reason: str

    @property
    def satisfied(self) -> list[str]:
        return [indicator.name for indicator in self.indicators if indicator.is_complete]


def progressive_reasoning(contents: list[str]) -> bool:
    """True when later reasoning is not markedly shorter than earlier reasoning."""
    if len(contents) < 2:
        return True
    lengths = [len(content) for content in contents]
    half = math.ceil(len(lengths) / 2)
    early = sum(lengths[:half]) / half
    late = sum(lengths[len(lengths) // 2 :]) / half
    return late >= early * 0.8


class AutonomousOperationManager:
    """Decide whether a session may keep running without a human.

    The operation mode and configuration are shared by every session driven by
    one controller; a session may override the mode per call.
    """

    def __init__(
        self,
        operation_mode: str = "supervised",
        config: AutonomyConfig | None = None,
        heuristics: Heuristics | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._validate_mode(operation_mode)
        self.operation_mode = operation_mode
        self.config = config or AutonomyConfig()
        self.heuristics = heuristics or DEFAULT_HEURISTICS
        self._clock = clock
        self._history: list[DecisionRecord] = []
        self._lock = threading.Lock()

    @staticmethod
    def _validate_mode(mode: str) -> None:
        validate_operation_mode(mode)

    def set_operation_mode(self, mode: str) -> None:
        self._validate_mode(mode)
        self.operation_mode = mode
        logger.info("Operation mode set to %s", mode)

    def merged_config(self, changes: dict[str, Any]) -> AutonomyConfig:
        """Return the current configuration with ``changes`` applied.

        Nested weight maps merge key by key; unknown keys raise ``ValueError``.
        """
        unknown = set(changes) - set(AutonomyConfig.model_fields)
        if unknown:
            raise ValueError(f"Unknown autonomy settings: {', '.join(sorted(unknown))}")
        data = self.config.model_dump()
        for key, value in changes.items():
            if isinstance(value, dict) and isinstance(data.get(key), dict):
                data[key] = {**data[key], **value}
            else:
                data[key] = value
        return AutonomyConfig.model_validate(data)

    def configure(self, changes: dict[str, Any]) -> AutonomyConfig:
        self.config = self.merged_config(changes)
        logger.info("Autonomy configuration updated: %s", sorted(changes))
        return self.config

    def get_configuration(self) -> dict[str, Any]:
        return {
            "operation_mode": self.operation_mode,
            "config": self.config.model_dump(),
            "decision_history_count": len(self._history),
        }

    def decision_history(self) -> list[DecisionRecord]:
        with self._lock:
            return list(self._history)

    def should_continue(
        self,
        state: AgentState,
        mode: str | None = None,
        acknowledged: Iterable[str] = (),
        config: AutonomyConfig | None = None,
    ) -> AutonomyDecision:
        """Score the seven risk factors and decide whether to keep going.

        Factors whose trigger appears in ``acknowledged`` were already approved
        by a human for this session and do not count towards the risk score.
        """
        mode = mode or self.operation_mode
        self._validate_mode(mode)
        if mode == "manual":
            decision = AutonomyDecision(
                should_continue=False,
                reason="Manual mode requires human input for each step",
                trigger="manual_mode",
                confidence=1.0,
                operation_mode=mode,
            )
            self._record(decision, state)
            return decision
        config = config or self.config
        approved = set(acknowledged)
        factors = self.evaluate_factors(state, config)
        for factor in factors:
            if factor.is_risky and factor.trigger in approved:
                factor.acknowledged = True
        decision = self._decide(factors, mode, config)
        self._record(decision, state)
        return decision

    def evaluate_factors(
        self, state: AgentState, config: AutonomyConfig | None = None
    ) -> list[FactorResult]:
        config = config or self.config
        return [
            self.confidence_factor(state, config),
            self.complexity_factor(state, config),
            self.error_rate_factor(state, config),
            self.progress_factor(state, config),
            self.uncertainty_factor(state, config),
            self.safety_factor(state, config),
            self.resource_factor(state, config),
        ]

    def _weight(self, name: str, config: AutonomyConfig) -> float:
        return config.weights.get(name, DEFAULT_FACTOR_WEIGHTS.get(name, 0.0))

    def confidence_factor(
        self, state: AgentState, config: AutonomyConfig | None = None
    ) -> FactorResult:
        config = config or self.config
        risky = state.confidence < config.confidence_threshold
        return FactorResult(
            name="confidence",
            value=state.confidence,
            is_risky=risky,
            trigger="low_confidence" if risky else None,
            weight=self._weight("confidence", config),
            description=f"Agent confidence: {state.confidence * 100:.1f}%",
        )

    def complexity_factor(
        self, state: AgentState, config: AutonomyConfig | None = None
    ) -> FactorResult:
        config = config or self.config
        score = self.heuristics.task_complexity(
            state.original_query,
            len(state.reasoning),
            [action.type for action in state.actions],
        )
        risky = score > config.complexity_threshold
        return FactorResult(
            name="complexity",
            value=score,
            is_risky=risky,
            trigger="high_complexity" if risky else None,
            weight=self._weight("complexity", config),
            description=f"Task complexity score: {score * 100:.1f}%",
        )

    def error_rate_factor(
        self, state: AgentState, config: AutonomyConfig | None = None
    ) -> FactorResult:
        config = config or self.config
        count = len(state.errors)
        recent = state.errors[-3:]
        repeated = len(recent) >= 2 and all(error.type == recent[0].type for error in recent)
        risky = count >= config.error_threshold or repeated
        return FactorResult(
            name="error_rate",
            value=float(count),
            is_risky=risky,
            trigger="repeated_errors" if risky else None,
            weight=self._weight("error_rate", config),
            description=f"Error count: {count}, repeated: {repeated}",
        )

    def has_recent_progress(
        self, state: AgentState, config: AutonomyConfig | None = None
    ) -> bool:
        config = config or self.config
        if len(state.reasoning) < 2:
            return True
        previous, latest = state.reasoning[-2:]
        similarity = self.heuristics.similarity(previous.content, latest.content)
        return similarity < config.progress_similarity_threshold

    def progress_factor(
        self, state: AgentState, config: AutonomyConfig | None = None
    ) -> FactorResult:
        config = config or self.config
        ratio = state.current_iteration / state.max_iterations
        stagnant = ratio > 0.5 and not self.has_recent_progress(state, config)
        return FactorResult(
            name="progress",
            value=ratio,
            is_risky=stagnant,
            trigger="stagnation" if stagnant else None,
            weight=self._weight("progress", config),
            description=(
                f"Progress: {state.current_iteration}/{state.max_iterations} iterations, "
                f"stagnant: {stagnant}"
            ),
        )

    def uncertainty_factor(
        self, state: AgentState, config: AutonomyConfig | None = None
    ) -> FactorResult:
        config = config or self.config
        score = 0.0
        if len(state.reasoning) > 1:
            recent = [entry.content for entry in state.reasoning[-2:]]
            if self.heuristics.contradiction(recent):
                score += 0.4
        observations = state.observations
        if observations:
            errors = sum(1 for obs in observations if obs.type == ObservationType.ERROR)
            score += errors / len(observations) * 0.3
        risky = score > config.uncertainty_threshold
        return FactorResult(
            name="uncertainty",
            value=score,
            is_risky=risky,
            trigger="high_uncertainty" if risky else None,
            weight=self._weight("uncertainty", config),
            description=f"Uncertainty score: {score * 100:.1f}%",
        )

    def safety_factor(
        self, state: AgentState, config: AutonomyConfig | None = None
    ) -> FactorResult:
        config = config or self.config
        score = 1.0
        if self.heuristics.autonomy_unsafe(state.original_query):
            score -= 0.5
        if any(action.type in RISKY_ACTION_TYPES for action in state.actions):
            score -= 0.3
        risky = score < config.safety_threshold
        return FactorResult(
            name="safety",
            value=score,
            is_risky=risky,
            trigger="safety_concern" if risky else None,
            weight=self._weight("safety", config),
            description=f"Safety score: {score * 100:.1f}%",
        )

    def resource_usage(
        self, state: AgentState, config: AutonomyConfig | None = None
    ) -> tuple[float, float, float]:
        config = config or self.config
        elapsed = state.elapsed_seconds(self._clock())
        time_ratio = elapsed / config.max_execution_seconds
        llm_ratio = state.metrics.llm_calls / config.max_llm_calls
        return max(time_ratio, llm_ratio), elapsed, llm_ratio

    def resource_factor(
        self, state: AgentState, config: AutonomyConfig | None = None
    ) -> FactorResult:
        config = config or self.config
        usage, elapsed, _ = self.resource_usage(state, config)
        risky = usage > config.resource_threshold
        return FactorResult(
            name="resources",
            value=usage,
            is_risky=risky,
            trigger="resource_limit" if risky else None,
            weight=self._weight("resources", config),
            description=(
                f"Resource usage: {usage * 100:.1f}% (time: {elapsed:.0f}s, "
                f"LLM calls: {state.metrics.llm_calls})"
            ),
        )

    def _decide(
        self, factors: list[FactorResult], mode: str, config: AutonomyConfig
    ) -> AutonomyDecision:
        counted = [factor for factor in factors if factor.is_risky and not factor.acknowledged]
        risk = sum(factor.weight for factor in counted)
        threshold = config.risk_thresholds.get(mode, 0.3)
        should_continue = risk < threshold
        triggers = [factor.trigger for factor in counted if factor.trigger]
        trigger = None
        for candidate in TRIGGER_SEVERITY:
            if candidate in triggers:
                trigger = candidate
                break
        if trigger is None and triggers:
            trigger = triggers[0]
        if should_continue:
            reason = "Risk factors within acceptable thresholds for autonomous operation"
            confidence = max(0.1, 1 - risk)
        else:
            reason = (
                f"Risk factors exceed threshold ({risk * 100:.1f}% >= {threshold * 100:.1f}%)"
            )
            confidence = min(0.9, risk)
        return AutonomyDecision(
            should_continue=should_continue,
            reason=reason,
            trigger=trigger,
            confidence=confidence,
            risk_score=risk,
            risk_threshold=threshold,
            operation_mode=mode,
            factors=factors,
        )

    def _record(self, decision: AutonomyDecision, state: AgentState) -> None:
        record = DecisionRecord(
            session_id=state.session_id,
            iteration=state.current_iteration,
            should_continue=decision.should_continue,
            reason=decision.reason,
            trigger=decision.trigger,
            confidence=decision.confidence,
            risk_score=decision.risk_score,
            operation_mode=decision.operation_mode,
            agent_confidence=state.confidence,
            timestamp=self._clock(),
        )
        with self._lock:
            self._history.append(record)
            if len(self._history) > DECISION_HISTORY_LIMIT:
                del self._history[: len(self._history) - DECISION_HISTORY_LIMIT]
        if not decision.should_continue:
            logger.info(
                "Escalating session %s at iteration %s: %s (trigger=%s)",
                state.session_id,
                state.current_iteration,
                decision.reason,
                decision.trigger,
            )

    def detect_task_completion(
        self, state: AgentState, config: AutonomyConfig | None = None
    ) -> CompletionResult:
        config = config or self.config
        indicators = self.completion_indicators(state, config)
        score = sum(indicator.weight for indicator in indicators if indicator.is_complete)
        complete = score >= config.completion_threshold
        return CompletionResult(
            is_complete=complete,
            confidence=min(config.completion_confidence_cap, score),
            score=score,
            indicators=indicators,
            reason=(
                "Task completion indicators suggest successful resolution"
                if complete
                else "Task completion indicators insufficient for autonomous termination"
            ),
        )

    def completion_indicators(
        self, state: AgentState, config: AutonomyConfig | None = None
    ) -> list[CompletionIndicator]:
        config = config or self.config
        weights = config.completion_weights
        indicators: list[CompletionIndicator] = []

        last = state.last_reasoning
        if last is None:
            indicators.append(
                CompletionIndicator(
                    name="solution_present",
                    is_complete=False,
                    confidence=0.0,
                    weight=weights.get("solution_present", 0.0),
                    description="No reasoning available",
                )
            )
        else:
            present = self.heuristics.definitive_statement(last.content)
            indicators.append(
                CompletionIndicator(
                    name="solution_present",
                    is_complete=present,
                    confidence=0.8 if present else 0.2,
                    weight=weights.get("solution_present", 0.0),
                    description=f"Solution indicators present: {present}",
                )
            )

        high = state.confidence >= 0.8
        indicators.append(
            CompletionIndicator(
                name="high_confidence",
                is_complete=high,
                confidence=state.confidence,
                weight=weights.get("high_confidence", 0.0),
                description=f"Agent confidence: {state.confidence * 100:.1f}%",
            )
        )

        cutoff = self._clock() - config.recent_error_seconds
        recent_errors = [error for error in state.errors if error.timestamp > cutoff]
        clean = not recent_errors
        indicators.append(
            CompletionIndicator(
                name="no_recent_errors",
                is_complete=clean,
                confidence=0.9 if clean else max(0.1, 1 - len(recent_errors) * 0.3),
                weight=weights.get("no_recent_errors", 0.0),
                description=f"Recent errors: {len(recent_errors)}",
            )
        )

        contents = [entry.content for entry in state.reasoning]
        progressive = progressive_reasoning(contents)
        complete = len(contents) >= 2 and progressive
        indicators.append(
            CompletionIndicator(
                name="reasoning_complete",
                is_complete=complete,
                confidence=0.7 if complete else 0.3,
                weight=weights.get("reasoning_complete", 0.0),
                description=f"Reasoning steps: {len(contents)}, progressive: {progressive}",
            )
        )

        terms = meaningful_terms(state.original_query)
        text = " ".join(contents).lower()
        addressed = [term for term in terms if term in text]
        ratio = len(addressed) / len(terms) if terms and contents else 0.0
        indicators.append(
            CompletionIndicator(
                name="query_addressed",
                is_complete=ratio >= 0.5,
                confidence=ratio,
                weight=weights.get("query_addressed", 0.0),
                description=f"Query terms addressed: {len(addressed)}/{len(terms)}",
            )
        )
        return indicators
