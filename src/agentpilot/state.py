"""Per-task agent state and the store that guards its invariants."""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field

from agentpilot.failures import InvalidTransitionError
from agentpilot.observations import Observation


class AgentStatus(str, Enum):
    NOT_STARTED = "not_started"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"


TERMINAL_STATUSES = frozenset(
    {AgentStatus.COMPLETED, AgentStatus.ERROR, AgentStatus.MAX_ITERATIONS_REACHED}
)

_TRANSITIONS: dict[AgentStatus, frozenset[AgentStatus]] = {
    AgentStatus.NOT_STARTED: frozenset({AgentStatus.PROCESSING, AgentStatus.ERROR}),
    AgentStatus.PROCESSING: frozenset(
        {
            AgentStatus.PROCESSING,
            AgentStatus.COMPLETED,
            AgentStatus.ERROR,
            AgentStatus.MAX_ITERATIONS_REACHED,
        }
    ),
}


class ReasoningEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    iteration: int
    content: str
    confidence: float
    timestamp: float = Field(default_factory=time.time)


class ActionEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    iteration: int
    type: str
    description: str
    success: bool | None = None
    tool_name: str | None = None
    parameters: dict[str, Any] | None = None
    timestamp: float = Field(default_factory=time.time)


class ErrorEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    iteration: int
    type: str
    message: str
    recoverable: bool = False
    phase: str | None = None
    timestamp: float = Field(default_factory=time.time)


class CheckpointRef(BaseModel):
    checkpoint_id: str
    reason: str
    resolved: bool = False


class AgentMetrics(BaseModel):
    llm_calls: int = 0
    tool_calls: int = 0
    successes: int = 0
    failures: int = 0


class AgentState(BaseModel):
    session_id: str
    original_query: str
    current_iteration: int = 0
    max_iterations: int = 10
    reasoning: list[ReasoningEntry] = Field(default_factory=list)
    actions: list[ActionEntry] = Field(default_factory=list)
    observations: list[Observation] = Field(default_factory=list)
    errors: list[ErrorEntry] = Field(default_factory=list)
    confidence: float = 0.0
    status: AgentStatus = AgentStatus.NOT_STARTED
    human_checkpoints: list[CheckpointRef] = Field(default_factory=list)
    awaiting_human_input: bool = False
    strategy: str = "default"
    metrics: AgentMetrics = Field(default_factory=AgentMetrics)
    start_time: float | None = None
    end_time: float | None = None
    stop_reason: str | None = None

    @property
    def last_reasoning(self) -> ReasoningEntry | None:
        return self.reasoning[-1] if self.reasoning else None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def elapsed_seconds(self, now: float | None = None) -> float:
        if self.start_time is None:
            return 0.0
        if self.end_time is not None:
            end = self.end_time
        else:
            end = now if now is not None else time.time()
        return max(0.0, end - self.start_time)

    def tools_used(self) -> list[str]:
        names: list[str] = []
        for action in self.actions:
            if action.tool_name and action.tool_name not in names:
                names.append(action.tool_name)
        return names


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


class StateStore:
    """Sole mutator of one task's state.

    History sequences only grow, confidence is clamped on every update and
    status changes follow the lifecycle table.
    """

    def __init__(
        self,
        query: str,
        max_iterations: int = 10,
        strategy: str = "default",
        session_id: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self._clock = clock
        self._state = AgentState(
            session_id=session_id or f"session-{uuid.uuid4().hex[:12]}",
            original_query=query,
            max_iterations=max_iterations,
            strategy=strategy,
        )

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def session_id(self) -> str:
        return self._state.session_id

    def snapshot(self) -> AgentState:
        return self._state.model_copy(deep=True)

    def now(self) -> float:
        return self._clock()

    def start(self) -> None:
        self.set_status(AgentStatus.PROCESSING)
        if self._state.start_time is None:
            self._state.start_time = self._clock()

    def next_iteration(self) -> bool:
        """Advance the iteration counter unless it would pass the limit."""
        if self._state.current_iteration >= self._state.max_iterations:
            return False
        self._state.current_iteration += 1
        return True

    def add_reasoning(self, content: str, confidence: float | None = None) -> ReasoningEntry:
        entry = ReasoningEntry(
            iteration=self._state.current_iteration,
            content=content,
            confidence=clamp(self._state.confidence if confidence is None else confidence),
            timestamp=self._clock(),
        )
        self._state.reasoning.append(entry)
        return entry

    def add_action(
        self,
        action_type: str,
        description: str,
        *,
        success: bool | None = None,
        tool_name: str | None = None,
        parameters: dict[str, Any] | None = None,
    ) -> ActionEntry:
        entry = ActionEntry(
            iteration=self._state.current_iteration,
            type=action_type,
            description=description,
            success=success,
            tool_name=tool_name,
            parameters=dict(parameters) if parameters is not None else None,
            timestamp=self._clock(),
        )
        self._state.actions.append(entry)
        return entry

    def add_observation(self, observation: Observation) -> Observation:
        if observation.iteration is None:
            observation = observation.model_copy(
                update={"iteration": self._state.current_iteration}
            )
        self._state.observations.append(observation)
        return observation

    def add_error(
        self,
        error_type: str,
        message: str,
        *,
        recoverable: bool = False,
        phase: str | None = None,
    ) -> ErrorEntry:
        entry = ErrorEntry(
            iteration=self._state.current_iteration,
            type=error_type,
            message=message,
            recoverable=recoverable,
            phase=phase,
            timestamp=self._clock(),
        )
        self._state.errors.append(entry)
        return entry

    def set_confidence(self, value: float) -> float:
        self._state.confidence = clamp(value)
        return self._state.confidence

    def adjust_confidence(self, delta: float) -> float:
        return self.set_confidence(self._state.confidence + delta)

    def set_strategy(self, strategy: str) -> None:
        self._state.strategy = strategy

    def set_max_iterations(self, value: int) -> int:
        """Change the iteration budget without going below iterations already run."""
        if value < 1:
            raise ValueError("max_iterations must be at least 1")
        self._state.max_iterations = max(value, self._state.current_iteration)
        return self._state.max_iterations

    def set_status(self, status: AgentStatus, reason: str | None = None) -> None:
        current = self._state.status
        allowed = _TRANSITIONS.get(current, frozenset())
        if status not in allowed:
            raise InvalidTransitionError(f"Cannot move from {current.value} to {status.value}")
        self._state.status = status
        if status in TERMINAL_STATUSES:
            self._state.awaiting_human_input = False
            self._state.end_time = self._clock()
            self._state.stop_reason = reason

    def add_checkpoint(self, checkpoint_id: str, reason: str) -> None:
        if self._state.status != AgentStatus.PROCESSING:
            raise InvalidTransitionError("Checkpoints can only be raised while processing")
        self._state.human_checkpoints.append(
            CheckpointRef(checkpoint_id=checkpoint_id, reason=reason)
        )
        self._state.awaiting_human_input = True

    def resolve_checkpoint(self, checkpoint_id: str) -> bool:
        for ref in self._state.human_checkpoints:
            if ref.checkpoint_id == checkpoint_id and not ref.resolved:
                ref.resolved = True
                break
        else:
            return False
        self._state.awaiting_human_input = any(
            not ref.resolved for ref in self._state.human_checkpoints
        )
        return True

    def record_llm_call(self) -> None:
        self._state.metrics.llm_calls += 1

    def record_tool_call(self, success: bool) -> None:
        metrics = self._state.metrics
        metrics.tool_calls += 1
        if success:
            metrics.successes += 1
        else:
            metrics.failures += 1

    def should_continue(self) -> bool:
        state = self._state
        return (
            state.status == AgentStatus.PROCESSING
            and not state.awaiting_human_input
            and state.current_iteration < state.max_iterations
        )
