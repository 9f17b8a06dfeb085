"""Blocker detection, human checkpoints and progress reports."""

from __future__ import annotations

import threading
import time
import uuid
from collections import Counter
from enum import Enum
from typing import Any, Callable, Iterable, Literal

from pydantic import BaseModel, Field

from agentpilot.failures import CheckpointError, CheckpointNotFoundError
from agentpilot.heuristics import BLOCKER_RISKY_ACTION_TYPES, DEFAULT_HEURISTICS, Heuristics
from agentpilot.state import AgentState, AgentStatus
from agentpilot.util.logging import get_logger

logger = get_logger(__name__)

Severity = Literal["low", "medium", "high"]

BLOCKER_PRIORITY: tuple[str, ...] = (
    "safety_constraints",
    "repeated_failures",
    "resource_exhaustion",
    "complexity_overload",
    "low_confidence_stagnation",
    "ambiguous_requirements",
)
HIGH_PRIORITY_REASONS = frozenset(
    {
        "safety_concern",
        "safety_constraints",
        "repeated_errors",
        "repeated_failures",
        "resource_limit",
        "resource_exhaustion",
    }
)
MEDIUM_PRIORITY_REASONS = frozenset(
    {
        "low_confidence",
        "low_confidence_stagnation",
        "high_complexity",
        "complexity_overload",
        "ambiguous_requirements",
        "high_uncertainty",
        "stagnation",
    }
)


class CheckpointStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    SKIPPED = "skipped"


class Blocker(BaseModel):
    type: str
    severity: Severity
    description: str
    evidence: dict[str, Any] = Field(default_factory=dict)
    recommendation: str


class BlockerRecommendation(BaseModel):
    action: str
    message: str
    urgency: str
    suggested_actions: list[str] = Field(default_factory=list)


class BlockerDetection(BaseModel):
    has_blocker: bool = False
    blocker: Blocker | None = None
    all_blockers: list[Blocker] = Field(default_factory=list)
    recommended_action: BlockerRecommendation | None = None
    blocker_id: str | None = None


class BlockerRecord(BaseModel):
    blocker_id: str
    session_id: str
    iteration: int
    blocker: Blocker
    status: Literal["detected", "resolved"] = "detected"
    timestamp: float


class Guidance(BaseModel):
    strategy: str | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    max_iterations: int | None = Field(default=None, ge=1)
    reasoning: str | None = None


class HumanInput(BaseModel):
    guidance: Guidance | None = None
    decision: Literal["continue", "approve", "abort"] | None = None
    clarification: str | None = None
    feedback: str | None = None


class Checkpoint(BaseModel):
    checkpoint_id: str
    session_id: str
    reason: str
    priority: Severity
    iteration: int
    timestamp: float
    state_snapshot: dict[str, Any] = Field(default_factory=dict)
    context: dict[str, Any] = Field(default_factory=dict)
    status: CheckpointStatus = CheckpointStatus.PENDING
    human_response: HumanInput | None = None
    resolution_time: float | None = None


class ProgressCommunication(BaseModel):
    communication_id: str
    session_id: str
    iteration: int
    summary: str
    reasoning: list[dict[str, Any]] = Field(default_factory=list)
    actions: list[dict[str, Any]] = Field(default_factory=list)
    status: dict[str, Any] = Field(default_factory=dict)
    next_steps: list[str] = Field(default_factory=list)
    confidence: float
    needs_input: bool = False
    timestamp: float


_RECOMMENDATIONS: dict[str, BlockerRecommendation] = {
    "repeated_failures": BlockerRecommendation(
        action="pause_for_human_input",
        message="Agent is encountering repeated failures. Human intervention needed to identify root cause.",
        urgency="high",
        suggested_actions=[
            "Review error patterns",
            "Modify approach strategy",
            "Provide additional context",
            "Simplify requirements",
        ],
    ),
    "low_confidence_stagnation": BlockerRecommendation(
        action="request_guidance",
        message="Agent confidence is low and progress has stagnated. Human guidance would help.",
        urgency="medium",
        suggested_actions=[
            "Clarify requirements",
            "Provide examples",
            "Suggest alternative approach",
            "Break down into smaller tasks",
        ],
    ),
    "resource_exhaustion": BlockerRecommendation(
        action="request_continuation_decision",
        message="Agent is approaching resource limits. Human decision needed on how to proceed.",
        urgency="high",
        suggested_actions=[
            "Extend resource limits",
            "Simplify task scope",
            "Save progress and restart",
            "Switch to manual mode",
        ],
    ),
    "complexity_overload": BlockerRecommendation(
        action="request_task_breakdown",
        message="Task complexity exceeds agent capabilities. Human assistance needed to break down the task.",
        urgency="medium",
        suggested_actions=[
            "Break into subtasks",
            "Prioritize requirements",
            "Provide step-by-step guidance",
            "Simplify objectives",
        ],
    ),
    "ambiguous_requirements": BlockerRecommendation(
        action="request_clarification",
        message="Requirements contain ambiguities that need human clarification.",
        urgency="medium",
        suggested_actions=[
            "Clarify ambiguous terms",
            "Provide specific examples",
            "Define success criteria",
            "Specify constraints",
        ],
    ),
    "safety_constraints": BlockerRecommendation(
        action="immediate_human_review",
        message="Potential safety concerns detected. Immediate human review required.",
        urgency="critical",
        suggested_actions=[
            "Review safety implications",
            "Validate request legitimacy",
            "Modify approach if needed",
            "Abort if unsafe",
        ],
    ),
}
_DEFAULT_RECOMMENDATION = BlockerRecommendation(
    action="request_human_input",
    message="Unknown blocker type detected. Human input requested.",
    urgency="medium",
    suggested_actions=["Review situation", "Provide guidance"],
)


def checkpoint_priority(reason: str) -> Severity:
    if reason in HIGH_PRIORITY_REASONS:
        return "high"
    if reason in MEDIUM_PRIORITY_REASONS:
        return "medium"
    return "low"


def sanitize_state(state: AgentState, now: float | None = None) -> dict[str, Any]:
    """Summary of the state safe to show a human reviewer."""
    return {
        "session_id": state.session_id,
        "original_query": state.original_query,
        "current_iteration": state.current_iteration,
        "max_iterations": state.max_iterations,
        "status": state.status.value,
        "confidence": state.confidence,
        "execution_time": state.elapsed_seconds(now),
        "reasoning_count": len(state.reasoning),
        "action_count": len(state.actions),
        "error_count": len(state.errors),
        "strategy": state.strategy,
    }


def _short_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:10]}"


class HumanInteractionManager:
    """Detect blockers and hold the checkpoints waiting on a human.

    One instance may serve many sessions; its registries are guarded by a lock.
    """

    def __init__(
        self,
        max_execution_seconds: float = 300.0,
        max_llm_calls: int = 20,
        heuristics: Heuristics | None = None,
        clock: Callable[[], float] = time.time,
        communication_limit: int = 100,
        communication_keep: int = 50,
        blocker_detection_enabled: bool = True,
        progress_communication_enabled: bool = True,
    ) -> None:
        self.max_execution_seconds = max_execution_seconds
        self.max_llm_calls = max_llm_calls
        self.heuristics = heuristics or DEFAULT_HEURISTICS
        self.communication_limit = communication_limit
        self.communication_keep = communication_keep
        self.blocker_detection_enabled = blocker_detection_enabled
        self.progress_communication_enabled = progress_communication_enabled
        self._clock = clock
        self._checkpoints: dict[str, Checkpoint] = {}
        self._blockers: list[BlockerRecord] = []
        self._communications: list[ProgressCommunication] = []
        self._lock = threading.Lock()

    def configure(
        self,
        blocker_detection_enabled: bool | None = None,
        progress_communication_enabled: bool | None = None,
    ) -> None:
        if blocker_detection_enabled is not None:
            self.blocker_detection_enabled = blocker_detection_enabled
        if progress_communication_enabled is not None:
            self.progress_communication_enabled = progress_communication_enabled

    # Blocker detection

    def detect_blocker(self, state: AgentState, ignored: Iterable[str] = ()) -> BlockerDetection:
        """Run every detector and surface the highest-priority blocker.

        Blocker types listed in ``ignored`` were already reviewed by a human for
        this session and are skipped.
        """
        if not self.blocker_detection_enabled:
            return BlockerDetection()
        skip = set(ignored)
        checks = [
            self.check_repeated_failures(state),
            self.check_low_confidence_stagnation(state),
            self.check_resource_exhaustion(state),
            self.check_complexity_overload(state),
            self.check_ambiguous_requirements(state),
            self.check_safety_constraints(state),
        ]
        found = [blocker for blocker in checks if blocker is not None and blocker.type not in skip]
        if not found:
            return BlockerDetection()
        primary = self.select_primary_blocker(found)
        record = self._record_blocker(primary, state)
        return BlockerDetection(
            has_blocker=True,
            blocker=primary,
            all_blockers=found,
            recommended_action=self.recommendation_for(primary),
            blocker_id=record.blocker_id,
        )

    def check_repeated_failures(self, state: AgentState) -> Blocker | None:
        recent = state.errors[-3:]
        if len(recent) < 2:
            return None
        error_type, count = Counter(error.type for error in recent).most_common(1)[0]
        if count < 2:
            return None
        return Blocker(
            type="repeated_failures",
            severity="high",
            description=f"Repeated {error_type} errors ({count} times)",
            evidence={"messages": [error.message for error in recent if error.type == error_type]},
            recommendation="Human intervention needed to resolve recurring issue",
        )

    def check_low_confidence_stagnation(self, state: AgentState) -> Blocker | None:
        if state.confidence >= 0.4 or len(state.reasoning) < 3:
            return None
        recent = state.reasoning[-3:]
        average = sum(entry.confidence for entry in recent) / len(recent)
        if average >= 0.5:
            return None
        return Blocker(
            type="low_confidence_stagnation",
            severity="medium",
            description=(
                f"Consistently low confidence ({average * 100:.1f}%) with limited progress"
            ),
            evidence={
                "current_confidence": state.confidence,
                "average_confidence": average,
                "reasoning_steps": len(state.reasoning),
            },
            recommendation="Human guidance needed to clarify approach or requirements",
        )

    def check_resource_exhaustion(self, state: AgentState) -> Blocker | None:
        elapsed = state.elapsed_seconds(self._clock())
        time_ratio = elapsed / self.max_execution_seconds
        llm_ratio = state.metrics.llm_calls / self.max_llm_calls
        if time_ratio <= 0.8 and llm_ratio <= 0.8:
            return None
        return Blocker(
            type="resource_exhaustion",
            severity="high",
            description="Approaching resource limits",
            evidence={
                "execution_seconds": round(elapsed),
                "max_seconds": self.max_execution_seconds,
                "llm_calls": state.metrics.llm_calls,
                "max_llm_calls": self.max_llm_calls,
            },
            recommendation="Human decision needed on whether to continue or modify approach",
        )

    def check_complexity_overload(self, state: AgentState) -> Blocker | None:
        query_score = self.heuristics.query_complexity(state.original_query)
        total = query_score
        if len(state.reasoning) > 5:
            total += 0.3
        if len(state.actions) > 8:
            total += 0.2
        if total <= 0.8 or state.confidence >= 0.6:
            return None
        return Blocker(
            type="complexity_overload",
            severity="medium",
            description="Task complexity exceeds agent capabilities",
            evidence={
                "query_complexity": query_score,
                "reasoning_steps": len(state.reasoning),
                "action_count": len(state.actions),
                "total_complexity": total,
            },
            recommendation="Human assistance needed to break down complex task",
        )

    def check_ambiguous_requirements(self, state: AgentState) -> Blocker | None:
        ambiguous_query = self.heuristics.is_ambiguous(state.original_query)
        uncertain = any(
            self.heuristics.expresses_uncertainty(entry.content) for entry in state.reasoning
        )
        if not ambiguous_query and not (uncertain and state.confidence < 0.5):
            return None
        return Blocker(
            type="ambiguous_requirements",
            severity="medium",
            description="Requirements or query contains ambiguities",
            evidence={
                "ambiguous_query": ambiguous_query,
                "uncertainty_in_reasoning": uncertain,
                "confidence": state.confidence,
            },
            recommendation="Human clarification needed to resolve ambiguities",
        )

    def check_safety_constraints(self, state: AgentState) -> Blocker | None:
        patterns = self.heuristics.safety_matches(state.original_query)
        risky = [action.type for action in state.actions if action.type in BLOCKER_RISKY_ACTION_TYPES]
        if not patterns and not risky:
            return None
        return Blocker(
            type="safety_constraints",
            severity="high",
            description="Potential safety concerns detected",
            evidence={"unsafe_patterns": patterns, "risky_actions": risky},
            recommendation="Human review required for safety validation",
        )

    @staticmethod
    def select_primary_blocker(blockers: list[Blocker]) -> Blocker:
        for blocker_type in BLOCKER_PRIORITY:
            for blocker in blockers:
                if blocker.type == blocker_type:
                    return blocker
        return blockers[0]

    @staticmethod
    def recommendation_for(blocker: Blocker) -> BlockerRecommendation:
        return _RECOMMENDATIONS.get(blocker.type, _DEFAULT_RECOMMENDATION).model_copy(deep=True)

    def _record_blocker(self, blocker: Blocker, state: AgentState) -> BlockerRecord:
        record = BlockerRecord(
            blocker_id=_short_id("blocker"),
            session_id=state.session_id,
            iteration=state.current_iteration,
            blocker=blocker,
            timestamp=self._clock(),
        )
        with self._lock:
            self._blockers.append(record)
        logger.info(
            "Blocker %s detected for session %s (%s)",
            blocker.type,
            state.session_id,
            record.blocker_id,
        )
        return record

    def blockers(self, session_id: str | None = None) -> list[BlockerRecord]:
        with self._lock:
            records = list(self._blockers)
        if session_id is not None:
            records = [record for record in records if record.session_id == session_id]
        return records

    def active_blockers(self, session_id: str | None = None) -> list[BlockerRecord]:
        return [record for record in self.blockers(session_id) if record.status == "detected"]

    # Checkpoints

    def create_checkpoint(
        self,
        reason: str,
        state: AgentState,
        priority: Severity | None = None,
        context: dict[str, Any] | None = None,
    ) -> Checkpoint:
        checkpoint = Checkpoint(
            checkpoint_id=_short_id("checkpoint"),
            session_id=state.session_id,
            reason=reason,
            priority=priority or checkpoint_priority(reason),
            iteration=state.current_iteration,
            timestamp=self._clock(),
            state_snapshot=sanitize_state(state, self._clock()),
            context=dict(context or {}),
        )
        with self._lock:
            self._checkpoints[checkpoint.checkpoint_id] = checkpoint
        logger.info(
            "Checkpoint %s created for session %s: %s (priority=%s)",
            checkpoint.checkpoint_id,
            state.session_id,
            reason,
            checkpoint.priority,
        )
        return checkpoint

    def get_checkpoint(self, checkpoint_id: str) -> Checkpoint:
        with self._lock:
            checkpoint = self._checkpoints.get(checkpoint_id)
        if checkpoint is None:
            raise CheckpointNotFoundError(f"Unknown checkpoint: {checkpoint_id}")
        return checkpoint

    def _close(
        self, checkpoint_id: str, status: CheckpointStatus, response: HumanInput | None
    ) -> Checkpoint:
        with self._lock:
            checkpoint = self._checkpoints.get(checkpoint_id)
            if checkpoint is None:
                raise CheckpointNotFoundError(f"Unknown checkpoint: {checkpoint_id}")
            if checkpoint.status != CheckpointStatus.PENDING:
                raise CheckpointError(
                    f"Checkpoint {checkpoint_id} is already {checkpoint.status.value}"
                )
            checkpoint.status = status
            checkpoint.human_response = response
            checkpoint.resolution_time = self._clock()
            blocker_id = checkpoint.context.get("blocker_id")
            if blocker_id:
                for record in self._blockers:
                    if record.blocker_id == blocker_id:
                        record.status = "resolved"
        logger.info("Checkpoint %s %s", checkpoint_id, status.value)
        return checkpoint

    def resolve_checkpoint(self, checkpoint_id: str, response: HumanInput | None = None) -> Checkpoint:
        """Resolve a pending checkpoint; a second resolution raises ``CheckpointError``."""
        return self._close(checkpoint_id, CheckpointStatus.RESOLVED, response or HumanInput())

    def skip_checkpoint(self, checkpoint_id: str) -> Checkpoint:
        return self._close(checkpoint_id, CheckpointStatus.SKIPPED, None)

    def checkpoints(self, session_id: str | None = None) -> list[Checkpoint]:
        with self._lock:
            items = list(self._checkpoints.values())
        if session_id is not None:
            items = [item for item in items if item.session_id == session_id]
        return sorted(items, key=lambda item: item.timestamp)

    def pending_checkpoints(self, session_id: str | None = None) -> list[Checkpoint]:
        return [
            item for item in self.checkpoints(session_id) if item.status == CheckpointStatus.PENDING
        ]

    def checkpoint_history(self, session_id: str | None = None) -> list[Checkpoint]:
        return [
            item for item in self.checkpoints(session_id) if item.status != CheckpointStatus.PENDING
        ]

    # Progress communication

    def progress_summary(self, state: AgentState) -> str:
        percent = state.current_iteration / state.max_iterations * 100
        lines = [
            f"Progress: Step {state.current_iteration}/{state.max_iterations} ({percent:.0f}% complete)",
            f"Confidence: {state.confidence * 100:.1f}%",
        ]
        if state.errors:
            lines.append(f"Errors encountered: {len(state.errors)}")
        last = state.last_reasoning
        if last is not None:
            focus = last.content if len(last.content) <= 100 else last.content[:100] + "..."
            lines.append(f"Current focus: {focus}")
        return "\n".join(lines)

    def status_summary(self, state: AgentState) -> dict[str, Any]:
        return {
            "status": state.status.value,
            "iteration": state.current_iteration,
            "max_iterations": state.max_iterations,
            "confidence": state.confidence,
            "execution_seconds": round(state.elapsed_seconds(self._clock())),
            "error_count": len(state.errors),
            "reasoning_steps": len(state.reasoning),
            "actions_taken": len(state.actions),
            "awaiting_human_input": state.awaiting_human_input,
        }

    @staticmethod
    def next_steps(state: AgentState, needs_input: bool = False) -> list[str]:
        steps: list[str] = []
        if state.status == AgentStatus.PROCESSING:
            steps.append("Continue reasoning and analysis")
            if state.confidence < 0.5:
                steps.append("Work to increase confidence in solution")
            if state.errors:
                steps.append("Address any remaining errors")
        if needs_input:
            steps.append("Awaiting human input or guidance")
        if not steps:
            steps.append("Determine appropriate next action")
        return steps

    def create_progress_communication(
        self, state: AgentState, needs_input: bool = False
    ) -> ProgressCommunication:
        reasoning = [
            {
                "step": index,
                "iteration": entry.iteration,
                "confidence": entry.confidence,
                "summary": entry.content if len(entry.content) <= 200 else entry.content[:200] + "...",
            }
            for index, entry in enumerate(state.reasoning, start=1)
        ]
        actions = [
            {
                "step": index,
                "iteration": action.iteration,
                "type": action.type,
                "description": action.description,
                "success": action.success is not False,
            }
            for index, action in enumerate(state.actions, start=1)
        ]
        communication = ProgressCommunication(
            communication_id=_short_id("comm"),
            session_id=state.session_id,
            iteration=state.current_iteration,
            summary=self.progress_summary(state),
            reasoning=reasoning,
            actions=actions,
            status=self.status_summary(state),
            next_steps=self.next_steps(state, needs_input),
            confidence=state.confidence,
            needs_input=needs_input,
            timestamp=self._clock(),
        )
        with self._lock:
            self._communications.append(communication)
            if len(self._communications) > self.communication_limit:
                self._communications = self._communications[-self.communication_keep :]
        return communication

    def communication_history(self, session_id: str | None = None) -> list[ProgressCommunication]:
        with self._lock:
            items = list(self._communications)
        if session_id is not None:
            items = [item for item in items if item.session_id == session_id]
        return items

    def forget_session(self, session_id: str) -> None:
        """Drop the checkpoints, blockers and reports kept for one session."""
        with self._lock:
            self._checkpoints = {
                key: item for key, item in self._checkpoints.items() if item.session_id != session_id
            }
            self._blockers = [record for record in self._blockers if record.session_id != session_id]
            self._communications = [
                item for item in self._communications if item.session_id != session_id
            ]
