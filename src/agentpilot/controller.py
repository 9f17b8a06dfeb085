"""Agent controller driving the bounded reason/act/observe loop."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from pydantic import BaseModel, Field

from agentpilot.autonomy import AutonomousOperationManager, AutonomyConfig
from agentpilot.config import DEFAULT_SETTINGS, RunConfig, Settings, validate_operation_mode
from agentpilot.failures import CheckpointError, InvalidTransitionError, SessionNotFoundError
from agentpilot.feedback import FeedbackContext, FeedbackIntegrator
from agentpilot.interaction import (
    BlockerRecord,
    Checkpoint,
    CheckpointStatus,
    HumanInput,
    HumanInteractionManager,
    ProgressCommunication,
    Severity,
)
from agentpilot.monitoring import AgentMonitor, MetricsCollector
from agentpilot.observations import Observation, ObservationGenerator
from agentpilot.protocol import parse_tool_choice, resolve_tool_choice
from agentpilot.reasoning import PromptContext, Reasoner, RetryPolicy, TemplateReasoner, ToolOutcome
from agentpilot.recovery import ErrorRecoverySystem, RecoveryAction, RecoveryPlan, next_strategy
from agentpilot.routing import suggest_tool
from agentpilot.state import (
    ActionEntry,
    AgentState,
    AgentStatus,
    ReasoningEntry,
    StateStore,
    clamp,
)
from agentpilot.stopping import StoppingConditions
from agentpilot.tools.executor import ToolExecution, ToolExecutor
from agentpilot.tools.registry import ToolRegistry
from agentpilot.trace import TraceRecorder
from agentpilot.util.logging import get_logger, redact

logger = get_logger(__name__)

_STOP_STATUS = {
    "max_iterations": AgentStatus.MAX_ITERATIONS_REACHED,
    "error_threshold": AgentStatus.ERROR,
}
_STABILITY_ADJUSTMENT = {
    "stable": 0.05,
    "somewhat_unstable": -0.05,
    "unstable": -0.1,
}
_CONFIDENCE_FLOOR = 0.1
_CONFIDENCE_CEILING = 0.95


class AgentErrorInfo(BaseModel):
    type: str
    message: str
    iteration: int


class AgentResponse(BaseModel):
    success: bool
    session_id: str
    status: AgentStatus
    reasoning: list[ReasoningEntry] = Field(default_factory=list)
    actions: list[ActionEntry] = Field(default_factory=list)
    observations: list[Observation] = Field(default_factory=list)
    final_answer: str = ""
    agent_mode: bool = True
    iterations: int = 0
    tools_used: list[str] = Field(default_factory=list)
    final_confidence: float = 0.0
    strategy: str = "default"
    execution_time: float = 0.0
    stop_reason: str | None = None
    awaiting_human_input: bool = False
    pending_checkpoint: Checkpoint | None = None
    error: AgentErrorInfo | None = None
    trace_path: str | None = None


@dataclass
class PlannedAction:
    type: str
    description: str
    tool_name: str | None = None
    parameters: dict[str, Any] | None = None
    recovery: RecoveryAction | None = None


@dataclass
class TaskSession:
    """Per-session bookkeeping that lives beside the state store."""

    store: StateStore
    operation_mode: str | None = None
    autonomy_config: AutonomyConfig | None = None
    acknowledged_triggers: set[str] = field(default_factory=set)
    acknowledged_blockers: set[str] = field(default_factory=set)
    human_notes: list[str] = field(default_factory=list)
    tool_outcomes: list[ToolOutcome] = field(default_factory=list)
    trace: TraceRecorder | None = None
    trace_path: str | None = None
    cancelled: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


class AgentController:
    """Run tasks through the bounded loop and hold their sessions.

    Each iteration runs recovery planning, feedback integration, reasoning,
    the autonomy decision, blocker detection, stopping conditions, completion
    detection, then one action and a confidence update. The loop exits early
    when a checkpoint is raised; ``resume_after_human_input`` re-enters it.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        reasoner: Reasoner | None = None,
        executor: ToolExecutor | None = None,
        settings: Settings | None = None,
        stopping: StoppingConditions | None = None,
        recovery: ErrorRecoverySystem | None = None,
        feedback: FeedbackIntegrator | None = None,
        autonomy: AutonomousOperationManager | None = None,
        interaction: HumanInteractionManager | None = None,
        observations: ObservationGenerator | None = None,
        retry_policy: RetryPolicy | None = None,
        metrics: MetricsCollector | None = None,
        monitor: AgentMonitor | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings or DEFAULT_SETTINGS
        self.registry = registry
        self.reasoner = reasoner or TemplateReasoner()
        self.metrics = metrics or MetricsCollector()
        self.monitor = monitor or AgentMonitor(clock=clock)
        self.observations = observations or ObservationGenerator()
        self.executor = executor or ToolExecutor(
            registry,
            timeout_seconds=self.settings.tool_timeout_seconds,
            observations=self.observations,
            metrics=self.metrics,
        )
        self.stopping = stopping or StoppingConditions(
            max_execution_seconds=self.settings.max_execution_seconds, clock=clock
        )
        self.recovery = recovery or ErrorRecoverySystem(
            max_recovery_attempts=self.settings.max_recovery_attempts,
            window_seconds=self.settings.recovery_window_seconds,
            clock=clock,
        )
        self.feedback = feedback or FeedbackIntegrator(window=self.settings.feedback_window)
        self.autonomy = autonomy or AutonomousOperationManager(
            operation_mode=self.settings.operation_mode,
            config=AutonomyConfig(
                max_execution_seconds=self.settings.max_execution_seconds,
                max_llm_calls=self.settings.max_llm_calls,
            ),
            clock=clock,
        )
        self.interaction = interaction or HumanInteractionManager(
            max_execution_seconds=self.settings.max_execution_seconds,
            max_llm_calls=self.settings.max_llm_calls,
            clock=clock,
        )
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=self.settings.reasoning_max_attempts,
            base_delay=self.settings.reasoning_retry_delay_seconds,
        )
        self._clock = clock
        self._sessions: dict[str, TaskSession] = {}
        self._lock = threading.Lock()

    # Task invocation

    def process_query(
        self,
        query: str,
        config: RunConfig | dict[str, Any] | None = None,
        session_id: str | None = None,
    ) -> AgentResponse:
        run = config if isinstance(config, RunConfig) else RunConfig.model_validate(config or {})
        if run.operation_mode is not None:
            validate_operation_mode(run.operation_mode)
        autonomy_config = self.autonomy.merged_config(run.thresholds) if run.thresholds else None
        store = StateStore(
            query,
            max_iterations=run.max_iterations or self.settings.max_iterations,
            strategy=run.strategy or self.settings.strategy,
            session_id=session_id,
            clock=self._clock,
        )
        session = TaskSession(
            store=store,
            operation_mode=run.operation_mode,
            autonomy_config=autonomy_config,
        )
        if self.settings.trace_enabled:
            session.trace = TraceRecorder(
                trace_id=store.session_id, workspace_dir=self.settings.workspace_dir
            )
        self.clear_old_sessions()
        self._trim_finished_sessions(self.settings.max_retained_sessions - 1)
        with self._lock:
            if store.session_id in self._sessions:
                raise ValueError(f"Session {store.session_id} already exists")
            self._sessions[store.session_id] = session
        self.monitor.start_session(store.session_id, run.model_dump(exclude_none=True))
        self.monitor.start_query(
            store.session_id, query, max_iterations=store.state.max_iterations
        )
        logger.info(
            "Run started for session %s (max_iterations=%s, mode=%s): %s",
            store.session_id,
            store.state.max_iterations,
            run.operation_mode or self.autonomy.operation_mode,
            redact(query),
        )
        self.metrics.inc("sessions_started")
        store.start()
        return self._run(session)

    def resume_after_human_input(
        self, checkpoint_id: str, human_input: HumanInput | dict[str, Any] | None = None
    ) -> AgentResponse:
        """Resolve a checkpoint, apply the human input and re-enter the loop."""
        if not isinstance(human_input, HumanInput):
            human_input = HumanInput.model_validate(human_input or {})
        checkpoint = self.interaction.get_checkpoint(checkpoint_id)
        if checkpoint.status != CheckpointStatus.PENDING:
            raise CheckpointError(f"Checkpoint {checkpoint_id} is already {checkpoint.status.value}")
        session = self.get_session(checkpoint.session_id)
        store = session.store
        if store.state.is_terminal:
            raise InvalidTransitionError(
                f"Session {store.session_id} already finished with status {store.state.status.value}"
            )
        self.interaction.resolve_checkpoint(checkpoint_id, human_input)
        store.resolve_checkpoint(checkpoint_id)
        self.metrics.inc("checkpoints_resolved")
        logger.info(
            "Resuming session %s after checkpoint %s (decision=%s)",
            store.session_id,
            checkpoint_id,
            human_input.decision,
        )
        self._apply_human_input(session, checkpoint, human_input)
        return self._run(session)

    def _apply_human_input(
        self, session: TaskSession, checkpoint: Checkpoint, human_input: HumanInput
    ) -> None:
        store = session.store
        iteration = store.state.current_iteration
        if human_input.decision == "abort":
            store.set_status(AgentStatus.ERROR, "aborted_by_human")
            return
        if human_input.decision in ("continue", "approve"):
            if checkpoint.context.get("source") == "blocker":
                session.acknowledged_blockers.add(checkpoint.reason)
            else:
                session.acknowledged_triggers.add(checkpoint.reason)
        guidance = human_input.guidance
        if guidance is not None:
            if guidance.strategy and guidance.strategy != store.state.strategy:
                previous = store.state.strategy
                store.set_strategy(guidance.strategy)
                store.add_observation(
                    self.observations.state_change(
                        "strategy", previous, guidance.strategy, trigger="human_guidance", iteration=iteration
                    )
                )
            if guidance.confidence is not None:
                store.set_confidence(guidance.confidence)
            if guidance.max_iterations is not None:
                store.set_max_iterations(guidance.max_iterations)
            if guidance.reasoning:
                session.human_notes.append(guidance.reasoning)
        if human_input.clarification:
            session.human_notes.append(f"Clarification: {human_input.clarification}")
        if human_input.feedback:
            session.human_notes.append(f"Feedback: {human_input.feedback}")
        store.add_observation(
            self.observations.environment(
                "human_input_received",
                iteration=iteration,
                checkpoint_id=checkpoint.checkpoint_id,
                decision=human_input.decision,
            )
        )

    # Loop

    def _run(self, session: TaskSession) -> AgentResponse:
        store = session.store
        if not session.lock.acquire(blocking=False):
            raise InvalidTransitionError(f"Session {store.session_id} is already running")
        try:
            try:
                while (
                    store.state.status == AgentStatus.PROCESSING
                    and not store.state.awaiting_human_input
                ):
                    if session.cancelled:
                        store.set_status(AgentStatus.ERROR, "cancelled")
                        break
                    if not store.next_iteration():
                        store.set_status(
                            AgentStatus.MAX_ITERATIONS_REACHED, "Maximum iterations reached"
                        )
                        break
                    actions_before = len(store.state.actions)
                    self._iterate(session)
                    self._record_iteration(session, actions_before)
            except Exception as exc:
                logger.exception(
                    "Session %s failed at iteration %s",
                    store.session_id,
                    store.state.current_iteration,
                )
                store.add_error("agent_error", str(exc), phase="main_loop")
                self.monitor.record_error(
                    store.session_id,
                    "agent_error",
                    str(exc),
                    phase="main_loop",
                    iteration=store.state.current_iteration,
                )
                if not store.state.is_terminal:
                    store.set_status(AgentStatus.ERROR, f"agent_error: {exc}")
                self.metrics.inc("session_errors")
            return self._finish(session)
        finally:
            session.lock.release()

    def _iterate(self, session: TaskSession) -> None:
        store = session.store
        state = store.state
        iteration = state.current_iteration
        logger.info(
            "Session %s iteration %s/%s (strategy=%s, confidence=%.2f)",
            state.session_id,
            iteration,
            state.max_iterations,
            state.strategy,
            state.confidence,
        )
        self.metrics.inc("iterations")
        if session.trace is not None:
            session.trace.record_iteration(iteration, state.confidence, state.strategy)

        plan = self.recovery.plan(state)
        feedback = self.feedback.integrate(state)

        context = self._prompt_context(session, feedback, plan)
        with self.metrics.measure("reasoning"):
            content = self.retry_policy.call(self._reason, store, context)
        store.add_reasoning(content)
        if session.trace is not None:
            session.trace.record_reasoning(iteration, content)

        decision = self.autonomy.should_continue(
            state,
            session.operation_mode,
            session.acknowledged_triggers,
            session.autonomy_config,
        )
        if not decision.should_continue:
            self._raise_checkpoint(
                session,
                decision.trigger or "risk_threshold_exceeded",
                context={
                    "source": "autonomy",
                    "reason": decision.reason,
                    "risk_score": decision.risk_score,
                    "risk_threshold": decision.risk_threshold,
                    "risk_factors": [factor.name for factor in decision.risk_factors],
                },
            )
            return

        detection = self.interaction.detect_blocker(state, session.acknowledged_blockers)
        if detection.has_blocker and detection.blocker is not None:
            blocker = detection.blocker
            recommendation = detection.recommended_action
            self._raise_checkpoint(
                session,
                blocker.type,
                priority=blocker.severity,
                context={
                    "source": "blocker",
                    "blocker_id": detection.blocker_id,
                    "description": blocker.description,
                    "evidence": blocker.evidence,
                    "recommendation": recommendation.model_dump() if recommendation else None,
                },
            )
            return

        stop = self.stopping.evaluate(state)
        if stop.should_stop:
            status = _STOP_STATUS.get(stop.condition or "", AgentStatus.COMPLETED)
            logger.info(
                "Session %s stopping on %s: %s", state.session_id, stop.condition, stop.reason
            )
            store.set_status(status, stop.reason)
            return

        completion = self.autonomy.detect_task_completion(state, session.autonomy_config)
        if completion.is_complete:
            store.set_confidence(completion.confidence)
            store.set_status(AgentStatus.COMPLETED, "autonomous_completion")
            logger.info(
                "Session %s complete (score=%.2f): %s",
                state.session_id,
                completion.score,
                ", ".join(completion.satisfied),
            )
            return

        action = self._plan_action(session, plan, feedback)
        self._execute_action(session, action)
        self._update_confidence(session, feedback, plan)
        if self.interaction.progress_communication_enabled:
            self.interaction.create_progress_communication(state)

    def _record_iteration(self, session: TaskSession, actions_before: int) -> None:
        state = session.store.state
        action = state.actions[-1].type if len(state.actions) > actions_before else None
        self.monitor.record_iteration(
            state.session_id,
            state.current_iteration,
            state.confidence,
            action=action,
            tools_used=state.tools_used(),
        )

    def _reason(self, store: StateStore, context: PromptContext) -> str:
        store.record_llm_call()
        self.metrics.inc("llm_calls")
        return self.reasoner.reason(context)

    def _prompt_context(
        self, session: TaskSession, feedback: FeedbackContext, plan: RecoveryPlan
    ) -> PromptContext:
        state = session.store.state
        return PromptContext(
            query=state.original_query,
            iteration=state.current_iteration,
            max_iterations=state.max_iterations,
            strategy=state.strategy,
            confidence=state.confidence,
            feedback_digest=feedback.context_for_llm,
            insights=[insight.reasoning for insight in feedback.insights],
            recovery_steps=[action.description for action in plan.prioritized_actions],
            detected_errors=plan.total_errors,
            recoverable_errors=plan.recoverable_errors,
            previous_reasoning=[entry.content for entry in state.reasoning],
            tool_results=list(session.tool_outcomes),
            available_tools=[
                f"{spec.name}: {spec.description}" for spec in self.registry.specs()
            ],
            human_notes=list(session.human_notes),
        )

    def _raise_checkpoint(
        self,
        session: TaskSession,
        reason: str,
        priority: Severity | None = None,
        context: dict[str, Any] | None = None,
    ) -> Checkpoint:
        store = session.store
        checkpoint = self.interaction.create_checkpoint(
            reason, store.state, priority=priority, context=context
        )
        store.add_checkpoint(checkpoint.checkpoint_id, reason)
        self.interaction.create_progress_communication(store.state, needs_input=True)
        self.metrics.inc("checkpoints_created")
        if session.trace is not None:
            session.trace.record_checkpoint(checkpoint.checkpoint_id, reason, checkpoint.priority)
        return checkpoint

    # Actions

    def _plan_action(
        self, session: TaskSession, plan: RecoveryPlan, feedback: FeedbackContext
    ) -> PlannedAction:
        top = plan.top_action
        if top is not None:
            return PlannedAction(type="error_recovery", description=top.description, recovery=top)
        chosen = self._model_tool_choice(session)
        if chosen is not None:
            return chosen
        succeeded = {outcome.tool_name for outcome in session.tool_outcomes if outcome.success}
        suggestion = suggest_tool(
            session.store.state.original_query,
            available=self.registry.names(),
            exclude=succeeded,
        )
        if suggestion is not None:
            return PlannedAction(
                type="tool_call",
                description=f"Use {suggestion.tool_name}: {suggestion.reason}",
                tool_name=suggestion.tool_name,
                parameters=dict(suggestion.parameters),
            )
        if feedback.recommended_actions:
            recommended = feedback.recommended_actions[0]
            return PlannedAction(type=recommended.action, description=recommended.reasoning)
        return PlannedAction(type="reasoning", description="Continue reasoning about the request")

    def _model_tool_choice(self, session: TaskSession) -> PlannedAction | None:
        state = session.store.state
        last = state.last_reasoning
        choice = parse_tool_choice(last.content) if last is not None else None
        if choice is None:
            return None
        tool_name, arguments, problems = resolve_tool_choice(choice, self.registry)
        if tool_name is None or problems:
            logger.info(
                "Session %s ignoring tool choice %s: %s",
                state.session_id,
                choice.name,
                "; ".join(problems),
            )
            self._observe(
                session,
                self.observations.environment(
                    "tool_choice_rejected",
                    iteration=state.current_iteration,
                    tool=choice.name,
                    problems=problems,
                ),
            )
            return None
        for action in state.actions:
            if action.tool_name == tool_name and action.success and action.parameters == arguments:
                return None
        return PlannedAction(
            type="tool_call",
            description=f"Use {tool_name} as chosen in reasoning",
            tool_name=tool_name,
            parameters=arguments,
        )

    def _execute_action(self, session: TaskSession, action: PlannedAction) -> None:
        if action.type == "tool_call" and action.tool_name:
            self._call_tool(session, action.tool_name, action.parameters or {}, action.description)
            return
        if action.recovery is not None:
            self._apply_recovery(session, action.recovery)
            return
        store = session.store
        iteration = store.state.current_iteration
        store.add_action(action.type, action.description)
        self._observe(
            session,
            self.observations.progress(
                f"Step {iteration}: {action.description}", stage=action.type, iteration=iteration
            ),
        )

    def _call_tool(
        self,
        session: TaskSession,
        tool_name: str,
        params: dict[str, Any],
        description: str,
        action_type: str = "tool_call",
    ) -> ToolExecution:
        store = session.store
        iteration = store.state.current_iteration
        if session.trace is not None:
            session.trace.record_tool_call(tool_name, params)
        execution = self.executor.execute(tool_name, params, iteration=iteration)
        result = execution.result
        for observation in execution.feedback.observations:
            self._observe(session, observation)
        self.monitor.record_tool_run(
            store.session_id,
            tool_name,
            execution.success,
            duration_seconds=execution.duration_ms / 1000,
            error=None if execution.success else result.message,
        )
        if not execution.success:
            error_type = execution.error_name or "tool_error"
            store.add_error(
                error_type,
                result.message,
                recoverable=execution.error_name != "ToolNotFoundError",
                phase="tool_execution",
            )
            self.monitor.record_error(
                store.session_id, error_type, result.message, phase="tool_execution", iteration=iteration
            )
        store.record_tool_call(execution.success)
        session.tool_outcomes.append(
            ToolOutcome(
                tool_name=tool_name,
                success=execution.success,
                message=result.message,
                data=result.data,
                iteration=iteration,
            )
        )
        store.add_action(
            action_type,
            description,
            success=execution.success,
            tool_name=tool_name,
            parameters=execution.parameters,
        )
        if session.trace is not None:
            session.trace.record_tool_result(
                tool_name, execution.success, result.message, execution.duration_ms
            )
        return execution

    def _apply_recovery(self, session: TaskSession, recovery: RecoveryAction) -> None:
        store = session.store
        state = store.state
        iteration = state.current_iteration
        if recovery.type == "tool_recovery":
            tried = {outcome.tool_name for outcome in session.tool_outcomes}
            alternative = suggest_tool(
                state.original_query, available=self.registry.names(), exclude=tried
            )
            if alternative is not None:
                self._call_tool(
                    session,
                    alternative.tool_name,
                    dict(alternative.parameters),
                    f"Recovery: try {alternative.tool_name} instead of {recovery.tool_name}",
                    action_type="error_recovery",
                )
                return
        elif recovery.type == "network_recovery":
            previous = self._last_failed_call(state, recovery.tool_name)
            if previous is not None and previous.tool_name:
                self._call_tool(
                    session,
                    previous.tool_name,
                    previous.parameters or {},
                    f"Recovery: retry {previous.tool_name} after network failure",
                    action_type="error_recovery",
                )
                return
        elif recovery.type == "strategy_recovery":
            previous_strategy = state.strategy
            new_strategy = next_strategy(previous_strategy)
            store.set_strategy(new_strategy)
            self._observe(
                session,
                self.observations.state_change(
                    "strategy",
                    previous_strategy,
                    new_strategy,
                    trigger="strategy_recovery",
                    iteration=iteration,
                ),
            )
        store.add_action("error_recovery", recovery.description)
        self._observe(
            session,
            self.observations.progress(
                f"Step {iteration}: applied {recovery.type}. {recovery.expected_outcome}",
                stage="error_recovery",
                iteration=iteration,
                recovery_type=recovery.type,
            ),
        )

    @staticmethod
    def _last_failed_call(state: AgentState, tool_name: str | None) -> ActionEntry | None:
        for action in reversed(state.actions):
            if action.tool_name and action.success is False:
                if tool_name is None or action.tool_name == tool_name:
                    return action
        return None

    def _observe(self, session: TaskSession, observation: Observation) -> None:
        stored = session.store.add_observation(observation)
        if session.trace is not None:
            session.trace.record_observation(stored.type.value, stored.content)

    def _update_confidence(
        self, session: TaskSession, feedback: FeedbackContext, plan: RecoveryPlan
    ) -> None:
        state = session.store.state
        base = state.current_iteration / state.max_iterations * 0.5
        if state.reasoning:
            base += 0.3
        base = min(0.9, base)
        value = clamp(
            base + feedback.confidence.adjustment + plan.confidence_adjustment,
            _CONFIDENCE_FLOOR,
            _CONFIDENCE_CEILING,
        )
        value += _STABILITY_ADJUSTMENT.get(feedback.environment.stability, 0.0)
        session.store.set_confidence(clamp(value, _CONFIDENCE_FLOOR, _CONFIDENCE_CEILING))

    # Responses

    def _finish(self, session: TaskSession) -> AgentResponse:
        store = session.store
        state = store.state
        if state.is_terminal:
            logger.info(
                "Run finished for session %s: %s (%s) after %s iterations",
                state.session_id,
                state.status.value,
                state.stop_reason,
                state.current_iteration,
            )
            self.metrics.inc(f"sessions_{state.status.value}")
            self.monitor.complete_query(
                state.session_id, self.succeeded(state, session.tool_outcomes), state.confidence
            )
            self.monitor.end_session(state.session_id)
            if session.trace is not None and session.trace_path is None:
                session.trace_path = session.trace.finalize(
                    {
                        "status": state.status.value,
                        "iterations": state.current_iteration,
                        "confidence": state.confidence,
                        "tools_used": state.tools_used(),
                        "metrics": state.metrics.model_dump(),
                    }
                )
        return self.build_response(session)

    def build_response(self, session: TaskSession) -> AgentResponse:
        state = session.store.snapshot()
        pending = self.interaction.pending_checkpoints(state.session_id)
        error = None
        if state.status == AgentStatus.ERROR:
            last = state.errors[-1] if state.errors else None
            if last is not None and last.phase == "main_loop":
                error = AgentErrorInfo(type=last.type, message=last.message, iteration=last.iteration)
            else:
                error = AgentErrorInfo(
                    type="terminated",
                    message=state.stop_reason or "",
                    iteration=state.current_iteration,
                )
        return AgentResponse(
            success=self.succeeded(state, session.tool_outcomes),
            session_id=state.session_id,
            status=state.status,
            reasoning=state.reasoning,
            actions=state.actions,
            observations=state.observations,
            final_answer=self.final_answer(state, session.tool_outcomes, pending),
            iterations=state.current_iteration,
            tools_used=state.tools_used(),
            final_confidence=state.confidence,
            strategy=state.strategy,
            execution_time=state.elapsed_seconds(self._clock()),
            stop_reason=state.stop_reason,
            awaiting_human_input=state.awaiting_human_input,
            pending_checkpoint=pending[-1] if state.awaiting_human_input and pending else None,
            error=error,
            trace_path=session.trace_path,
        )

    @staticmethod
    def succeeded(state: AgentState, outcomes: list[ToolOutcome]) -> bool:
        """A run succeeds unless it errored or every tool call it made failed."""
        if state.status == AgentStatus.ERROR:
            return False
        return not outcomes or any(outcome.success for outcome in outcomes)

    @staticmethod
    def final_answer(
        state: AgentState, outcomes: list[ToolOutcome], pending: list[Checkpoint]
    ) -> str:
        if state.status == AgentStatus.ERROR:
            return "I encountered an error while processing your request."
        if state.awaiting_human_input:
            reason = pending[-1].reason if pending else "review required"
            return f"Awaiting human input: {reason}"
        if outcomes and not any(outcome.success for outcome in outcomes):
            failed = outcomes[-1]
            return (
                f'I could not complete "{state.original_query}": no tool call succeeded '
                f"(last failure from {failed.tool_name}: {failed.message})."
            )
        last = state.last_reasoning
        if last is None:
            return "I wasn't able to generate a complete analysis for your query."
        lines = [f'Based on my analysis of "{state.original_query}":']
        for outcome in outcomes:
            if outcome.success:
                lines.append(f"- {outcome.tool_name}: {outcome.message}")
        lines.append(last.content)
        return "\n".join(lines)

    # Human-facing query surface

    def get_session(self, session_id: str) -> TaskSession:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Unknown session: {session_id}")
        return session

    def get_state(self, session_id: str) -> AgentState:
        return self.get_session(session_id).store.snapshot()

    def sessions(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def remove_session(self, session_id: str) -> None:
        """Forget a session with its checkpoints, blockers and recovery history."""
        if not self._discard(session_id):
            raise SessionNotFoundError(f"Unknown session: {session_id}")

    def _discard(self, session_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        self.interaction.forget_session(session_id)
        self.recovery.forget_session(session_id)
        self.monitor.forget_session(session_id)
        logger.debug("Removed session %s", session_id)
        return True

    def clear_old_sessions(self, max_age_seconds: float | None = None) -> list[str]:
        """Remove idle sessions that started more than ``max_age_seconds`` ago."""
        if max_age_seconds is None:
            max_age_seconds = self.settings.session_retention_seconds
        cutoff = self._clock() - max_age_seconds
        with self._lock:
            stale = [
                key
                for key, session in self._sessions.items()
                if not session.lock.locked()
                and session.store.state.start_time is not None
                and session.store.state.start_time < cutoff
            ]
        for key in stale:
            self._discard(key)
        if stale:
            logger.info("Cleared %s old sessions", len(stale))
        return stale

    def _trim_finished_sessions(self, keep: int) -> None:
        with self._lock:
            finished = [
                key
                for key, session in self._sessions.items()
                if session.store.state.is_terminal and not session.lock.locked()
            ]
        for key in finished[: max(0, len(finished) - keep)]:
            self._discard(key)

    def get_pending_checkpoints(self, session_id: str | None = None) -> list[Checkpoint]:
        return self.interaction.pending_checkpoints(session_id)

    def get_active_blockers(self, session_id: str | None = None) -> list[BlockerRecord]:
        return self.interaction.active_blockers(session_id)

    def get_progress_communication(self, session_id: str | None = None) -> ProgressCommunication:
        """Build a fresh progress report for a session, the latest one when none is given."""
        if session_id is None:
            with self._lock:
                if not self._sessions:
                    raise SessionNotFoundError("No sessions have been started")
                session_id = next(reversed(self._sessions))
        state = self.get_session(session_id).store.state
        return self.interaction.create_progress_communication(
            state, needs_input=state.awaiting_human_input
        )

    def set_operation_mode(self, mode: str) -> None:
        self.autonomy.set_operation_mode(mode)

    def configure_autonomous_operation(self, config: dict[str, Any]) -> dict[str, Any]:
        """Apply ``operation_mode``, ``thresholds`` and ``human_interaction`` settings."""
        unknown = set(config) - {"operation_mode", "thresholds", "human_interaction"}
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")
        if config.get("operation_mode") is not None:
            self.autonomy.set_operation_mode(config["operation_mode"])
        if config.get("thresholds"):
            self.autonomy.configure(config["thresholds"])
        interaction = config.get("human_interaction") or {}
        if interaction:
            self.interaction.configure(
                blocker_detection_enabled=interaction.get("blocker_detection_enabled"),
                progress_communication_enabled=interaction.get("progress_communication_enabled"),
            )
        return {
            **self.autonomy.get_configuration(),
            "human_interaction": {
                "blocker_detection_enabled": self.interaction.blocker_detection_enabled,
                "progress_communication_enabled": self.interaction.progress_communication_enabled,
            },
        }

    def cancel(self, session_id: str) -> AgentResponse:
        """Stop a session; a running loop notices before its next iteration."""
        session = self.get_session(session_id)
        session.cancelled = True
        for checkpoint in self.interaction.pending_checkpoints(session_id):
            self.interaction.skip_checkpoint(checkpoint.checkpoint_id)
            session.store.resolve_checkpoint(checkpoint.checkpoint_id)
        if not session.lock.acquire(blocking=False):
            logger.info("Cancellation requested for running session %s", session_id)
            return self.build_response(session)
        try:
            if session.store.state.status != AgentStatus.PROCESSING:
                return self.build_response(session)
            session.store.set_status(AgentStatus.ERROR, "cancelled")
            logger.info("Session %s cancelled", session_id)
            return self._finish(session)
        finally:
            session.lock.release()

    def shutdown(self) -> None:
        self.executor.shutdown()
