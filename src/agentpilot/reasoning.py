"""Reasoning collaborators and the retry policy that wraps them."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol, TypeVar

from pydantic import BaseModel, Field

from agentpilot.failures import ReasoningError
from agentpilot.models.base import BaseChatModel
from agentpilot.util.logging import get_logger, redact

logger = get_logger(__name__)

T = TypeVar("T")

SYSTEM_PROMPT = (
    "You are the reasoning step of an autonomous agent. Each turn you receive the user's "
    "request, environmental feedback from earlier tool runs and any recovery plan. "
    "Write one short paragraph of reasoning about what to do next. To run a tool, end with "
    "a line 'TOOL: <tool name>' followed by 'PARAMETERS: key=value, key=value'. When the "
    "tool results answer the request, state the final answer plainly, starting with "
    "'Final answer:'."
)


class ToolOutcome(BaseModel):
    tool_name: str
    success: bool
    message: str = ""
    data: Any = None
    iteration: int


class PromptContext(BaseModel):
    """Everything the reasoning collaborator sees for one iteration."""

    query: str
    iteration: int
    max_iterations: int
    strategy: str = "default"
    confidence: float = 0.0
    feedback_digest: str = ""
    insights: list[str] = Field(default_factory=list)
    recovery_steps: list[str] = Field(default_factory=list)
    detected_errors: int = 0
    recoverable_errors: int = 0
    previous_reasoning: list[str] = Field(default_factory=list)
    tool_results: list[ToolOutcome] = Field(default_factory=list)
    available_tools: list[str] = Field(default_factory=list)
    human_notes: list[str] = Field(default_factory=list)

    @property
    def latest_tool_result(self) -> ToolOutcome | None:
        return self.tool_results[-1] if self.tool_results else None


class Reasoner(Protocol):
    def reason(self, context: PromptContext) -> str:
        ...


def summarize_data(data: Any, limit: int = 200) -> str:
    if data is None:
        return ""
    if isinstance(data, str):
        text = data
    else:
        text = json.dumps(data, default=str, sort_keys=True)
    return text if len(text) <= limit else text[:limit] + "..."


class TemplateReasoner:
    """Offline reasoner that writes reasoning from the prompt context alone."""

    def reason(self, context: PromptContext) -> str:
        lines: list[str] = []
        if not context.previous_reasoning:
            lines.append(
                f'Starting analysis of the request "{context.query}". '
                "Breaking it into steps to pick a suitable approach."
            )
            if context.available_tools:
                lines.append(f"Tools on hand: {', '.join(context.available_tools)}.")
            return "\n".join(lines)

        latest = context.latest_tool_result
        if latest is not None and latest.iteration == context.iteration - 1:
            if latest.success:
                detail = summarize_data(latest.data) or latest.message
                lines.append(f"Tool '{latest.tool_name}' reported: {latest.message}")
                lines.append(f"Therefore, the result is {detail}")
                return "\n".join(lines)
            lines.append(f"Tool '{latest.tool_name}' failed at step {latest.iteration}: {latest.message}")

        if context.recovery_steps:
            lines.append(
                f"Recovery context at step {context.iteration}: {context.detected_errors} errors detected, "
                f"{context.recoverable_errors} recoverable."
            )
            for index, step in enumerate(context.recovery_steps[:2], start=1):
                lines.append(f"{index}. {step}")
            lines.append(f"Adapting the {context.strategy} approach to apply these recovery actions.")
        elif context.insights:
            lines.append(f"Step {context.iteration} insights: {'; '.join(context.insights[:2])}.")
        else:
            lines.append(
                f"Step {context.iteration} of {context.max_iterations}: continuing the "
                f"{context.strategy} approach for \"{context.query}\"."
            )
        for note in context.human_notes[-2:]:
            lines.append(f"Operator note: {note}")
        return "\n".join(lines)


def render_prompt(context: PromptContext) -> str:
    lines = [
        f"Request: {context.query}",
        f"Iteration {context.iteration} of {context.max_iterations}; strategy {context.strategy}; "
        f"confidence {context.confidence:.2f}",
    ]
    if context.available_tools:
        lines.append("Available tools:")
        lines.extend(f"- {tool}" for tool in context.available_tools)
    if context.feedback_digest:
        lines.extend(["", context.feedback_digest])
    if context.recovery_steps:
        lines.append("")
        lines.append(
            f"Error recovery: {context.detected_errors} errors detected, "
            f"{context.recoverable_errors} recoverable"
        )
        lines.extend(f"- {step}" for step in context.recovery_steps)
    if context.tool_results:
        lines.append("")
        lines.append("Tool results:")
        for outcome in context.tool_results[-3:]:
            status = "ok" if outcome.success else "failed"
            lines.append(
                f"- {outcome.tool_name} ({status}): {outcome.message} {summarize_data(outcome.data)}".rstrip()
            )
    if context.previous_reasoning:
        lines.append("")
        lines.append(f"Previous reasoning: {context.previous_reasoning[-1][:300]}")
    if context.human_notes:
        lines.append("")
        lines.append("Operator notes:")
        lines.extend(f"- {note}" for note in context.human_notes)
    return "\n".join(lines)


class ModelReasoner:
    """Reasoner backed by a chat model."""

    def __init__(self, model: BaseChatModel, system_prompt: str = SYSTEM_PROMPT) -> None:
        self.model = model
        self.system_prompt = system_prompt

    def reason(self, context: PromptContext) -> str:
        text = self.model.complete(self.system_prompt, render_prompt(context)).text
        if not text:
            raise ReasoningError("Model returned an empty reasoning step")
        return text


@dataclass
class RetryPolicy:
    """Bounded retries with exponential backoff."""

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    sleep: Callable[[float], None] = field(default=time.sleep)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay_for(self, attempt: int) -> float:
        return min(self.max_delay, self.base_delay * self.multiplier**attempt)

    def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        last_error: Exception | None = None
        for attempt in range(self.max_attempts):
            try:
                return fn(*args, **kwargs)
            except Exception as exc:
                last_error = exc
                logger.warning(
                    "Reasoning attempt %s/%s failed: %s",
                    attempt + 1,
                    self.max_attempts,
                    redact(str(exc)),
                )
                if attempt + 1 < self.max_attempts:
                    self.sleep(self.delay_for(attempt))
        raise ReasoningError(
            f"Reasoning failed after {self.max_attempts} attempts: {last_error}"
        ) from last_error
