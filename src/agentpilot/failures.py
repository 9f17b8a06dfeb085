"""Error taxonomy and exceptions."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorClassification(str, Enum):
    """Categories assigned to error observations."""

    TOOL_EXECUTION_FAILED = "tool_execution_failed"
    PARAMETER_VALIDATION_FAILED = "parameter_validation_failed"
    NETWORK_FAILURE = "network_failure"
    RESOURCE_EXHAUSTION = "resource_exhaustion"
    STRATEGY_INEFFECTIVE = "strategy_ineffective"
    UNKNOWN_ERROR = "unknown_error"
    AGENT_ERROR = "agent_error"
    SYSTEM_ERROR = "system_error"
    CRITICAL_ERROR = "critical_error"


RECOVERABLE_CLASSIFICATIONS = frozenset(
    {
        ErrorClassification.TOOL_EXECUTION_FAILED,
        ErrorClassification.PARAMETER_VALIDATION_FAILED,
        ErrorClassification.NETWORK_FAILURE,
        ErrorClassification.RESOURCE_EXHAUSTION,
        ErrorClassification.STRATEGY_INEFFECTIVE,
    }
)

ALWAYS_ESCALATE = frozenset(
    {ErrorClassification.SYSTEM_ERROR, ErrorClassification.CRITICAL_ERROR}
)


def is_recoverable(classification: ErrorClassification | str) -> bool:
    try:
        return ErrorClassification(classification) in RECOVERABLE_CLASSIFICATIONS
    except ValueError:
        return False


@dataclass(frozen=True)
class FailureEvent:
    """Structured failure event for traces and monitoring."""

    classification: str
    reason: str
    iteration: int | None = None
    details: dict[str, Any] = field(default_factory=dict)


class AgentPilotError(Exception):
    """Base class for errors raised to callers."""


class ToolValidationError(AgentPilotError):
    """Raised when a tool does not satisfy the tool contract."""


class ToolNotFoundError(AgentPilotError):
    """Raised when a tool name is not registered."""


class ReasoningError(AgentPilotError):
    """Raised when the reasoning collaborator exhausts its retry budget."""


class CheckpointError(AgentPilotError):
    """Raised for unknown or already resolved checkpoints."""


class InvalidTransitionError(AgentPilotError):
    """Raised for a status change the lifecycle does not allow."""


class InvalidModeError(AgentPilotError):
    """Raised for an unknown operation mode."""


class SessionNotFoundError(AgentPilotError):
    """Raised when a session id is unknown."""


class CheckpointNotFoundError(CheckpointError):
    """Raised when a checkpoint id is unknown."""
