"""Structured observations derived from tool and environment outcomes."""

from __future__ import annotations

import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ObservationType(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    PROGRESS = "progress"
    DATA = "data"
    PERFORMANCE = "performance"
    ENVIRONMENT = "environment"
    TOOL_FEEDBACK = "tool_feedback"


class Observation(BaseModel):
    """An immutable, confidence-scored fact about the environment."""

    model_config = ConfigDict(frozen=True)

    type: ObservationType
    content: str = "No content provided"
    tool_name: str | None = None
    confidence: float = 0.5
    data: dict[str, Any] = Field(default_factory=dict)
    ground_truth: dict[str, Any] = Field(default_factory=dict)
    timestamp: float = Field(default_factory=time.time)
    iteration: int | None = None

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, value: float) -> float:
        return max(0.0, min(1.0, float(value)))

    @property
    def is_error(self) -> bool:
        return self.type == ObservationType.ERROR


def describe_data(data: Any) -> dict[str, Any]:
    """Return type, size and emptiness of a tool payload."""
    if data is None:
        return {"type": "none", "size": 0, "is_empty": True}
    if isinstance(data, (list, tuple)):
        return {"type": "array", "size": len(data), "is_empty": len(data) == 0}
    if isinstance(data, dict):
        return {"type": "object", "size": len(data), "is_empty": len(data) == 0}
    if isinstance(data, str):
        return {"type": "string", "size": len(data), "is_empty": len(data) == 0}
    if isinstance(data, bool):
        return {"type": "boolean", "size": 1, "is_empty": False}
    if isinstance(data, (int, float)):
        return {"type": "number", "size": 1, "is_empty": False}
    return {"type": type(data).__name__, "size": 1, "is_empty": False}


def performance_level(duration_ms: float) -> str:
    if duration_ms < 100:
        return "excellent"
    if duration_ms < 500:
        return "good"
    if duration_ms < 2000:
        return "acceptable"
    if duration_ms < 5000:
        return "slow"
    return "very slow"


class ObservationGenerator:
    """Build uniform observations from raw execution outcomes."""

    def success(
        self,
        tool_name: str,
        data: Any = None,
        message: str = "",
        duration_ms: float | None = None,
        iteration: int | None = None,
    ) -> Observation:
        info = describe_data(data)
        content = f"Tool '{tool_name}' executed successfully"
        if not info["is_empty"]:
            content += f" and returned {info['type']} data"
            if info["type"] == "number":
                content += f": {data}"
            elif info["type"] == "string" and len(data) < 100:
                content += f': "{data}"'
            elif info["type"] == "array":
                content += f" with {info['size']} items"
        return Observation(
            type=ObservationType.SUCCESS,
            content=content + ".",
            tool_name=tool_name,
            confidence=1.0,
            data={"tool_result": data, "execution_time_ms": duration_ms, "message": message},
            ground_truth={
                "success": True,
                "data_available": not info["is_empty"],
                "data_type": info["type"],
            },
            iteration=iteration,
        )

    def tool_failure(
        self,
        tool_name: str,
        message: str,
        *,
        error_name: str | None = None,
        context: str = "tool execution",
        tool_failed: bool = True,
        iteration: int | None = None,
    ) -> Observation:
        content = f"Tool '{tool_name}' failed"
        if context:
            content += f" during {context}"
        content += f": {message}"
        return Observation(
            type=ObservationType.ERROR,
            content=content,
            tool_name=tool_name,
            confidence=1.0,
            data={"tool_message": message, "context": context, "error_name": error_name},
            ground_truth={"success": False, "tool_failed": tool_failed, "tool_name": tool_name},
            iteration=iteration,
        )

    def error(
        self,
        exc: BaseException | str,
        context: str = "",
        iteration: int | None = None,
        **extra: Any,
    ) -> Observation:
        if isinstance(exc, BaseException):
            error_name = type(exc).__name__
            message = str(exc)
        else:
            error_name = "Error"
            message = exc
        content = "Error occurred"
        if context:
            content += f" during {context}"
        content += f": {message}"
        return Observation(
            type=ObservationType.ERROR,
            content=content,
            confidence=1.0,
            data={"error_name": error_name, "error_message": message, "context": context, **extra},
            ground_truth={"success": False, "error_occurred": True, "error_type": error_name},
            iteration=iteration,
        )

    def progress(
        self,
        description: str,
        stage: str = "unknown",
        iteration: int | None = None,
        **data: Any,
    ) -> Observation:
        return Observation(
            type=ObservationType.PROGRESS,
            content=description,
            confidence=0.8,
            data={"stage": stage, **data},
            ground_truth={"progress_made": True, "stage": stage},
            iteration=iteration,
        )

    def data(self, payload: Any, source: str = "unknown", iteration: int | None = None) -> Observation:
        info = describe_data(payload)
        content = f"Received {info['type']} data from {source}"
        if info["is_empty"]:
            content += " (empty)"
        elif info["type"] == "array":
            content += f" with {info['size']} items"
        elif info["type"] == "object":
            content += f" with {info['size']} properties"
        elif info["type"] == "string":
            content += f" ({info['size']} characters)"
        return Observation(
            type=ObservationType.DATA,
            content=content + ".",
            tool_name=source if source != "unknown" else None,
            confidence=1.0,
            data={"source_data": payload, "source": source, "analysis": info},
            ground_truth={
                "data_available": True,
                "data_type": info["type"],
                "data_size": info["size"],
                "is_empty": info["is_empty"],
            },
            iteration=iteration,
        )

    def performance(
        self, duration_ms: float, operation: str = "operation", iteration: int | None = None
    ) -> Observation:
        level = performance_level(duration_ms)
        return Observation(
            type=ObservationType.PERFORMANCE,
            content=f"{operation} completed in {duration_ms:.0f}ms ({level} performance).",
            confidence=1.0,
            data={"execution_time_ms": duration_ms, "operation": operation, "level": level},
            ground_truth={
                "execution_completed": True,
                "execution_time_ms": duration_ms,
                "performance_category": level,
            },
            iteration=iteration,
        )

    def environment(
        self, state: str, iteration: int | None = None, **data: Any
    ) -> Observation:
        return Observation(
            type=ObservationType.ENVIRONMENT,
            content=f"Environment state: {state}",
            confidence=0.9,
            data=data,
            ground_truth={"environment_accessible": True, "state": state},
            iteration=iteration,
        )

    def state_change(
        self,
        component: str,
        previous: Any,
        new: Any,
        trigger: str = "unknown",
        iteration: int | None = None,
    ) -> Observation:
        return Observation(
            type=ObservationType.ENVIRONMENT,
            content=f"Environmental state change in {component}: {previous} -> {new}",
            confidence=1.0,
            data={"component": component, "trigger": trigger},
            ground_truth={
                "state_changed": True,
                "component": component,
                "previous_state": previous,
                "new_state": new,
                "trigger": trigger,
            },
            iteration=iteration,
        )

    def tool_feedback(
        self,
        tool_name: str,
        success: bool,
        ground_truth: dict[str, Any],
        observation_count: int = 0,
        iteration: int | None = None,
    ) -> Observation:
        content = f"Environmental feedback from tool '{tool_name}': "
        content += "execution successful" if success else "execution failed"
        if observation_count:
            content += f" with {observation_count} observations"
        return Observation(
            type=ObservationType.TOOL_FEEDBACK,
            content=content + ".",
            tool_name=tool_name,
            confidence=1.0,
            data={"observation_count": observation_count},
            ground_truth=dict(ground_truth),
            iteration=iteration,
        )
