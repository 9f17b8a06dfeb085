"""Configuration settings for AgentPilot."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

from agentpilot.failures import InvalidModeError

OperationMode = Literal["autonomous", "supervised", "manual"]
OPERATION_MODES: tuple[str, ...] = ("autonomous", "supervised", "manual")


def validate_operation_mode(mode: str) -> str:
    if mode not in OPERATION_MODES:
        raise InvalidModeError(
            f"Invalid operation mode: {mode}. Must be one of: {', '.join(OPERATION_MODES)}"
        )
    return mode


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or overrides."""

    model_config = SettingsConfigDict(
        env_prefix="", case_sensitive=False, populate_by_name=True
    )

    openai_api_key: str | None = Field(default=None, validation_alias="OPENAI_API_KEY")
    openai_base_url: str = Field(
        default="https://api.openai.com/v1", validation_alias="OPENAI_BASE_URL"
    )
    openai_model: str = Field(default="gpt-4.1-mini", validation_alias="OPENAI_MODEL")
    openai_timeout_seconds: int = Field(
        default=30, validation_alias="OPENAI_TIMEOUT_SECONDS"
    )
    openai_extra_headers: str | None = Field(
        default=None, validation_alias="OPENAI_EXTRA_HEADERS"
    )
    max_iterations: int = Field(default=10, ge=1, validation_alias="MAX_ITERATIONS")
    strategy: str = Field(default="default", validation_alias="AGENT_STRATEGY")
    operation_mode: OperationMode = Field(
        default="supervised", validation_alias="OPERATION_MODE"
    )
    tool_timeout_seconds: float = Field(default=30.0, validation_alias="TOOL_TIMEOUT_SECONDS")
    reasoning_max_attempts: int = Field(default=3, ge=1, validation_alias="REASONING_MAX_ATTEMPTS")
    reasoning_retry_delay_seconds: float = Field(
        default=1.0, validation_alias="REASONING_RETRY_DELAY_SECONDS"
    )
    max_recovery_attempts: int = Field(default=3, ge=1, validation_alias="MAX_RECOVERY_ATTEMPTS")
    recovery_window_seconds: float = Field(
        default=300.0, validation_alias="RECOVERY_WINDOW_SECONDS"
    )
    feedback_window: int = Field(default=5, ge=1, validation_alias="FEEDBACK_WINDOW")
    max_execution_seconds: float = Field(
        default=300.0, validation_alias="MAX_EXECUTION_SECONDS"
    )
    max_llm_calls: int = Field(default=20, ge=1, validation_alias="MAX_LLM_CALLS")
    max_retained_sessions: int = Field(default=100, ge=1, validation_alias="MAX_RETAINED_SESSIONS")
    session_retention_seconds: float = Field(
        default=24 * 60 * 60, validation_alias="SESSION_RETENTION_SECONDS"
    )
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    workspace_dir: str = Field(default="./workspace", validation_alias="WORKSPACE_DIR")
    trace_enabled: bool = Field(default=False, validation_alias="TRACE_ENABLED")


class RunConfig(BaseModel):
    """Per-query overrides accepted by ``process_query``.

    Keys may be given in snake case or camel case (``maxIterations``).
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    max_iterations: int | None = Field(default=None, ge=1)
    strategy: str | None = None
    operation_mode: str | None = None
    thresholds: dict[str, Any] = Field(default_factory=dict)


DEFAULT_SETTINGS = Settings()
