"""Shared construction helpers for models, tools, and controllers."""

from __future__ import annotations

import json

from agentpilot.config import Settings
from agentpilot.controller import AgentController
from agentpilot.models.base import BaseChatModel
from agentpilot.models.mock import MockChatModel
from agentpilot.models.openai_compat import OpenAICompatChatModel
from agentpilot.monitoring import MetricsCollector
from agentpilot.reasoning import ModelReasoner, Reasoner, RetryPolicy, TemplateReasoner
from agentpilot.tools.base import Tool
from agentpilot.tools.builtins.area import AreaCalculatorTool
from agentpilot.tools.builtins.flight import FlightServiceTool
from agentpilot.tools.builtins.percentage import PercentageCalculatorTool
from agentpilot.tools.builtins.weather import WeatherServiceTool
from agentpilot.tools.registry import ToolRegistry


def build_model(settings: Settings, use_mock: bool = False) -> BaseChatModel:
    if use_mock or not settings.openai_api_key:
        return MockChatModel()
    extra_headers = None
    if settings.openai_extra_headers:
        extra_headers = json.loads(settings.openai_extra_headers)
    return OpenAICompatChatModel(
        base_url=settings.openai_base_url,
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        timeout_seconds=settings.openai_timeout_seconds,
        extra_headers=extra_headers,
    )


def default_tools() -> list[Tool]:
    return [
        WeatherServiceTool(),
        FlightServiceTool(),
        PercentageCalculatorTool(),
        AreaCalculatorTool(),
    ]


def build_registry(tools: list[Tool] | None = None) -> ToolRegistry:
    registry = ToolRegistry()
    registry.register_all(default_tools() if tools is None else tools)
    return registry


def build_reasoner(settings: Settings, model: BaseChatModel | None = None) -> Reasoner:
    """Use the chat model when one is configured, else the offline template reasoner."""
    if model is None and not settings.openai_api_key:
        return TemplateReasoner()
    return ModelReasoner(model or build_model(settings))


def build_controller(
    settings: Settings,
    *,
    registry: ToolRegistry | None = None,
    reasoner: Reasoner | None = None,
    metrics: MetricsCollector | None = None,
) -> AgentController:
    return AgentController(
        registry=registry or build_registry(),
        reasoner=reasoner or build_reasoner(settings),
        settings=settings,
        retry_policy=RetryPolicy(
            max_attempts=settings.reasoning_max_attempts,
            base_delay=settings.reasoning_retry_delay_seconds,
        ),
        metrics=metrics or MetricsCollector(workspace_dir=settings.workspace_dir),
    )
