from __future__ import annotations

import pytest

from agentpilot.config import RunConfig, Settings, validate_operation_mode
from agentpilot.factory import build_controller, build_model, build_reasoner, build_registry
from agentpilot.failures import InvalidModeError
from agentpilot.models.mock import MockChatModel
from agentpilot.models.openai_compat import OpenAICompatChatModel
from agentpilot.reasoning import ModelReasoner, TemplateReasoner


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("MAX_ITERATIONS", "4")
    monkeypatch.setenv("OPERATION_MODE", "manual")
    monkeypatch.setenv("TRACE_ENABLED", "true")
    settings = Settings()
    assert settings.max_iterations == 4
    assert settings.operation_mode == "manual"
    assert settings.trace_enabled is True


def test_settings_reject_unknown_mode(monkeypatch):
    monkeypatch.setenv("OPERATION_MODE", "reckless")
    with pytest.raises(ValueError):
        Settings()


def test_run_config_accepts_both_spellings():
    assert RunConfig.model_validate({"maxIterations": 2}).max_iterations == 2
    assert RunConfig.model_validate({"max_iterations": 2, "operationMode": "manual"}).operation_mode == "manual"
    with pytest.raises(ValueError):
        RunConfig(max_iterations=0)


def test_validate_operation_mode():
    assert validate_operation_mode("autonomous") == "autonomous"
    with pytest.raises(InvalidModeError):
        validate_operation_mode("Autonomous")


def test_reasoner_selection(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    offline = Settings()
    assert isinstance(build_reasoner(offline), TemplateReasoner)
    assert isinstance(build_model(offline), MockChatModel)
    assert isinstance(build_reasoner(offline, model=MockChatModel()), ModelReasoner)

    online = Settings(
        openai_api_key="sk-test",
        openai_base_url="https://example.com/v1",
        openai_extra_headers='{"X-Org": "pilot"}',
    )
    reasoner = build_reasoner(online)
    assert isinstance(reasoner, ModelReasoner)
    assert isinstance(reasoner.model, OpenAICompatChatModel)
    assert reasoner.model.extra_headers == {"X-Org": "pilot"}
    assert isinstance(build_model(online, use_mock=True), MockChatModel)


def test_default_registry_and_controller(tmp_path):
    registry = build_registry()
    assert registry.names() == [
        "weather-service",
        "flight-service",
        "percentage-calculator",
        "area-calculator",
    ]
    assert build_registry([]).names() == []
    settings = Settings(workspace_dir=str(tmp_path), reasoning_max_attempts=2)
    controller = build_controller(settings, registry=registry)
    assert controller.registry is registry
    assert controller.retry_policy.max_attempts == 2
    assert str(controller.metrics.workspace_dir) == str(tmp_path)
