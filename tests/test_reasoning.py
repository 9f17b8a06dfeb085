from __future__ import annotations

import pytest

from agentpilot.failures import ReasoningError
from agentpilot.models.base import ModelResponse
from agentpilot.models.mock import MockChatModel
from agentpilot.reasoning import (
    ModelReasoner,
    PromptContext,
    RetryPolicy,
    TemplateReasoner,
    ToolOutcome,
    render_prompt,
)


def context(**overrides) -> PromptContext:
    data = {"query": "weather in London", "iteration": 1, "max_iterations": 5}
    data.update(overrides)
    return PromptContext(**data)


def test_template_reasoner_opens_with_the_request():
    text = TemplateReasoner().reason(context(available_tools=["weather-service: weather"]))
    assert text.startswith('Starting analysis of the request "weather in London".')
    assert "Tools on hand: weather-service: weather." in text


def test_template_reasoner_concludes_after_tool_success():
    outcome = ToolOutcome(
        tool_name="weather-service",
        success=True,
        message="Weather retrieved",
        data={"temperature": 18},
        iteration=1,
    )
    text = TemplateReasoner().reason(
        context(iteration=2, previous_reasoning=["Starting"], tool_results=[outcome])
    )
    assert text.splitlines() == [
        "Tool 'weather-service' reported: Weather retrieved",
        'Therefore, the result is {"temperature": 18}',
    ]


def test_template_reasoner_describes_recovery():
    outcome = ToolOutcome(tool_name="weather-service", success=False, message="down", iteration=1)
    text = TemplateReasoner().reason(
        context(
            iteration=2,
            previous_reasoning=["Starting"],
            tool_results=[outcome],
            recovery_steps=["Recover from weather-service failure"],
            detected_errors=1,
            recoverable_errors=1,
            human_notes=["Try Paris instead"],
        )
    )
    assert "Tool 'weather-service' failed at step 1: down" in text
    assert "1. Recover from weather-service failure" in text
    assert text.endswith("Operator note: Try Paris instead")


def test_retry_policy_backs_off_then_succeeds():
    delays: list[float] = []
    attempts = iter([RuntimeError("one"), RuntimeError("two"), "done"])

    def flaky() -> str:
        item = next(attempts)
        if isinstance(item, Exception):
            raise item
        return item

    policy = RetryPolicy(max_attempts=3, base_delay=1.0, multiplier=2.0, sleep=delays.append)
    assert policy.call(flaky) == "done"
    assert delays == [1.0, 2.0]


def test_retry_policy_gives_up():
    policy = RetryPolicy(max_attempts=2, sleep=lambda _: None)

    def broken() -> str:
        raise RuntimeError("offline")

    with pytest.raises(ReasoningError) as excinfo:
        policy.call(broken)
    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert policy.delay_for(10) == policy.max_delay
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)


def test_model_reasoner_sends_rendered_prompt():
    model = MockChatModel(["Final answer: it is raining in London."])
    reasoner = ModelReasoner(model)
    text = reasoner.reason(context(human_notes=["metric units"]))
    assert text == "Final answer: it is raining in London."
    messages = model.calls[0]
    assert [message["role"] for message in messages] == ["system", "user"]
    assert messages[1]["content"].startswith("Request: weather in London")
    assert "- metric units" in messages[1]["content"]


def test_model_reasoner_rejects_empty_reply():
    reasoner = ModelReasoner(MockChatModel([ModelResponse(final_text="  ")]))
    with pytest.raises(ReasoningError):
        reasoner.reason(context())


def test_mock_model_raises_scripted_errors_then_echoes():
    model = MockChatModel([TimeoutError("slow")])
    with pytest.raises(TimeoutError):
        model.chat([{"role": "user", "content": "hi"}])
    reply = model.chat([{"role": "user", "content": "Request: weather\nmore"}])
    assert reply.final_text == "Mock analysis of: Request: weather"


def test_render_prompt_lists_recent_tool_results():
    outcomes = [
        ToolOutcome(tool_name=f"tool-{index}", success=index % 2 == 0, message="m", iteration=index)
        for index in range(4)
    ]
    prompt = render_prompt(context(tool_results=outcomes, recovery_steps=["retry"], detected_errors=1))
    assert "- tool-0" not in prompt
    assert "- tool-3 (failed): m" in prompt
    assert "Error recovery: 1 errors detected, 0 recoverable" in prompt
