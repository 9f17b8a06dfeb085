"""Mock chat model for offline runs and tests."""

from __future__ import annotations

from typing import Any

from agentpilot.models.base import BaseChatModel, ModelResponse


class MockChatModel(BaseChatModel):
    """Deterministic model that replays scripted replies, then echoes the prompt.

    A scripted item that is an exception instance is raised instead of
    returned, which lets tests exercise the reasoning retry policy.
    """

    def __init__(self, scripted: list[ModelResponse | str | Exception] | None = None) -> None:
        self._scripted = list(scripted or [])
        self.calls: list[list[dict[str, Any]]] = []

    def chat(self, messages: list[dict[str, Any]]) -> ModelResponse:
        self.calls.append(messages)
        if self._scripted:
            item = self._scripted.pop(0)
            if isinstance(item, Exception):
                raise item
            if isinstance(item, str):
                return ModelResponse(final_text=item)
            return item
        last = messages[-1].get("content") if messages else ""
        first_line = str(last).splitlines()[0] if last else ""
        return ModelResponse(final_text=f"Mock analysis of: {first_line}")
