"""Chat model interface used by the model-backed reasoner."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel


class ModelResponse(BaseModel):
    final_text: str | None = None
    usage: dict[str, Any] | None = None

    @property
    def text(self) -> str:
        return (self.final_text or "").strip()


class BaseChatModel(ABC):
    """A model that turns a message list into a single reply."""

    @abstractmethod
    def chat(self, messages: list[dict[str, Any]]) -> ModelResponse:
        raise NotImplementedError

    def complete(self, system: str, prompt: str) -> ModelResponse:
        return self.chat(
            [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ]
        )
