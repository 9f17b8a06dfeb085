"""Tool registry."""

from __future__ import annotations

import threading
from typing import Any, Iterable

from agentpilot.failures import ToolValidationError
from agentpilot.tools.base import PARAMETER_TYPES, Tool, ToolParameter, ToolSpec, openai_schema
from agentpilot.util.logging import get_logger

logger = get_logger(__name__)


def _require_text(tool: Any, field: str) -> str:
    value = getattr(tool, field, None)
    if not isinstance(value, str) or not value.strip():
        raise ToolValidationError(f"Tool {field} must be a non-empty string")
    return value


def validate_tool(tool: Any) -> list[ToolParameter]:
    """Check the tool contract and return its normalized parameters."""
    name = _require_text(tool, "name")
    _require_text(tool, "description")
    _require_text(tool, "category")
    if not callable(getattr(tool, "execute", None)):
        raise ToolValidationError(f"Tool '{name}' must define a callable execute")
    raw_parameters = getattr(tool, "parameters", None) or []
    if not isinstance(raw_parameters, (list, tuple)):
        raise ToolValidationError(f"Tool '{name}' parameters must be a list")
    parameters: list[ToolParameter] = []
    for raw in raw_parameters:
        if isinstance(raw, ToolParameter):
            data = raw.model_dump()
        elif isinstance(raw, dict):
            data = raw
        else:
            raise ToolValidationError(f"Tool '{name}' has a malformed parameter: {raw!r}")
        param_name = data.get("name")
        if not isinstance(param_name, str) or not param_name.strip():
            raise ToolValidationError(f"Tool '{name}' has a parameter without a name")
        if data.get("type") not in PARAMETER_TYPES:
            raise ToolValidationError(
                f"Tool '{name}' parameter '{param_name}' has invalid type {data.get('type')!r}"
            )
        if not isinstance(data.get("required"), bool):
            raise ToolValidationError(
                f"Tool '{name}' parameter '{param_name}' must declare required as a boolean"
            )
        parameters.append(ToolParameter.model_validate(data))
    return parameters


class ToolRegistry:
    """Registry of tools available to the agent.

    Writes replace the mappings under a lock; readers always see a complete
    mapping, so sessions may read concurrently.
    """

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}
        self._parameters: dict[str, list[ToolParameter]] = {}
        self._lock = threading.Lock()

    def register(self, tool: Tool) -> None:
        parameters = validate_tool(tool)
        with self._lock:
            if tool.name in self._tools:
                logger.warning("Replacing registered tool %s", tool.name)
            self._tools = {**self._tools, tool.name: tool}
            self._parameters = {**self._parameters, tool.name: parameters}
        logger.info("Registered tool %s (category=%s)", tool.name, tool.category)

    def register_all(self, tools: Iterable[Tool]) -> None:
        for tool in tools:
            self.register(tool)

    def unregister(self, name: str) -> bool:
        with self._lock:
            if name not in self._tools:
                return False
            self._tools = {key: value for key, value in self._tools.items() if key != name}
            self._parameters = {
                key: value for key, value in self._parameters.items() if key != name
            }
        return True

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def parameters(self, name: str) -> list[ToolParameter]:
        return list(self._parameters.get(name, []))

    def has(self, name: str) -> bool:
        return name in self._tools

    def list(self) -> list[Tool]:
        return list(self._tools.values())

    def names(self) -> list[str]:
        return list(self._tools)

    def categories(self) -> list[str]:
        return sorted({tool.category for tool in self._tools.values()})

    def by_category(self, category: str) -> list[Tool]:
        return [tool for tool in self._tools.values() if tool.category == category]

    def search(self, query: str) -> list[Tool]:
        needle = query.lower().strip()
        if not needle:
            return []
        return [
            tool
            for tool in self._tools.values()
            if needle in tool.name.lower()
            or needle in tool.description.lower()
            or needle in tool.category.lower()
        ]

    def specs(self) -> list[ToolSpec]:
        return [
            ToolSpec(
                name=tool.name,
                description=tool.description,
                category=tool.category,
                parameters=self.parameters(tool.name),
            )
            for tool in self._tools.values()
        ]

    def documentation(self) -> str:
        lines: list[str] = []
        for category in self.categories():
            lines.append(f"## {category}")
            for tool in self.by_category(category):
                lines.append(f"- {tool.name}: {tool.description}")
                for parameter in self.parameters(tool.name):
                    flag = "required" if parameter.required else "optional"
                    lines.append(f"  - {parameter.name} ({parameter.type}, {flag})")
        return "\n".join(lines)

    def openai_schemas(self) -> list[dict]:
        return [
            openai_schema(tool.name, tool.description, self.parameters(tool.name))
            for tool in self._tools.values()
        ]
