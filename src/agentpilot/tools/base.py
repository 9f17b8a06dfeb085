"""Base tool definitions."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Awaitable

from pydantic import BaseModel, Field

PARAMETER_TYPES = frozenset({"string", "number", "boolean", "object", "array"})

_PYTHON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "number": (int, float),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list, tuple),
}


class ToolParameter(BaseModel):
    name: str
    type: str
    required: bool = False
    default: Any = None
    description: str = ""


class ToolResult(BaseModel):
    success: bool
    data: Any = None
    message: str = ""
    error: str | None = None
    error_name: str | None = None


class ToolSpec(BaseModel):
    """Serializable view of a registered tool."""

    name: str
    description: str
    category: str
    parameters: list[ToolParameter] = Field(default_factory=list)


def matches_type(value: Any, type_name: str) -> bool:
    if type_name == "number" and isinstance(value, bool):
        return False
    expected = _PYTHON_TYPES.get(type_name)
    if expected is None:
        return False
    return isinstance(value, expected)


def check_parameters(parameters: list[ToolParameter], params: dict[str, Any]) -> list[str]:
    """Return the problems with ``params`` for the declared parameters."""
    errors: list[str] = []
    for parameter in parameters:
        value = params.get(parameter.name)
        if value is None:
            if parameter.required:
                errors.append(f"Missing required parameter: {parameter.name}")
            continue
        if not matches_type(value, parameter.type):
            errors.append(f"Parameter '{parameter.name}' must be of type {parameter.type}")
    return errors


def apply_defaults(parameters: list[ToolParameter], params: dict[str, Any]) -> dict[str, Any]:
    prepared = dict(params)
    for parameter in parameters:
        if prepared.get(parameter.name) is None and parameter.default is not None:
            prepared[parameter.name] = parameter.default
    return prepared


def openai_schema(name: str, description: str, parameters: list[ToolParameter]) -> dict[str, Any]:
    """Return OpenAI-compatible tool schema."""
    properties = {
        parameter.name: {"type": parameter.type, "description": parameter.description}
        for parameter in parameters
    }
    required = [parameter.name for parameter in parameters if parameter.required]
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {"type": "object", "properties": properties, "required": required},
        },
    }


class Tool(ABC):
    """Abstract tool.

    Subclasses declare ``name``, ``description``, ``category`` and
    ``parameters`` as class attributes and implement ``execute``. ``execute``
    may return a coroutine; the executor resolves it within the timeout.
    """

    name: str
    description: str
    category: str = "general"
    parameters: list[ToolParameter] = []

    @abstractmethod
    def execute(self, params: dict[str, Any]) -> ToolResult | Awaitable[ToolResult]:
        """Execute the tool."""
        raise NotImplementedError

    def validate_parameters(self, params: dict[str, Any]) -> list[str]:
        return check_parameters(self.parameters, params)

    def prepare_parameters(self, params: dict[str, Any]) -> dict[str, Any]:
        return apply_defaults(self.parameters, params)

    def success(self, data: Any = None, message: str = "") -> ToolResult:
        return ToolResult(success=True, data=data, message=message or f"{self.name} completed")

    def failure(
        self, message: str, error: str | None = None, error_name: str | None = None
    ) -> ToolResult:
        return ToolResult(
            success=False, message=message, error=error or message, error_name=error_name
        )

    def openai_schema(self) -> dict[str, Any]:
        return openai_schema(self.name, self.description, self.parameters)
