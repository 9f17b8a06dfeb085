"""Tool choices written by the reasoning model.

A reasoning step may name a tool either as labelled sections::

    TOOL: area-calculator
    PARAMETERS: shape=circle, radius=2

or as a JSON object such as ``{"tool": "area-calculator", "arguments": {...}}``.
``PARAMETERS`` accepts a JSON object or ``key=value`` / ``key: value`` pairs
separated by commas or newlines.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

from agentpilot.tools.registry import ToolRegistry

TOOL_SECTIONS = ("SELECTED_TOOL", "TOOL")
PARAMETER_SECTIONS = ("PARAMETERS", "ARGUMENTS")
NO_TOOL = frozenset({"none", "null", "n/a"})

_PAIR_RE = re.compile(r"""([A-Za-z_][\w-]*)\s*[=:]\s*("[^"]*"|'[^']*'|[^,\n]*)""")
_INT_RE = re.compile(r"^-?\d+$")
_FLOAT_RE = re.compile(r"^-?\d+\.\d+$")


@dataclass(frozen=True)
class ToolChoice:
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


def _section_pattern(name: str) -> re.Pattern[str]:
    # Section labels are upper case, so the lookahead stops at the next label only.
    return re.compile(
        rf"(?:^|\n)[ \t]*(?i:{name})[ \t]*:[ \t]*(.*?)(?=\n[ \t]*[A-Z][A-Z_]*[ \t]*:|\Z)",
        re.DOTALL,
    )


def extract_section(text: str, names: tuple[str, ...] | str) -> str | None:
    if isinstance(names, str):
        names = (names,)
    for name in names:
        match = _section_pattern(name).search(text)
        if match:
            return match.group(1).strip()
    return None


def parse_value(raw: str) -> Any:
    value = raw.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return value[1:-1]
    if _INT_RE.match(value):
        return int(value)
    if _FLOAT_RE.match(value):
        return float(value)
    if value.lower() in ("true", "false"):
        return value.lower() == "true"
    return value


def parse_parameters(text: str) -> dict[str, Any]:
    stripped = text.strip()
    if stripped.startswith("{"):
        try:
            payload = json.loads(stripped)
        except json.JSONDecodeError:
            payload = None
        if isinstance(payload, dict):
            return payload
    return {key: parse_value(value) for key, value in _PAIR_RE.findall(stripped) if value.strip()}


def _from_payload(payload: dict[str, Any]) -> ToolChoice | None:
    name = payload.get("tool") or payload.get("name")
    arguments = payload.get("arguments") or payload.get("parameters") or {}
    if isinstance(name, str) and name.strip() and isinstance(arguments, dict):
        return ToolChoice(name=name.strip(), arguments=arguments)
    return None


def parse_tool_choice(text: str) -> ToolChoice | None:
    """Return the tool a reasoning step asks for, or ``None`` when it names none."""
    stripped = text.strip()
    if stripped.startswith("{"):
        try:
            payload = json.loads(stripped)
        except json.JSONDecodeError:
            payload = None
        if isinstance(payload, dict):
            return _from_payload(payload)
    section = extract_section(text, TOOL_SECTIONS)
    if not section:
        return None
    name = section.splitlines()[0].strip().strip("`\"'")
    if not name or name.lower() in NO_TOOL:
        return None
    parameters = extract_section(text, PARAMETER_SECTIONS)
    return ToolChoice(name=name, arguments=parse_parameters(parameters) if parameters else {})


def resolve_tool_choice(
    choice: ToolChoice, registry: ToolRegistry
) -> tuple[str | None, dict[str, Any], list[str]]:
    """Match a choice against the registry.

    Returns the registered tool name, the arguments with defaults applied and
    the validation problems; the name is ``None`` when no tool matches.
    """
    name = choice.name
    if not registry.has(name):
        lowered = name.lower()
        name = next((known for known in registry.names() if known.lower() == lowered), None)
    if name is None:
        return None, dict(choice.arguments), [f"Unknown tool: {choice.name}"]
    tool = registry.get(name)
    arguments = tool.prepare_parameters(choice.arguments)
    return name, arguments, tool.validate_parameters(arguments)
