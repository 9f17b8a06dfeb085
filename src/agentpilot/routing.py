"""Rules-based tool routing and parameter extraction."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any, Iterable


@dataclass(frozen=True)
class RouteSuggestion:
    tool_name: str
    confidence: float
    reason: str
    parameters: dict[str, Any] = field(default_factory=dict)


_WEATHER_RE = re.compile(r"\b(weather|temperature|forecast)\b", re.IGNORECASE)
_LOCATION_RE = re.compile(
    r"\b(?:weather|temperature|forecast)\s+(?:in|for|at)\s+([^?.!]+)", re.IGNORECASE
)
_AREA_RE = re.compile(r"\barea\b", re.IGNORECASE)
_SHAPE_RE = re.compile(r"\b(triangle|rectangle|circle)\b", re.IGNORECASE)
_PERCENT_RE = re.compile(r"\bpercent(?:age)?\b|%", re.IGNORECASE)
_FLIGHT_RE = re.compile(r"\bflights?\b", re.IGNORECASE)
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")
_SIDE_RE = re.compile(r"side length of (\d+(?:\.\d+)?)", re.IGNORECASE)
_RADIUS_RE = re.compile(r"radius (?:of )?(\d+(?:\.\d+)?)", re.IGNORECASE)
_DIAMETER_RE = re.compile(r"diameter (?:of )?(\d+(?:\.\d+)?)", re.IGNORECASE)
_BY_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(?:by|x)\s*(\d+(?:\.\d+)?)", re.IGNORECASE)
_PERCENT_OF_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(?:%|percent)\s+of\s+(\d+(?:\.\d+)?)", re.IGNORECASE)
_WHAT_PERCENT_RE = re.compile(
    r"(\d+(?:\.\d+)?)\s+(?:is\s+)?what\s+percent(?:age)?\s+of\s+(\d+(?:\.\d+)?)"
    r"|what\s+percent(?:age)?\s+(?:is\s+)?(\d+(?:\.\d+)?)\s+of\s+(\d+(?:\.\d+)?)",
    re.IGNORECASE,
)
_CHANGE_RE = re.compile(
    r"from\s+(\d+(?:\.\d+)?)\s+to\s+(\d+(?:\.\d+)?)", re.IGNORECASE
)
_ROUTE_RE = re.compile(r"from\s+([a-z .]+?)\s+to\s+([a-z .]+?)(?:\s+on\b|\s+for\b|[?.!]|$)", re.IGNORECASE)
_DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2}")


def weather_parameters(query: str) -> dict[str, Any]:
    match = _LOCATION_RE.search(query)
    location = match.group(1).strip() if match else "New York"
    return {"location": location, "units": "celsius", "include_forecast": False}


def area_parameters(query: str) -> dict[str, Any]:
    shape_match = _SHAPE_RE.search(query)
    shape = shape_match.group(1).lower() if shape_match else "triangle"
    params: dict[str, Any] = {"shape": shape}
    if shape == "triangle":
        side = _SIDE_RE.search(query)
        pair = _BY_RE.search(query)
        if side:
            length = float(side.group(1))
            params.update(base=length, height=round(length * math.sqrt(3) / 2, 6))
        elif pair:
            params.update(base=float(pair.group(1)), height=float(pair.group(2)))
        else:
            params.update(base=5.0, height=4.0)
    elif shape == "rectangle":
        pair = _BY_RE.search(query)
        if pair:
            params.update(width=float(pair.group(1)), height=float(pair.group(2)))
        else:
            params.update(width=5.0, height=3.0)
    else:
        radius = _RADIUS_RE.search(query)
        diameter = _DIAMETER_RE.search(query)
        if radius:
            params["radius"] = float(radius.group(1))
        elif diameter:
            params["radius"] = float(diameter.group(1)) / 2
        else:
            params["radius"] = 1.0
    return params


def percentage_parameters(query: str) -> dict[str, Any]:
    match = _WHAT_PERCENT_RE.search(query)
    if match:
        value = match.group(1) or match.group(3)
        total = match.group(2) or match.group(4)
        return {"operation": "what_percentage", "value": float(value), "total": float(total)}
    match = _PERCENT_OF_RE.search(query)
    if match:
        return {
            "operation": "percentage_of",
            "percentage": float(match.group(1)),
            "value": float(match.group(2)),
        }
    match = _CHANGE_RE.search(query)
    if match:
        original, new = float(match.group(1)), float(match.group(2))
        operation = "percentage_decrease" if new < original else "percentage_increase"
        return {"operation": operation, "original_value": original, "new_value": new}
    numbers = [float(item) for item in _NUMBER_RE.findall(query)]
    if len(numbers) >= 2:
        return {"operation": "percentage_of", "percentage": numbers[0], "value": numbers[1]}
    return {"operation": "percentage_of", "percentage": 10.0, "value": 100.0}


def flight_parameters(query: str) -> dict[str, Any]:
    route = _ROUTE_RE.search(query)
    date = _DATE_RE.search(query)
    return {
        "from": route.group(1).strip() if route else "NYC",
        "to": route.group(2).strip() if route else "LAX",
        "date": date.group(0) if date else "2025-01-15",
        "passengers": 1,
    }


def tool_candidates(query: str) -> list[RouteSuggestion]:
    normalized = query.strip()
    if not normalized:
        return []
    candidates: list[RouteSuggestion] = []
    if _WEATHER_RE.search(normalized):
        candidates.append(
            RouteSuggestion(
                tool_name="weather-service",
                confidence=0.9,
                reason="Weather information requested",
                parameters=weather_parameters(normalized),
            )
        )
    if _AREA_RE.search(normalized) and _SHAPE_RE.search(normalized):
        candidates.append(
            RouteSuggestion(
                tool_name="area-calculator",
                confidence=0.85,
                reason="Geometric area requested",
                parameters=area_parameters(normalized),
            )
        )
    if _PERCENT_RE.search(normalized):
        candidates.append(
            RouteSuggestion(
                tool_name="percentage-calculator",
                confidence=0.8,
                reason="Percentage calculation requested",
                parameters=percentage_parameters(normalized),
            )
        )
    if _FLIGHT_RE.search(normalized):
        candidates.append(
            RouteSuggestion(
                tool_name="flight-service",
                confidence=0.75,
                reason="Flight search requested",
                parameters=flight_parameters(normalized),
            )
        )
    return candidates


def suggest_tool(
    query: str,
    available: Iterable[str] | None = None,
    exclude: Iterable[str] = (),
) -> RouteSuggestion | None:
    allowed = set(available) if available is not None else None
    excluded = set(exclude)
    candidates = [
        candidate
        for candidate in tool_candidates(query)
        if (allowed is None or candidate.tool_name in allowed)
        and candidate.tool_name not in excluded
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda candidate: candidate.confidence)
