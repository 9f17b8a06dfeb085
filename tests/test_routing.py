from __future__ import annotations

import pytest

from agentpilot.routing import suggest_tool, tool_candidates


def test_weather_location_is_extracted():
    suggestion = suggest_tool("What's the weather in Tokyo?")
    assert suggestion.tool_name == "weather-service"
    assert suggestion.parameters["location"] == "Tokyo"


def test_weather_defaults_location():
    assert suggest_tool("weather please").parameters["location"] == "New York"


@pytest.mark.parametrize(
    ("query", "expected"),
    [
        ("area of a triangle with side length of 4", {"shape": "triangle", "base": 4.0, "height": 3.464102}),
        ("area of a rectangle 3 by 4", {"shape": "rectangle", "width": 3.0, "height": 4.0}),
        ("area of a circle with diameter 10", {"shape": "circle", "radius": 5.0}),
    ],
)
def test_area_parameters(query, expected):
    suggestion = suggest_tool(query)
    assert suggestion.tool_name == "area-calculator"
    assert suggestion.parameters == expected


@pytest.mark.parametrize(
    ("query", "expected"),
    [
        ("What percentage is 25 of 200?", {"operation": "what_percentage", "value": 25.0, "total": 200.0}),
        ("What is 15% of 80?", {"operation": "percentage_of", "percentage": 15.0, "value": 80.0}),
        (
            "percentage increase from 50 to 75",
            {"operation": "percentage_increase", "original_value": 50.0, "new_value": 75.0},
        ),
        (
            "percent decrease from 80 to 60",
            {"operation": "percentage_decrease", "original_value": 80.0, "new_value": 60.0},
        ),
    ],
)
def test_percentage_parameters(query, expected):
    suggestion = suggest_tool(query)
    assert suggestion.tool_name == "percentage-calculator"
    assert suggestion.parameters == expected


def test_flight_parameters():
    suggestion = suggest_tool("Find flights from London to Paris on 2025-03-01")
    assert suggestion.tool_name == "flight-service"
    assert suggestion.parameters == {
        "from": "London",
        "to": "Paris",
        "date": "2025-03-01",
        "passengers": 1,
    }


def test_highest_confidence_wins_and_exclusions_apply():
    query = "weather and flights from London to Paris"
    assert [item.tool_name for item in tool_candidates(query)] == ["weather-service", "flight-service"]
    assert suggest_tool(query).tool_name == "weather-service"
    assert suggest_tool(query, exclude=["weather-service"]).tool_name == "flight-service"
    assert suggest_tool(query, available=["area-calculator"]) is None


def test_no_match():
    assert suggest_tool("tell me a joke") is None
    assert tool_candidates("   ") == []
