"""Simulated weather lookup."""

from __future__ import annotations

import random
import time
from datetime import date, timedelta
from typing import Any

from agentpilot.tools.base import Tool, ToolParameter, ToolResult

_KNOWN = {
    "new york": ({"celsius": 22, "fahrenheit": 72, "kelvin": 295}, "Partly Cloudy", 65, 12),
    "london": ({"celsius": 18, "fahrenheit": 64, "kelvin": 291}, "Rainy", 80, 8),
    "tokyo": ({"celsius": 25, "fahrenheit": 77, "kelvin": 298}, "Sunny", 55, 5),
    "sydney": ({"celsius": 20, "fahrenheit": 68, "kelvin": 293}, "Cloudy", 70, 15),
    "paris": ({"celsius": 16, "fahrenheit": 61, "kelvin": 289}, "Overcast", 75, 10),
}
_CONDITIONS = ["Sunny", "Partly Cloudy", "Cloudy", "Overcast", "Rainy", "Stormy", "Snowy"]
_UNITS = {"celsius", "fahrenheit", "kelvin"}


def _convert(celsius: float, units: str) -> int:
    if units == "fahrenheit":
        return round(celsius * 9 / 5 + 32)
    if units == "kelvin":
        return round(celsius + 273.15)
    return round(celsius)


class WeatherServiceTool(Tool):
    name = "weather-service"
    description = "Provides simulated weather information for specified locations"
    category = "external"
    parameters = [
        ToolParameter(name="location", type="string", required=True, description="City to get weather for"),
        ToolParameter(name="units", type="string", default="celsius", description="celsius, fahrenheit or kelvin"),
        ToolParameter(name="include_forecast", type="boolean", default=False, description="Include a 3-day forecast"),
    ]

    def __init__(self, delay_seconds: float = 0.0) -> None:
        self.delay_seconds = delay_seconds

    def execute(self, params: dict[str, Any]) -> ToolResult:
        prepared = self.prepare_parameters(params)
        location = prepared["location"].strip()
        units = str(prepared.get("units", "celsius")).lower()
        if not location:
            return self.failure("Location must not be empty", error_name="ValidationError")
        if units not in _UNITS:
            return self.failure(f"Unsupported units '{units}'", error_name="ValidationError")
        if self.delay_seconds:
            time.sleep(self.delay_seconds)
        key = location.lower().split(",")[0].strip()
        rng = random.Random(key)
        known = _KNOWN.get(key)
        if known is not None:
            temperatures, condition, humidity, wind_speed = known
            temperature = temperatures[units]
        else:
            temperature = _convert(rng.randint(5, 35), units)
            condition = rng.choice(_CONDITIONS)
            humidity = rng.randint(40, 80)
            wind_speed = rng.randint(2, 22)
        payload: dict[str, Any] = {
            "location": location,
            "temperature": temperature,
            "condition": condition,
            "humidity": humidity,
            "wind_speed": wind_speed,
            "units": units,
            "source": "Mock Weather Service",
        }
        if prepared.get("include_forecast"):
            today = date.today()
            payload["forecast"] = [
                {
                    "date": (today + timedelta(days=offset)).isoformat(),
                    "high": temperature + rng.randint(0, 4),
                    "low": temperature - rng.randint(0, 4),
                    "condition": rng.choice(_CONDITIONS),
                }
                for offset in range(1, 4)
            ]
        return self.success(payload, f"Successfully retrieved weather data for {location}")
