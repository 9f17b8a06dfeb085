"""Simulated flight search."""

from __future__ import annotations

import random
import re
from typing import Any

from agentpilot.tools.base import Tool, ToolParameter, ToolResult

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_AIRLINES = [
    "American Airlines",
    "Delta Air Lines",
    "United Airlines",
    "British Airways",
    "Lufthansa",
    "Air France",
    "Emirates",
]
_AIRCRAFT = ["Boeing 737", "Boeing 777", "Boeing 787", "Airbus A320", "Airbus A330"]
_AIRPORTS = {
    "nyc": {"code": "JFK", "city": "New York"},
    "new york": {"code": "JFK", "city": "New York"},
    "lax": {"code": "LAX", "city": "Los Angeles"},
    "los angeles": {"code": "LAX", "city": "Los Angeles"},
    "lhr": {"code": "LHR", "city": "London"},
    "london": {"code": "LHR", "city": "London"},
    "cdg": {"code": "CDG", "city": "Paris"},
    "paris": {"code": "CDG", "city": "Paris"},
    "nrt": {"code": "NRT", "city": "Tokyo"},
    "tokyo": {"code": "NRT", "city": "Tokyo"},
}
_CLASS_MULTIPLIER = {"economy": 1.0, "business": 2.5, "first": 4.0}


def normalize_airport(value: str) -> dict[str, str]:
    key = value.strip().lower()
    if key in _AIRPORTS:
        return dict(_AIRPORTS[key])
    return {"code": value.strip().upper()[:3], "city": value.strip().title()}


class FlightServiceTool(Tool):
    name = "flight-service"
    description = "Provides simulated flight search results for specified routes and dates"
    category = "external"
    parameters = [
        ToolParameter(name="from", type="string", required=True, description="Departure airport or city"),
        ToolParameter(name="to", type="string", required=True, description="Destination airport or city"),
        ToolParameter(name="date", type="string", required=True, description="Departure date YYYY-MM-DD"),
        ToolParameter(name="passengers", type="number", default=1, description="Number of passengers"),
        ToolParameter(name="class", type="string", default="economy", description="economy, business or first"),
    ]

    def execute(self, params: dict[str, Any]) -> ToolResult:
        prepared = self.prepare_parameters(params)
        if not _DATE_RE.match(prepared["date"]):
            return self.failure("Invalid departure date format. Use YYYY-MM-DD", error_name="ValidationError")
        travel_class = str(prepared.get("class", "economy")).lower()
        if travel_class not in _CLASS_MULTIPLIER:
            return self.failure(f"Unsupported travel class '{travel_class}'", error_name="ValidationError")
        origin = normalize_airport(prepared["from"])
        destination = normalize_airport(prepared["to"])
        passengers = int(prepared.get("passengers", 1))
        rng = random.Random(f"{origin['code']}-{destination['code']}-{prepared['date']}")
        flights = []
        for index in range(3):
            departure_hour = 6 + index * 5 + rng.randint(0, 2)
            price = round(rng.randint(150, 900) * _CLASS_MULTIPLIER[travel_class])
            flights.append(
                {
                    "flight_number": f"{origin['code'][:2]}{rng.randint(100, 9999)}",
                    "airline": rng.choice(_AIRLINES),
                    "aircraft": rng.choice(_AIRCRAFT),
                    "departure": f"{prepared['date']}T{departure_hour:02d}:00",
                    "duration_hours": rng.randint(1, 14),
                    "price_per_passenger": price,
                    "total_price": price * passengers,
                }
            )
        payload = {
            "route": f"{origin['code']} -> {destination['code']}",
            "from": origin,
            "to": destination,
            "date": prepared["date"],
            "passengers": passengers,
            "class": travel_class,
            "flights": flights,
        }
        return self.success(payload, f"Found {len(flights)} flights for {payload['route']}")
