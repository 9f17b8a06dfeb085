from __future__ import annotations

import pytest

from agentpilot.tools.builtins.area import AreaCalculatorTool
from agentpilot.tools.builtins.flight import FlightServiceTool, normalize_airport
from agentpilot.tools.builtins.percentage import PercentageCalculatorTool
from agentpilot.tools.builtins.weather import WeatherServiceTool


def test_weather_known_city():
    result = WeatherServiceTool().execute({"location": "London"})
    assert result.success
    assert result.data["temperature"] == 18
    assert result.data["condition"] == "Rainy"
    assert result.message == "Successfully retrieved weather data for London"


def test_weather_units_and_forecast():
    result = WeatherServiceTool().execute(
        {"location": "London", "units": "fahrenheit", "include_forecast": True}
    )
    assert result.data["temperature"] == 64
    assert len(result.data["forecast"]) == 3


def test_weather_unknown_city_is_deterministic():
    tool = WeatherServiceTool()
    first = tool.execute({"location": "Lisbon"}).data
    second = tool.execute({"location": "lisbon"}).data
    assert (first["temperature"], first["condition"]) == (second["temperature"], second["condition"])


def test_weather_rejects_bad_units():
    result = WeatherServiceTool().execute({"location": "London", "units": "rankine"})
    assert not result.success
    assert result.error_name == "ValidationError"


@pytest.mark.parametrize(
    ("params", "area"),
    [
        ({"shape": "triangle", "base": 6, "height": 4}, 12.0),
        ({"shape": "rectangle", "width": 3, "height": 4}, 12.0),
        ({"shape": "circle", "radius": 1}, 3.14),
    ],
)
def test_area_shapes(params, area):
    result = AreaCalculatorTool().execute(params)
    assert result.success
    assert result.data["area"] == area


def test_area_validation():
    tool = AreaCalculatorTool()
    assert tool.execute({"shape": "hexagon"}).error_name == "ValidationError"
    assert tool.execute({"shape": "circle"}).message == "Circle calculation requires radius"
    assert tool.execute({"shape": "circle", "radius": -1}).message == "Radius must be a positive number"


@pytest.mark.parametrize(
    ("params", "expected"),
    [
        ({"operation": "what_percentage", "value": 25, "total": 200}, 12.5),
        ({"operation": "percentage_of", "percentage": 15, "value": 80}, 12.0),
        ({"operation": "percentage_increase", "original_value": 50, "new_value": 75}, 50.0),
        ({"operation": "percentage_decrease", "original_value": 80, "new_value": 60}, 25.0),
    ],
)
def test_percentage_operations(params, expected):
    result = PercentageCalculatorTool().execute(params)
    assert result.success
    assert result.data["result"] == expected


def test_percentage_validation():
    tool = PercentageCalculatorTool()
    assert not tool.execute({"operation": "what_percentage", "value": 1, "total": 0}).success
    assert tool.execute({"operation": "percentage_of"}).message == "Missing parameters: percentage, value"
    assert tool.execute({"operation": "divide"}).error_name == "ValidationError"


def test_flight_search():
    tool = FlightServiceTool()
    params = {"from": "London", "to": "paris", "date": "2025-03-01", "passengers": 2, "class": "business"}
    result = tool.execute(params)
    assert result.success
    assert result.data["route"] == "LHR -> CDG"
    assert len(result.data["flights"]) == 3
    flight = result.data["flights"][0]
    assert flight["total_price"] == flight["price_per_passenger"] * 2
    assert tool.execute(params).data == result.data


def test_flight_validation():
    tool = FlightServiceTool()
    assert not tool.execute({"from": "NYC", "to": "LAX", "date": "March 1"}).success
    assert not tool.execute({"from": "NYC", "to": "LAX", "date": "2025-03-01", "class": "cargo"}).success
    assert normalize_airport("Berlin") == {"code": "BER", "city": "Berlin"}
