from __future__ import annotations

import pytest

from agentpilot.observations import (
    Observation,
    ObservationGenerator,
    ObservationType,
    describe_data,
    performance_level,
)


def test_success_content_includes_small_payloads():
    generator = ObservationGenerator()
    number = generator.success("percentage-calculator", 42, iteration=2)
    assert number.content == "Tool 'percentage-calculator' executed successfully and returned number data: 42."
    assert number.iteration == 2
    listing = generator.success("flight-service", [1, 2, 3])
    assert listing.content.endswith("returned array data with 3 items.")
    empty = generator.success("noop")
    assert empty.content == "Tool 'noop' executed successfully."
    assert empty.ground_truth["data_available"] is False


def test_confidence_is_clamped_on_construction():
    assert Observation(type=ObservationType.PROGRESS, confidence=2.5).confidence == 1.0
    assert Observation(type=ObservationType.PROGRESS, confidence=-1).confidence == 0.0


def test_observations_are_immutable():
    observation = ObservationGenerator().progress("halfway", stage="search")
    with pytest.raises(Exception):
        observation.content = "changed"


def test_error_from_exception():
    observation = ObservationGenerator().error(ValueError("bad value"), context="parsing")
    assert observation.is_error
    assert observation.content == "Error occurred during parsing: bad value"
    assert observation.ground_truth["error_type"] == "ValueError"


def test_tool_failure_marks_tool_flag():
    observation = ObservationGenerator().tool_failure(
        "weather-service", "service down", tool_failed=False
    )
    assert observation.tool_name == "weather-service"
    assert observation.ground_truth["tool_failed"] is False


def test_state_change_records_transition():
    observation = ObservationGenerator().state_change("strategy", "default", "conservative", "recovery")
    assert observation.type == ObservationType.ENVIRONMENT
    assert observation.ground_truth["previous_state"] == "default"
    assert observation.ground_truth["new_state"] == "conservative"


@pytest.mark.parametrize(
    ("duration", "level"),
    [(50, "excellent"), (250, "good"), (1500, "acceptable"), (3000, "slow"), (9000, "very slow")],
)
def test_performance_levels(duration, level):
    assert performance_level(duration) == level


def test_describe_data():
    assert describe_data(None) == {"type": "none", "size": 0, "is_empty": True}
    assert describe_data({"a": 1})["type"] == "object"
    assert describe_data(True)["type"] == "boolean"
    assert describe_data("")["is_empty"] is True
