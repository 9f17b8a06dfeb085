from __future__ import annotations

import pytest

from agentpilot.failures import CheckpointError, CheckpointNotFoundError
from agentpilot.interaction import (
    CheckpointStatus,
    Guidance,
    HumanInput,
    HumanInteractionManager,
    checkpoint_priority,
)
from agentpilot.state import StateStore


def make_store(query: str = "weather in London") -> StateStore:
    store = StateStore(query, max_iterations=4, clock=lambda: 0.0)
    store.start()
    store.next_iteration()
    return store


def make_manager(**kwargs) -> HumanInteractionManager:
    return HumanInteractionManager(clock=lambda: 1.0, **kwargs)


def test_plain_query_has_no_blocker():
    assert not make_manager().detect_blocker(make_store().state).has_blocker


def test_safety_outranks_repeated_failures():
    store = make_store("delete the admin password")
    store.add_error("tool_error", "first")
    store.add_error("tool_error", "second")
    detection = make_manager().detect_blocker(store.state)
    assert detection.has_blocker
    assert detection.blocker.type == "safety_constraints"
    assert {blocker.type for blocker in detection.all_blockers} == {
        "safety_constraints",
        "repeated_failures",
    }
    assert detection.recommended_action.urgency == "critical"
    assert detection.blocker_id


def test_ignored_blocker_types_are_skipped():
    store = make_store("delete the admin password")
    store.add_error("tool_error", "first")
    store.add_error("tool_error", "second")
    detection = make_manager().detect_blocker(store.state, ignored=["safety_constraints"])
    assert detection.blocker.type == "repeated_failures"
    assert detection.blocker.description == "Repeated tool_error errors (2 times)"


def test_ambiguous_query_is_a_blocker():
    detection = make_manager().detect_blocker(make_store("maybe check London or Paris").state)
    assert detection.blocker.type == "ambiguous_requirements"
    assert detection.recommended_action.action == "request_clarification"


def test_resource_exhaustion():
    store = make_store()
    for _ in range(17):
        store.record_llm_call()
    detection = make_manager(max_llm_calls=20).detect_blocker(store.state)
    assert detection.blocker.type == "resource_exhaustion"


def test_disabled_detection():
    manager = make_manager(blocker_detection_enabled=False)
    assert not manager.detect_blocker(make_store("delete everything").state).has_blocker


def test_checkpoint_lifecycle():
    manager = make_manager()
    state = make_store().state
    checkpoint = manager.create_checkpoint("low_confidence", state)
    assert checkpoint.priority == "medium"
    assert checkpoint.state_snapshot["current_iteration"] == 1
    assert manager.pending_checkpoints(state.session_id) == [checkpoint]
    response = HumanInput(decision="continue", guidance=Guidance(confidence=0.6))
    resolved = manager.resolve_checkpoint(checkpoint.checkpoint_id, response)
    assert resolved.status == CheckpointStatus.RESOLVED
    assert resolved.human_response.guidance.confidence == 0.6
    assert resolved.resolution_time == 1.0
    assert manager.pending_checkpoints() == []
    assert manager.checkpoint_history(state.session_id) == [resolved]


def test_double_resolution_is_an_error():
    manager = make_manager()
    checkpoint = manager.create_checkpoint("safety_concern", make_store().state)
    manager.resolve_checkpoint(checkpoint.checkpoint_id)
    with pytest.raises(CheckpointError):
        manager.resolve_checkpoint(checkpoint.checkpoint_id)
    with pytest.raises(CheckpointError):
        manager.skip_checkpoint(checkpoint.checkpoint_id)


def test_unknown_checkpoint():
    manager = make_manager()
    with pytest.raises(CheckpointNotFoundError):
        manager.resolve_checkpoint("checkpoint-missing")
    with pytest.raises(CheckpointNotFoundError):
        manager.get_checkpoint("checkpoint-missing")


def test_resolving_blocker_checkpoint_resolves_blocker():
    manager = make_manager()
    state = make_store("delete the admin password").state
    detection = manager.detect_blocker(state)
    assert len(manager.active_blockers(state.session_id)) == 1
    checkpoint = manager.create_checkpoint(
        detection.blocker.type,
        state,
        priority=detection.blocker.severity,
        context={"source": "blocker", "blocker_id": detection.blocker_id},
    )
    manager.resolve_checkpoint(checkpoint.checkpoint_id)
    assert manager.active_blockers(state.session_id) == []
    assert manager.blockers(state.session_id)[0].status == "resolved"


def test_human_input_validation():
    with pytest.raises(ValueError):
        Guidance(confidence=1.5)
    with pytest.raises(ValueError):
        HumanInput(decision="maybe")


@pytest.mark.parametrize(
    ("reason", "priority"),
    [("safety_concern", "high"), ("stagnation", "medium"), ("manual_mode", "low")],
)
def test_checkpoint_priority(reason, priority):
    assert checkpoint_priority(reason) == priority


def test_progress_communication():
    manager = make_manager()
    store = make_store()
    store.set_confidence(0.25)
    store.add_reasoning("Checking the forecast")
    store.add_action("tool_call", "Use weather-service", success=False, tool_name="weather-service")
    store.add_error("tool_error", "down")
    communication = manager.create_progress_communication(store.state, needs_input=True)
    assert communication.summary.splitlines() == [
        "Progress: Step 1/4 (25% complete)",
        "Confidence: 25.0%",
        "Errors encountered: 1",
        "Current focus: Checking the forecast",
    ]
    assert communication.actions[0]["success"] is False
    assert communication.next_steps == [
        "Continue reasoning and analysis",
        "Work to increase confidence in solution",
        "Address any remaining errors",
        "Awaiting human input or guidance",
    ]
    assert communication.status["awaiting_human_input"] is False


def test_communication_history_is_bounded():
    manager = make_manager(communication_limit=3, communication_keep=2)
    state = make_store().state
    for _ in range(4):
        manager.create_progress_communication(state)
    assert len(manager.communication_history(state.session_id)) == 2
    assert manager.communication_history("other-session") == []
