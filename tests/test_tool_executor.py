from __future__ import annotations

import asyncio
import time
from typing import Any

from agentpilot.monitoring import MetricsCollector
from agentpilot.observations import ObservationType
from agentpilot.tools.base import Tool, ToolParameter, ToolResult
from agentpilot.tools.executor import ToolExecutor
from agentpilot.tools.registry import ToolRegistry


class EchoTool(Tool):
    name = "echo"
    description = "Echoes its input"
    parameters = [
        ToolParameter(name="text", type="string", required=True),
        ToolParameter(name="times", type="number", default=1),
    ]

    def execute(self, params: dict[str, Any]) -> ToolResult:
        return self.success(params["text"] * int(params["times"]), "echoed")


class SlowTool(Tool):
    name = "slow"
    description = "Sleeps before answering"

    def execute(self, params: dict[str, Any]) -> ToolResult:
        time.sleep(0.5)
        return self.success("late")


class AsyncTool(Tool):
    name = "async"
    description = "Answers from a coroutine"

    async def execute(self, params: dict[str, Any]) -> ToolResult:
        await asyncio.sleep(0)
        return ToolResult(success=True, data=[1, 2, 3], message="async done")


class OfflineTool(Tool):
    name = "offline"
    description = "Raises a connection error"

    def execute(self, params: dict[str, Any]) -> ToolResult:
        raise ConnectionError("host unreachable")


class BrokenTool(Tool):
    name = "broken"
    description = "Returns something that is not a result"

    def execute(self, params: dict[str, Any]) -> ToolResult:
        return "oops"  # type: ignore[return-value]


def make_executor(**kwargs: Any) -> ToolExecutor:
    registry = ToolRegistry()
    registry.register_all([EchoTool(), SlowTool(), AsyncTool(), OfflineTool(), BrokenTool()])
    return ToolExecutor(registry, **kwargs)


def test_successful_execution_produces_feedback():
    metrics = MetricsCollector()
    executor = make_executor(metrics=metrics)
    execution = executor.execute("echo", {"text": "hi", "times": 2}, iteration=3)
    assert execution.success
    assert execution.result.data == "hihi"
    assert execution.parameters == {"text": "hi", "times": 2}
    types = [obs.type for obs in execution.feedback.observations]
    assert types == [ObservationType.SUCCESS, ObservationType.DATA, ObservationType.PERFORMANCE]
    assert all(obs.iteration == 3 for obs in execution.feedback.observations)
    assert execution.feedback.ground_truth["has_data"] is True
    assert execution.feedback.ground_truth["data_type"] == "string"
    assert metrics.get("tool_successes") == 1


def test_defaults_are_applied():
    executor = make_executor()
    execution = executor.execute("echo", {"text": "x"})
    assert execution.parameters["times"] == 1


def test_validation_failure_is_not_a_tool_failure():
    executor = make_executor()
    execution = executor.execute("echo", {"times": "many"})
    assert not execution.success
    assert execution.error_name == "ValidationError"
    assert "Missing required parameter: text" in execution.result.message
    failure = execution.feedback.observations[0]
    assert failure.type == ObservationType.ERROR
    assert failure.ground_truth["tool_failed"] is False


def test_unknown_tool_is_reported_not_raised():
    executor = make_executor()
    execution = executor.execute("missing")
    assert not execution.success
    assert execution.error_name == "ToolNotFoundError"


def test_timeout_becomes_failed_result():
    executor = make_executor(timeout_seconds=0.05)
    execution = executor.execute("slow")
    assert not execution.success
    assert execution.error_name == "TimeoutError"
    assert "timed out" in execution.result.message
    executor.shutdown()


def test_async_tools_are_awaited():
    executor = make_executor()
    execution = executor.execute("async")
    assert execution.success
    assert execution.result.data == [1, 2, 3]


def test_connection_errors_are_network_failures():
    executor = make_executor()
    execution = executor.execute("offline")
    assert execution.error_name == "NetworkError"
    assert execution.tool_failed is False
    assert execution.feedback.observations[1].type == ObservationType.ENVIRONMENT


def test_invalid_results_are_failures():
    executor = make_executor()
    execution = executor.execute("broken")
    assert not execution.success
    assert execution.result.error == "invalid_result"


def test_history_is_capped_and_stats_tracked():
    executor = make_executor(history_limit=2)
    executor.execute("echo", {"text": "a"})
    executor.execute("echo", {"text": "b"})
    executor.execute("echo", {})
    assert len(executor.history()) == 2
    assert [item.parameters.get("text") for item in executor.recent_executions(1)] == [None]
    stats = executor.tool_stats("echo")
    assert stats.executions == 2
    assert stats.successes == 1
    assert stats.failures == 1
    assert executor.tool_stats("async").executions == 0
