"""Tool execution with timeouts and environmental feedback."""

from __future__ import annotations

import asyncio
import inspect
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from agentpilot.monitoring import MetricsCollector
from agentpilot.observations import Observation, ObservationGenerator, describe_data
from agentpilot.tools.base import ToolResult, apply_defaults, check_parameters
from agentpilot.tools.registry import ToolRegistry
from agentpilot.util.logging import get_logger, redact

logger = get_logger(__name__)

_NETWORK_ERRORS = (ConnectionError, TimeoutError)


class EnvironmentalFeedback(BaseModel):
    tool_name: str
    success: bool
    ground_truth: dict[str, Any] = Field(default_factory=dict)
    observations: list[Observation] = Field(default_factory=list)
    timestamp: float = Field(default_factory=time.time)


class ToolExecution(BaseModel):
    execution_id: str
    tool_name: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    result: ToolResult
    duration_ms: float = 0.0
    error_name: str | None = None
    tool_failed: bool = False
    feedback: EnvironmentalFeedback
    timestamp: float = Field(default_factory=time.time)

    @property
    def success(self) -> bool:
        return self.result.success


class ToolStats(BaseModel):
    executions: int = 0
    successes: int = 0
    failures: int = 0
    average_duration_ms: float = 0.0


def _run_tool(tool: Any, params: dict[str, Any]) -> Any:
    result = tool.execute(params)
    if inspect.isawaitable(result):
        return asyncio.run(_await(result))
    return result


async def _await(awaitable: Any) -> Any:
    return await awaitable


class ToolExecutor:
    """Run registered tools and turn every outcome into environmental feedback.

    A timed-out tool keeps running on its worker thread; its late result is
    discarded.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        timeout_seconds: float = 30.0,
        history_limit: int = 100,
        observations: ObservationGenerator | None = None,
        metrics: MetricsCollector | None = None,
        max_workers: int = 4,
    ) -> None:
        self.registry = registry
        self.timeout_seconds = timeout_seconds
        self.history_limit = history_limit
        self.observations = observations or ObservationGenerator()
        self.metrics = metrics
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="tool")
        self._history: list[ToolExecution] = []
        self._lock = threading.Lock()

    def execute(
        self,
        tool_name: str,
        params: dict[str, Any] | None = None,
        timeout_seconds: float | None = None,
        iteration: int | None = None,
    ) -> ToolExecution:
        params = dict(params or {})
        started = time.perf_counter()
        tool = self.registry.get(tool_name)
        if tool is None:
            execution = self._finish(
                tool_name,
                params,
                ToolResult(
                    success=False,
                    message=f"Tool '{tool_name}' not found",
                    error="not_found",
                ),
                started,
                error_name="ToolNotFoundError",
                tool_failed=True,
                iteration=iteration,
            )
            return execution
        declared = self.registry.parameters(tool_name)
        problems = check_parameters(declared, params)
        if problems:
            return self._finish(
                tool_name,
                params,
                ToolResult(
                    success=False,
                    message="Parameter validation failed: " + "; ".join(problems),
                    error="; ".join(problems),
                    error_name="ValidationError",
                ),
                started,
                error_name="ValidationError",
                tool_failed=False,
                iteration=iteration,
            )
        prepared = apply_defaults(declared, params)
        timeout = self.timeout_seconds if timeout_seconds is None else timeout_seconds
        logger.info("Executing tool %s params=%s", tool_name, redact(str(prepared)))
        future = self._pool.submit(_run_tool, tool, prepared)
        try:
            raw = future.result(timeout=timeout)
        except FutureTimeoutError:
            future.cancel()
            return self._finish(
                tool_name,
                prepared,
                ToolResult(
                    success=False,
                    message=f"Tool '{tool_name}' timed out after {timeout}s",
                    error="timeout",
                    error_name="TimeoutError",
                ),
                started,
                error_name="TimeoutError",
                tool_failed=False,
                iteration=iteration,
            )
        except Exception as exc:
            network = isinstance(exc, _NETWORK_ERRORS)
            error_name = "NetworkError" if network else type(exc).__name__
            return self._finish(
                tool_name,
                prepared,
                ToolResult(
                    success=False,
                    message=f"Tool '{tool_name}' raised {type(exc).__name__}: {exc}",
                    error=str(exc),
                    error_name=error_name,
                ),
                started,
                error_name=error_name,
                tool_failed=not network,
                iteration=iteration,
            )
        result = self._normalize(tool_name, raw)
        return self._finish(
            tool_name,
            prepared,
            result,
            started,
            error_name=None if result.success else result.error_name,
            tool_failed=not result.success,
            iteration=iteration,
        )

    def _normalize(self, tool_name: str, raw: Any) -> ToolResult:
        if isinstance(raw, ToolResult):
            return raw
        if isinstance(raw, dict):
            try:
                return ToolResult.model_validate(raw)
            except ValidationError:
                pass
        logger.warning("Tool %s returned an invalid result: %r", tool_name, raw)
        return ToolResult(
            success=False,
            message=f"Tool '{tool_name}' returned an invalid result",
            error="invalid_result",
        )

    def _finish(
        self,
        tool_name: str,
        params: dict[str, Any],
        result: ToolResult,
        started: float,
        *,
        error_name: str | None,
        tool_failed: bool,
        iteration: int | None,
    ) -> ToolExecution:
        duration_ms = (time.perf_counter() - started) * 1000
        feedback = self._feedback(
            tool_name, result, duration_ms, error_name, tool_failed, iteration
        )
        execution = ToolExecution(
            execution_id=f"exec-{uuid.uuid4().hex[:12]}",
            tool_name=tool_name,
            parameters=params,
            result=result,
            duration_ms=duration_ms,
            error_name=error_name,
            tool_failed=tool_failed,
            feedback=feedback,
        )
        with self._lock:
            self._history.append(execution)
            if len(self._history) > self.history_limit:
                del self._history[: len(self._history) - self.history_limit]
        if self.metrics is not None:
            self.metrics.inc("tool_executions")
            self.metrics.inc("tool_successes" if result.success else "tool_failures")
            self.metrics.observe(f"tool.{tool_name}", duration_ms / 1000)
        if result.success:
            logger.info("Tool %s succeeded in %.1fms", tool_name, duration_ms)
        else:
            logger.warning("Tool %s failed in %.1fms: %s", tool_name, duration_ms, result.message)
        return execution

    def _feedback(
        self,
        tool_name: str,
        result: ToolResult,
        duration_ms: float,
        error_name: str | None,
        tool_failed: bool,
        iteration: int | None,
    ) -> EnvironmentalFeedback:
        info = describe_data(result.data)
        ground_truth = {
            "success": result.success,
            "has_data": not info["is_empty"],
            "data_type": info["type"],
            "message": result.message,
            "tool_name": tool_name,
        }
        generator = self.observations
        if result.success:
            observations = [
                generator.success(
                    tool_name, result.data, result.message, duration_ms, iteration=iteration
                )
            ]
            if not info["is_empty"]:
                observations.append(generator.data(result.data, tool_name, iteration=iteration))
            observations.append(
                generator.performance(duration_ms, f"Tool '{tool_name}'", iteration=iteration)
            )
        else:
            ground_truth["error"] = result.error
            ground_truth["error_name"] = error_name
            observations = [
                generator.tool_failure(
                    tool_name,
                    result.message,
                    error_name=error_name,
                    tool_failed=tool_failed,
                    iteration=iteration,
                ),
                generator.environment(
                    "tool_error",
                    iteration=iteration,
                    tool_name=tool_name,
                    error_name=error_name,
                ),
            ]
        return EnvironmentalFeedback(
            tool_name=tool_name,
            success=result.success,
            ground_truth=ground_truth,
            observations=observations,
        )

    def history(self) -> list[ToolExecution]:
        with self._lock:
            return list(self._history)

    def recent_executions(self, limit: int = 10) -> list[ToolExecution]:
        with self._lock:
            return list(self._history[-limit:])

    def tool_stats(self, tool_name: str) -> ToolStats:
        executions = [item for item in self.history() if item.tool_name == tool_name]
        if not executions:
            return ToolStats()
        successes = sum(1 for item in executions if item.success)
        return ToolStats(
            executions=len(executions),
            successes=successes,
            failures=len(executions) - successes,
            average_duration_ms=sum(item.duration_ms for item in executions) / len(executions),
        )

    def shutdown(self) -> None:
        self._pool.shutdown(wait=False, cancel_futures=True)
