from __future__ import annotations

import json
import logging

from agentpilot.monitoring import AgentMonitor, MetricsCollector
from agentpilot.trace import TraceRecorder
from agentpilot.util.logging import configure_logging, get_logger, redact


def test_metrics_counters_and_timers(tmp_path):
    metrics = MetricsCollector(workspace_dir=tmp_path, max_samples=2)
    assert metrics.inc("llm_calls") == 1
    assert metrics.inc("llm_calls", 2) == 3
    assert metrics.get("missing") == 0
    for value in (1.0, 2.0, 3.0):
        metrics.observe("tool.weather-service", value)
    with metrics.measure("reasoning"):
        pass
    snapshot = metrics.export_json()
    assert snapshot["counters"] == {"llm_calls": 3}
    assert snapshot["timers"]["tool.weather-service"]["count"] == 2
    assert snapshot["timers"]["tool.weather-service"]["total"] == 5.0
    files = list((tmp_path / "metrics").glob("*.jsonl"))
    assert len(files) == 1
    assert json.loads(files[0].read_text().splitlines()[0])["counters"] == {"llm_calls": 3}


def test_trace_recorder_redacts_and_writes(tmp_path):
    trace = TraceRecorder(trace_id="session-1", workspace_dir=str(tmp_path))
    trace.record_iteration(1, 0.0, "default")
    trace.record_tool_call("weather-service", {"location": "London", "token": "sk-secret123"})
    trace.record_reasoning(1, "Using Bearer abc.def to call the api")
    trace.record_checkpoint("checkpoint-1", "safety_concern", "high")
    path = trace.finalize({"status": "completed"})
    payload = json.loads(open(path, encoding="utf-8").read())
    assert path.endswith("traces/session-1.json")
    assert [event["type"] for event in payload["events"]] == [
        "iteration",
        "tool_call",
        "reasoning",
        "checkpoint",
    ]
    assert payload["events"][1]["payload"]["arguments"]["token"] == "[REDACTED]"
    assert payload["events"][2]["payload"]["content"] == "Using [REDACTED] to call the api"


def test_redact_explicit_secrets():
    assert redact("key=hunter2", extra_secrets=["hunter2", ""]) == "key=[REDACTED]"


def test_package_loggers_share_a_root():
    assert get_logger("agentpilot.controller").name == "agentpilot.controller"
    assert get_logger("plugins").name == "agentpilot.plugins"
    root = configure_logging("debug")
    assert root.level == logging.DEBUG
    assert configure_logging("nonsense").level == logging.INFO


def test_monitor_alerts_reach_every_callback():
    now = [1_000.0]
    monitor = AgentMonitor(clock=lambda: now[0])
    received = []

    def broken(alert):
        raise RuntimeError("pager offline")

    monitor.on_alert(broken)
    monitor.on_alert(received.append)
    monitor.start_session("s1", {"max_iterations": 4})
    query = monitor.start_query("s1", "weather in London " * 20, max_iterations=4)
    assert query.query.endswith("...")
    assert len(query.query) == 203

    monitor.record_iteration("s1", 4, 0.2, action="tool_call", tools_used=["weather-service"])
    monitor.record_tool_run("s1", "weather-service", False, duration_seconds=12.0, error="down")
    monitor.record_error("s1", "system_error", "disk full", phase="tool_execution")
    assert [alert.type for alert in received] == [
        "high_iteration_count",
        "low_confidence",
        "tool_execution_failure",
        "slow_tool_execution",
        "critical_error",
    ]
    assert received[-1].severity == "critical"

    now[0] += 250
    monitor.complete_query("s1", success=True, confidence=0.4)
    monitor.complete_query("s1", success=False, confidence=0.1)
    monitor.end_session("s1")
    assert {alert.type for alert in monitor.get_recent_alerts(2)} == {
        "long_processing_time",
        "low_final_confidence",
    }
    metrics = monitor.get_session_metrics("s1")
    assert metrics.successful_queries == 1
    assert metrics.total_iterations == 1
    assert metrics.total_tool_runs == 1
    assert metrics.total_errors == 1
    assert metrics.duration_seconds == 250
    assert len(metrics.alerts) == 7


def test_monitor_clears_old_sessions():
    now = [0.0]
    monitor = AgentMonitor(clock=lambda: now[0])
    monitor.start_session("old")
    now[0] = 100_000.0
    monitor.start_session("new")
    assert monitor.clear_old_sessions(max_age_seconds=24 * 60 * 60) == ["old"]
    assert monitor.sessions() == ["new"]
    assert monitor.get_session_metrics("old") is None
    assert monitor.start_query("old", "weather in London") is None
    monitor.record_iteration("old", 1, 0.9)
    assert monitor.get_global_metrics()["total_sessions"] == 1
