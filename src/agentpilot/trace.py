"""Trace recorder for agent sessions."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from agentpilot.util.logging import redact


@dataclass
class TraceRecorder:
    trace_id: str
    workspace_dir: str
    started_at: float = field(default_factory=time.time)
    events: list[dict[str, Any]] = field(default_factory=list)

    def record(self, event_type: str, payload: dict[str, Any]) -> None:
        self.events.append(
            {
                "type": event_type,
                "timestamp": time.time(),
                "payload": payload,
            }
        )

    def record_iteration(self, iteration: int, confidence: float, strategy: str) -> None:
        self.record(
            "iteration",
            {"iteration": iteration, "confidence": confidence, "strategy": strategy},
        )

    def record_reasoning(self, iteration: int, content: str) -> None:
        self.record("reasoning", {"iteration": iteration, "content": redact(content)})

    def record_tool_call(self, tool_name: str, arguments: dict[str, Any]) -> None:
        self.record(
            "tool_call",
            {"tool_name": tool_name, "arguments": json.loads(redact(json.dumps(arguments, default=str)))},
        )

    def record_tool_result(self, tool_name: str, success: bool, message: str, duration_ms: float) -> None:
        self.record(
            "tool_result",
            {
                "tool_name": tool_name,
                "success": success,
                "message": redact(message),
                "duration_ms": duration_ms,
            },
        )

    def record_observation(self, observation_type: str, content: str) -> None:
        self.record("observation", {"type": observation_type, "content": redact(content)})

    def record_checkpoint(self, checkpoint_id: str, reason: str, priority: str) -> None:
        self.record(
            "checkpoint",
            {"checkpoint_id": checkpoint_id, "reason": reason, "priority": priority},
        )

    def finalize(self, stats: dict[str, Any]) -> str:
        trace_dir = Path(self.workspace_dir) / "traces"
        trace_dir.mkdir(parents=True, exist_ok=True)
        trace_path = trace_dir / f"{self.trace_id}.json"
        payload = {
            "trace_id": self.trace_id,
            "started_at": self.started_at,
            "ended_at": time.time(),
            "stats": stats,
            "events": self.events,
        }
        trace_path.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")
        return str(trace_path)
