"""Thread-safe metrics and session monitoring shared across sessions."""

from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterator, Literal

from pydantic import BaseModel, Field

from agentpilot.util.logging import get_logger, redact

logger = get_logger(__name__)

AlertSeverity = Literal["warning", "error", "critical"]
CRITICAL_ERROR_TYPES = frozenset({"critical_error", "system_error"})


@dataclass
class MetricsCollector:
    workspace_dir: Path | None = None
    counters: dict[str, int] = field(default_factory=dict)
    timers: dict[str, list[float]] = field(default_factory=dict)
    max_samples: int = 1000
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def inc(self, name: str, n: int = 1) -> int:
        with self._lock:
            value = self.counters.get(name, 0) + n
            self.counters[name] = value
            return value

    def get(self, name: str) -> int:
        with self._lock:
            return self.counters.get(name, 0)

    def observe(self, name: str, seconds: float) -> None:
        with self._lock:
            samples = self.timers.setdefault(name, [])
            samples.append(seconds)
            if len(samples) > self.max_samples:
                del samples[: len(samples) - self.max_samples]

    @contextmanager
    def measure(self, name: str) -> Iterator[None]:
        start = time.perf_counter()
        try:
            yield
        finally:
            self.observe(name, time.perf_counter() - start)

    def snapshot(self) -> dict[str, object]:
        with self._lock:
            timers = {
                key: {
                    "count": len(values),
                    "total": sum(values),
                    "average": sum(values) / len(values) if values else 0.0,
                }
                for key, values in self.timers.items()
            }
            return {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "counters": dict(self.counters),
                "timers": timers,
            }

    def export_json(self) -> dict[str, object]:
        payload = self.snapshot()
        if self.workspace_dir:
            metrics_dir = Path(self.workspace_dir) / "metrics"
            metrics_dir.mkdir(parents=True, exist_ok=True)
            file_path = metrics_dir / f"{datetime.now(timezone.utc).date()}.jsonl"
            with file_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(payload, ensure_ascii=False) + "\n")
        return payload


class MonitorThresholds(BaseModel):
    max_processing_seconds: float = 300.0
    max_iterations_per_query: int = 10
    max_errors_per_session: int = 5
    min_success_rate: float = 0.8
    slow_tool_seconds: float = 10.0
    low_confidence: float = 0.3
    low_final_confidence: float = 0.5


class Alert(BaseModel):
    alert_id: str
    type: str
    severity: AlertSeverity
    message: str
    session_id: str
    query_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: float


class IterationRecord(BaseModel):
    iteration: int
    confidence: float = 0.0
    action: str | None = None
    tools_used: list[str] = Field(default_factory=list)
    timestamp: float


class ToolRunRecord(BaseModel):
    tool_name: str
    success: bool
    duration_seconds: float = 0.0
    error: str | None = None
    timestamp: float


class ErrorRecord(BaseModel):
    type: str
    message: str
    phase: str = "unknown"
    iteration: int | None = None
    timestamp: float


class QueryRecord(BaseModel):
    query_id: str
    query: str
    status: str = "processing"
    start_time: float
    end_time: float | None = None
    iterations: list[IterationRecord] = Field(default_factory=list)
    tool_runs: list[ToolRunRecord] = Field(default_factory=list)
    errors: list[ErrorRecord] = Field(default_factory=list)
    max_iterations: int | None = None
    confidence: float = 0.0
    success: bool = False

    @property
    def processing_seconds(self) -> float:
        return (self.end_time or self.start_time) - self.start_time


class SessionRecord(BaseModel):
    session_id: str
    status: str = "active"
    start_time: float
    end_time: float | None = None
    config: dict[str, Any] = Field(default_factory=dict)
    queries: list[QueryRecord] = Field(default_factory=list)
    alerts: list[Alert] = Field(default_factory=list)

    def query(self, query_id: str | None = None) -> QueryRecord | None:
        if query_id is None:
            return self.queries[-1] if self.queries else None
        return next((item for item in self.queries if item.query_id == query_id), None)


class SessionMetrics(BaseModel):
    session_id: str
    status: str
    duration_seconds: float
    total_queries: int
    successful_queries: int
    failed_queries: int
    total_iterations: int
    total_tool_runs: int
    total_errors: int
    alerts: list[Alert] = Field(default_factory=list)


AlertCallback = Callable[[Alert], None]


class AgentMonitor:
    """Per-session and per-query records with threshold alerts.

    Records are keyed by session id; a query id defaults to the session id
    because the controller runs one query per session. Alert callbacks run
    synchronously; a failing callback is logged and the others still run.
    """

    def __init__(
        self,
        thresholds: MonitorThresholds | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.thresholds = thresholds or MonitorThresholds()
        self._clock = clock
        self._sessions: dict[str, SessionRecord] = {}
        self._callbacks: list[AlertCallback] = []
        self._lock = threading.RLock()

    def on_alert(self, callback: AlertCallback) -> None:
        self._callbacks.append(callback)

    # Recording

    def start_session(self, session_id: str, config: dict[str, Any] | None = None) -> SessionRecord:
        record = SessionRecord(session_id=session_id, start_time=self._clock(), config=dict(config or {}))
        with self._lock:
            self._sessions[session_id] = record
        logger.info("Monitoring session %s", session_id)
        return record

    def start_query(
        self,
        session_id: str,
        query: str,
        query_id: str | None = None,
        max_iterations: int | None = None,
    ) -> QueryRecord | None:
        text = query if len(query) <= 200 else f"{query[:200]}..."
        record = QueryRecord(
            query_id=query_id or session_id,
            query=redact(text),
            start_time=self._clock(),
            max_iterations=max_iterations,
        )
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                logger.warning("Query started for unknown session %s", session_id)
                return None
            session.queries.append(record)
        return record

    def record_iteration(
        self,
        session_id: str,
        iteration: int,
        confidence: float,
        action: str | None = None,
        tools_used: list[str] | None = None,
        query_id: str | None = None,
    ) -> None:
        alerts: list[Alert] = []
        with self._lock:
            query = self._query(session_id, query_id)
            if query is None:
                return
            query.iterations.append(
                IterationRecord(
                    iteration=iteration,
                    confidence=confidence,
                    action=action,
                    tools_used=list(tools_used or []),
                    timestamp=self._clock(),
                )
            )
            limit = query.max_iterations or self.thresholds.max_iterations_per_query
            if iteration > limit * 0.8:
                alerts.append(
                    self._alert(
                        "high_iteration_count",
                        "warning",
                        f"Query approaching maximum iterations: {iteration}",
                        session_id,
                        query.query_id,
                        iteration=iteration,
                        max_iterations=limit,
                    )
                )
            if confidence < self.thresholds.low_confidence:
                alerts.append(
                    self._alert(
                        "low_confidence",
                        "warning",
                        f"Low confidence detected: {confidence:.2f}",
                        session_id,
                        query.query_id,
                        iteration=iteration,
                        confidence=confidence,
                    )
                )
        self._dispatch(alerts)

    def record_tool_run(
        self,
        session_id: str,
        tool_name: str,
        success: bool,
        duration_seconds: float = 0.0,
        error: str | None = None,
        query_id: str | None = None,
    ) -> None:
        alerts: list[Alert] = []
        with self._lock:
            query = self._query(session_id, query_id)
            if query is None:
                return
            query.tool_runs.append(
                ToolRunRecord(
                    tool_name=tool_name,
                    success=success,
                    duration_seconds=duration_seconds,
                    error=error,
                    timestamp=self._clock(),
                )
            )
            if not success:
                alerts.append(
                    self._alert(
                        "tool_execution_failure",
                        "error",
                        f"Tool execution failed: {tool_name}",
                        session_id,
                        query.query_id,
                        tool_name=tool_name,
                        error=error,
                    )
                )
            if duration_seconds > self.thresholds.slow_tool_seconds:
                alerts.append(
                    self._alert(
                        "slow_tool_execution",
                        "warning",
                        f"Slow tool execution: {tool_name} ({duration_seconds:.1f}s)",
                        session_id,
                        query.query_id,
                        tool_name=tool_name,
                        duration_seconds=duration_seconds,
                    )
                )
        self._dispatch(alerts)

    def record_error(
        self,
        session_id: str,
        error_type: str,
        message: str,
        phase: str = "unknown",
        iteration: int | None = None,
        query_id: str | None = None,
    ) -> None:
        alerts: list[Alert] = []
        with self._lock:
            query = self._query(session_id, query_id)
            if query is None:
                return
            query.errors.append(
                ErrorRecord(
                    type=error_type,
                    message=message,
                    phase=phase,
                    iteration=iteration,
                    timestamp=self._clock(),
                )
            )
            if len(query.errors) > self.thresholds.max_errors_per_session * 0.6:
                alerts.append(
                    self._alert(
                        "high_error_count",
                        "error",
                        f"High error count in query: {len(query.errors)}",
                        session_id,
                        query.query_id,
                        error_count=len(query.errors),
                    )
                )
            if error_type in CRITICAL_ERROR_TYPES:
                alerts.append(
                    self._alert(
                        "critical_error",
                        "critical",
                        f"Critical error occurred: {message}",
                        session_id,
                        query.query_id,
                        error_type=error_type,
                    )
                )
        self._dispatch(alerts)

    def complete_query(
        self, session_id: str, success: bool, confidence: float, query_id: str | None = None
    ) -> None:
        alerts: list[Alert] = []
        with self._lock:
            query = self._query(session_id, query_id)
            if query is None or query.end_time is not None:
                return
            query.end_time = self._clock()
            query.status = "completed" if success else "failed"
            query.success = success
            query.confidence = confidence
            if query.processing_seconds > self.thresholds.max_processing_seconds * 0.8:
                alerts.append(
                    self._alert(
                        "long_processing_time",
                        "warning",
                        f"Long processing time: {query.processing_seconds:.1f}s",
                        session_id,
                        query.query_id,
                        processing_seconds=query.processing_seconds,
                    )
                )
            if success and confidence < self.thresholds.low_final_confidence:
                alerts.append(
                    self._alert(
                        "low_final_confidence",
                        "warning",
                        f"Query completed with low confidence: {confidence:.2f}",
                        session_id,
                        query.query_id,
                        confidence=confidence,
                    )
                )
        self._dispatch(alerts)

    def end_session(self, session_id: str) -> None:
        alerts: list[Alert] = []
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.end_time is not None:
                return
            session.end_time = self._clock()
            session.status = "completed"
            metrics = self._summarize(session)
            rate = metrics.successful_queries / metrics.total_queries if metrics.total_queries else 0.0
            if rate < self.thresholds.min_success_rate:
                alerts.append(
                    self._alert(
                        "low_success_rate",
                        "error",
                        f"Low session success rate: {rate * 100:.1f}%",
                        session_id,
                        None,
                        success_rate=rate,
                    )
                )
            if metrics.total_errors > self.thresholds.max_errors_per_session:
                alerts.append(
                    self._alert(
                        "high_session_error_count",
                        "error",
                        f"High error count in session: {metrics.total_errors}",
                        session_id,
                        None,
                        total_errors=metrics.total_errors,
                    )
                )
        logger.info("Monitoring ended for session %s", session_id)
        self._dispatch(alerts)

    # Queries

    def get_session_metrics(self, session_id: str) -> SessionMetrics | None:
        with self._lock:
            session = self._sessions.get(session_id)
            return self._summarize(session) if session is not None else None

    def get_recent_alerts(self, limit: int = 50) -> list[Alert]:
        with self._lock:
            alerts = [alert for session in self._sessions.values() for alert in session.alerts]
        alerts.sort(key=lambda alert: alert.timestamp, reverse=True)
        return alerts[:limit]

    def get_global_metrics(self) -> dict[str, Any]:
        with self._lock:
            summaries = [self._summarize(session) for session in self._sessions.values()]
            durations = [
                query.processing_seconds
                for session in self._sessions.values()
                for query in session.queries
                if query.end_time is not None
            ]
        total_queries = sum(item.total_queries for item in summaries)
        successful = sum(item.successful_queries for item in summaries)
        return {
            "total_sessions": len(summaries),
            "total_queries": total_queries,
            "total_iterations": sum(item.total_iterations for item in summaries),
            "total_tool_runs": sum(item.total_tool_runs for item in summaries),
            "total_errors": sum(item.total_errors for item in summaries),
            "average_processing_seconds": sum(durations) / len(durations) if durations else 0.0,
            "success_rate": successful / total_queries if total_queries else 0.0,
        }

    def sessions(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def forget_session(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def clear_old_sessions(self, max_age_seconds: float = 24 * 60 * 60) -> list[str]:
        """Drop sessions that started more than ``max_age_seconds`` ago."""
        cutoff = self._clock() - max_age_seconds
        with self._lock:
            stale = [key for key, item in self._sessions.items() if item.start_time < cutoff]
            for key in stale:
                del self._sessions[key]
        if stale:
            logger.info("Cleared %s old monitoring sessions", len(stale))
        return stale

    def export_data(self) -> dict[str, Any]:
        with self._lock:
            sessions = [session.model_dump() for session in self._sessions.values()]
        return {
            "global_metrics": self.get_global_metrics(),
            "sessions": sessions,
            "recent_alerts": [alert.model_dump() for alert in self.get_recent_alerts(100)],
            "exported_at": self._clock(),
        }

    # Internals

    def _query(self, session_id: str, query_id: str | None) -> QueryRecord | None:
        session = self._sessions.get(session_id)
        return session.query(query_id) if session is not None else None

    def _alert(
        self,
        alert_type: str,
        severity: AlertSeverity,
        message: str,
        session_id: str,
        query_id: str | None,
        **data: Any,
    ) -> Alert:
        alert = Alert(
            alert_id=f"alert-{uuid.uuid4().hex[:12]}",
            type=alert_type,
            severity=severity,
            message=message,
            session_id=session_id,
            query_id=query_id,
            data=data,
            timestamp=self._clock(),
        )
        session = self._sessions.get(session_id)
        if session is not None:
            session.alerts.append(alert)
        return alert

    def _dispatch(self, alerts: list[Alert]) -> None:
        for alert in alerts:
            level = logging.WARNING if alert.severity == "warning" else logging.ERROR
            logger.log(level, "ALERT %s for session %s: %s", alert.type, alert.session_id, alert.message)
            for callback in list(self._callbacks):
                try:
                    callback(alert)
                except Exception:
                    logger.exception("Alert callback failed for %s", alert.alert_id)

    def _summarize(self, session: SessionRecord) -> SessionMetrics:
        end = session.end_time if session.end_time is not None else self._clock()
        finished = [query for query in session.queries if query.end_time is not None]
        return SessionMetrics(
            session_id=session.session_id,
            status=session.status,
            duration_seconds=max(0.0, end - session.start_time),
            total_queries=len(session.queries),
            successful_queries=sum(1 for query in finished if query.success),
            failed_queries=sum(1 for query in finished if not query.success),
            total_iterations=sum(len(query.iterations) for query in session.queries),
            total_tool_runs=sum(len(query.tool_runs) for query in session.queries),
            total_errors=sum(len(query.errors) for query in session.queries),
            alerts=list(session.alerts),
        )
