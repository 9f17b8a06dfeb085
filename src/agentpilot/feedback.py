"""Summarize recent observations into context for the next reasoning step."""

from __future__ import annotations

from collections import Counter
from typing import Any, Sequence

from pydantic import BaseModel, Field

from agentpilot.observations import Observation, ObservationType
from agentpilot.state import AgentState

MAX_PATTERNS = 2


class KeyFinding(BaseModel):
    type: str
    finding: str
    ground_truth: dict[str, Any] = Field(default_factory=dict)
    confidence: float = 0.5


class FeedbackSummary(BaseModel):
    total_observations: int = 0
    success_count: int = 0
    error_count: int = 0
    progress_count: int = 0
    tool_feedback_count: int = 0
    key_findings: list[KeyFinding] = Field(default_factory=list)
    patterns: list[str] = Field(default_factory=list)


class Insight(BaseModel):
    source: str
    action: str
    reasoning: str
    priority: float
    confidence: float = 0.5
    tool_name: str | None = None


class EnvironmentalAssessment(BaseModel):
    stability: str = "stable"
    tool_availability: str = "available"
    error_rate: float = 0.0
    success_rate: float = 0.0
    overall_health: str = "healthy"
    recommendations: list[str] = Field(default_factory=list)


class RecommendedAction(BaseModel):
    action: str
    priority: float
    reasoning: str
    supporting_insights: int


class ConfidenceAdjustment(BaseModel):
    adjustment: float = 0.0
    reasoning: str = ""
    average_observation_confidence: float = 0.0
    success_rate: float = 0.0
    error_rate: float = 0.0


class FeedbackContext(BaseModel):
    summary: FeedbackSummary
    insights: list[Insight] = Field(default_factory=list)
    environment: EnvironmentalAssessment
    recommended_actions: list[RecommendedAction] = Field(default_factory=list)
    confidence: ConfidenceAdjustment
    context_for_llm: str = ""


class Milestone(BaseModel):
    type: str
    description: str
    timestamp: float
    tool_name: str | None = None


class ProgressAssessment(BaseModel):
    overall_progress: str = "unknown"
    progress_score: float = 0.0
    milestones: list[Milestone] = Field(default_factory=list)
    blockers: list[Milestone] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class FeedbackIntegrator:
    """Turn a sliding window of observations into a feedback context."""

    def __init__(self, window: int = 5) -> None:
        if window < 1:
            raise ValueError("window must be at least 1")
        self.window = window

    def recent(self, observations: Sequence[Observation]) -> list[Observation]:
        """Return the last ``window`` observations, most recent first."""
        tail = list(observations[-self.window :])
        tail.reverse()
        return sorted(tail, key=lambda obs: obs.timestamp, reverse=True)

    def integrate(self, state: AgentState) -> FeedbackContext:
        recent = self.recent(state.observations)
        summary = self.summarize(recent)
        insights = self.insights(recent)
        return FeedbackContext(
            summary=summary,
            insights=insights,
            environment=self.assess_environment(recent),
            recommended_actions=self.recommended_actions(insights),
            confidence=self.confidence_adjustment(recent),
            context_for_llm=self.format_context_for_llm(
                summary, insights, state.current_iteration
            ),
        )

    def summarize(self, observations: Sequence[Observation]) -> FeedbackSummary:
        counts = Counter(obs.type for obs in observations)
        findings = [
            KeyFinding(
                type=obs.type.value,
                finding=obs.content,
                ground_truth=obs.ground_truth,
                confidence=obs.confidence,
            )
            for obs in observations
            if obs.ground_truth
        ]
        return FeedbackSummary(
            total_observations=len(observations),
            success_count=counts[ObservationType.SUCCESS],
            error_count=counts[ObservationType.ERROR],
            progress_count=counts[ObservationType.PROGRESS],
            tool_feedback_count=counts[ObservationType.TOOL_FEEDBACK],
            key_findings=findings,
            patterns=self.patterns(observations),
        )

    def patterns(self, observations: Sequence[Observation]) -> list[str]:
        patterns: list[str] = []
        tool_errors = [
            obs.tool_name
            for obs in observations
            if obs.type == ObservationType.ERROR and obs.tool_name
        ]
        if len(tool_errors) >= 2 and len(set(tool_errors)) < len(tool_errors):
            unique = list(dict.fromkeys(tool_errors))
            patterns.append(f"Repeated failures with tools: {', '.join(unique)}")
        tool_successes = Counter(
            obs.tool_name
            for obs in observations
            if obs.type == ObservationType.SUCCESS and obs.tool_name
        )
        for tool, count in tool_successes.items():
            if count >= 2:
                patterns.append(f"Consistent success with tool: {tool}")
        progress = [obs.content for obs in observations if obs.type == ObservationType.PROGRESS]
        if len(progress) >= 3 and len(set(progress)) < len(progress) * 0.7:
            patterns.append("Progress appears to be stagnating with similar updates")
        return patterns[:MAX_PATTERNS]

    def insight_for(self, obs: Observation) -> Insight | None:
        if obs.type == ObservationType.SUCCESS and obs.tool_name:
            return Insight(
                source=obs.type.value,
                action="continue_with_tool",
                reasoning=f"Tool '{obs.tool_name}' succeeded, continue using similar tools",
                priority=0.7,
                confidence=obs.confidence,
                tool_name=obs.tool_name,
            )
        if obs.type == ObservationType.ERROR:
            if obs.tool_name:
                return Insight(
                    source=obs.type.value,
                    action="try_alternative_tool",
                    reasoning=f"Tool '{obs.tool_name}' failed, try alternative approach",
                    priority=0.9,
                    confidence=obs.confidence,
                    tool_name=obs.tool_name,
                )
            return Insight(
                source=obs.type.value,
                action="adjust_strategy",
                reasoning="Error encountered, need to adjust current strategy",
                priority=0.8,
                confidence=obs.confidence,
            )
        if obs.type == ObservationType.PROGRESS:
            return Insight(
                source=obs.type.value,
                action="continue_current_path",
                reasoning="Progress being made, continue current approach",
                priority=0.6,
                confidence=obs.confidence,
            )
        if obs.type == ObservationType.TOOL_FEEDBACK:
            if obs.ground_truth.get("success") is False:
                return Insight(
                    source=obs.type.value,
                    action="recover_from_tool_failure",
                    reasoning="Tool feedback indicates failure, implement recovery strategy",
                    priority=0.85,
                    confidence=obs.confidence,
                    tool_name=obs.tool_name,
                )
            return Insight(
                source=obs.type.value,
                action="leverage_tool_success",
                reasoning="Tool feedback positive, leverage results for next steps",
                priority=0.7,
                confidence=obs.confidence,
                tool_name=obs.tool_name,
            )
        return None

    def insights(self, observations: Sequence[Observation]) -> list[Insight]:
        found = [insight for obs in observations if (insight := self.insight_for(obs))]
        return sorted(found, key=lambda insight: insight.priority, reverse=True)

    def assess_environment(self, observations: Sequence[Observation]) -> EnvironmentalAssessment:
        if not observations:
            return EnvironmentalAssessment(stability="unknown", overall_health="unknown")
        total = len(observations)
        successes = sum(1 for obs in observations if obs.type == ObservationType.SUCCESS)
        errors = [obs for obs in observations if obs.type == ObservationType.ERROR]
        assessment = EnvironmentalAssessment(
            success_rate=successes / total, error_rate=len(errors) / total
        )
        if assessment.error_rate > 0.5:
            assessment.stability = "unstable"
            assessment.overall_health = "poor"
            assessment.recommendations.append("High error rate detected, consider strategy change")
        elif assessment.error_rate > 0.3:
            assessment.stability = "somewhat_unstable"
            assessment.overall_health = "fair"
            assessment.recommendations.append("Moderate error rate, monitor closely")
        if any(obs.tool_name for obs in errors):
            assessment.tool_availability = "limited"
            assessment.recommendations.append("Some tools experiencing issues")
        return assessment

    def recommended_actions(self, insights: Sequence[Insight]) -> list[RecommendedAction]:
        best: dict[str, float] = {}
        for insight in insights:
            if insight.priority > best.get(insight.action, -1.0):
                best[insight.action] = insight.priority
        actions = []
        for action, priority in sorted(best.items(), key=lambda item: item[1], reverse=True):
            related = [insight for insight in insights if insight.action == action]
            actions.append(
                RecommendedAction(
                    action=action,
                    priority=priority,
                    reasoning="; ".join(insight.reasoning for insight in related),
                    supporting_insights=len(related),
                )
            )
        return actions

    def confidence_adjustment(self, observations: Sequence[Observation]) -> ConfidenceAdjustment:
        if not observations:
            return ConfidenceAdjustment(reasoning="No observations to base confidence on")
        total = len(observations)
        average = sum(obs.confidence for obs in observations) / total
        success_rate = sum(1 for obs in observations if obs.type == ObservationType.SUCCESS) / total
        error_rate = sum(1 for obs in observations if obs.type == ObservationType.ERROR) / total
        adjustment = 0.0
        reasoning = "Observations are mixed"
        if success_rate > 0.7:
            adjustment, reasoning = 0.1, "High success rate increases confidence"
        elif error_rate > 0.5:
            adjustment, reasoning = -0.2, "High error rate decreases confidence"
        elif average > 0.8:
            adjustment, reasoning = 0.05, "High observation confidence increases overall confidence"
        return ConfidenceAdjustment(
            adjustment=max(-0.3, min(0.3, adjustment)),
            reasoning=reasoning,
            average_observation_confidence=average,
            success_rate=success_rate,
            error_rate=error_rate,
        )

    def format_context_for_llm(
        self, summary: FeedbackSummary, insights: Sequence[Insight], iteration: int
    ) -> str:
        lines = [
            f"Environmental Feedback Context (Iteration {iteration}):",
            "",
            "Recent Activity Summary:",
            f"- {summary.total_observations} observations processed",
            f"- {summary.success_count} successful operations",
            f"- {summary.error_count} errors encountered",
            f"- {summary.progress_count} progress updates",
            "",
        ]
        if summary.key_findings:
            lines.append("Key Environmental Findings:")
            for index, finding in enumerate(summary.key_findings[:3], start=1):
                lines.append(f"{index}. {finding.finding} (confidence: {finding.confidence:.2f})")
            lines.append("")
        if insights:
            lines.append("Recommended Actions Based on Environment:")
            for index, insight in enumerate(insights[:3], start=1):
                lines.append(f"{index}. {insight.reasoning} (priority: {insight.priority:.2f})")
            lines.append("")
        if summary.patterns:
            lines.append("Observed Patterns:")
            for index, pattern in enumerate(summary.patterns[:2], start=1):
                lines.append(f"{index}. {pattern}")
            lines.append("")
        lines.append(
            "Use this environmental feedback to inform your next reasoning step and action selection."
        )
        return "\n".join(lines)

    def create_progress_assessment(self, observations: Sequence[Observation]) -> ProgressAssessment:
        if not observations:
            return ProgressAssessment(
                overall_progress="no_data",
                recommendations=["No environmental feedback available for assessment"],
            )
        recent = self.recent(observations)
        successes = sum(1 for obs in recent if obs.type == ObservationType.SUCCESS)
        errors = sum(1 for obs in recent if obs.type == ObservationType.ERROR)
        progress = sum(1 for obs in recent if obs.type == ObservationType.PROGRESS)
        score = (successes * 0.4 + progress * 0.3 - errors * 0.3) / len(recent)
        score = max(0.0, min(1.0, score))
        if score > 0.7:
            level = "excellent"
        elif score > 0.5:
            level = "good"
        elif score > 0.3:
            level = "fair"
        else:
            level = "poor"
        assessment = ProgressAssessment(overall_progress=level, progress_score=score)
        for obs in recent:
            if obs.type == ObservationType.SUCCESS and obs.tool_name:
                assessment.milestones.append(
                    Milestone(
                        type="tool_success",
                        description=f"Successfully executed {obs.tool_name}",
                        timestamp=obs.timestamp,
                        tool_name=obs.tool_name,
                    )
                )
            elif obs.type == ObservationType.PROGRESS and obs.confidence > 0.7:
                assessment.milestones.append(
                    Milestone(type="progress_milestone", description=obs.content, timestamp=obs.timestamp)
                )
            elif obs.type == ObservationType.ERROR:
                assessment.blockers.append(
                    Milestone(
                        type="error_blocker",
                        description=obs.content,
                        timestamp=obs.timestamp,
                        tool_name=obs.tool_name,
                    )
                )
        if score < 0.3:
            assessment.recommendations.append("Consider changing strategy due to poor progress")
        if len(assessment.blockers) > len(assessment.milestones):
            assessment.recommendations.append("Focus on resolving blockers before proceeding")
        if assessment.milestones:
            assessment.recommendations.append("Build on recent successes")
        return assessment
