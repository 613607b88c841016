"""Deterministic local provider used as safe default."""

from __future__ import annotations

import json
from typing import Any

from pm_autopilot.control_plane.insight.base import InsightRequest, InsightResponse


class LocalInsightProvider:
    """Builds a rule-based trajectory summary from the request facts."""

    name = "local"

    def run(self, request: InsightRequest) -> InsightResponse:
        output = self._summarize(request.facts)
        return InsightResponse(
            output=output,
            model="deterministic-rule-engine",
            provider=self.name,
            raw_text=json.dumps(output, sort_keys=True),
        )

    def _summarize(self, facts: dict[str, Any]) -> dict[str, Any]:
        score = int(facts.get("health_score", 0) or 0)
        total = int(facts.get("total_tickets", 0) or 0)
        completed = int(facts.get("completed_tickets", 0) or 0)
        days = facts.get("days_remaining")
        underloaded = [str(name) for name in facts.get("underloaded", [])]

        if score >= 70:
            risk = "low"
        elif score >= 40:
            risk = "medium"
        else:
            risk = "high"

        when = f"with {days} days remaining" if days is not None else "with no end date set"
        analysis = (
            f"Sprint is {completed}/{total} complete {when}; health {score}/100 ({risk} risk)."
        )
        recommendations: list[str] = []
        if underloaded:
            analysis += f" Underloaded: {', '.join(underloaded)}."
            recommendations.append("Pull backlog work for underloaded engineers.")
        if risk == "high":
            recommendations.append("Review scope with the team before the next standup.")
        return {"analysis": analysis, "riskLevel": risk, "recommendations": recommendations}
