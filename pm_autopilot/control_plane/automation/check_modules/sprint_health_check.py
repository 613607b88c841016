"""Snapshot active-sprint health and flag underloaded engineers."""

from __future__ import annotations

import logging
import math
import uuid
from datetime import datetime, timedelta

from pm_autopilot.control_plane.automation.check_modules.base import CheckContext
from pm_autopilot.control_plane.insight.base import InsightRequest, TextInsightProvider
from pm_autopilot.control_plane.models.automation_contracts import (
    ActionType,
    AssignTicketPayload,
    EngineerLoad,
    ProposedAction,
    SprintGapWarningPayload,
    SprintSnapshot,
)
from pm_autopilot.control_plane.models.work_state_contracts import (
    IN_FLIGHT_TICKET_STATUSES,
    INITIAL_TICKET_STATUSES,
    TERMINAL_TICKET_STATUSES,
    Sprint,
    as_utc,
)


logger = logging.getLogger(__name__)

MAX_ASSIGN_SUGGESTIONS = 3
INSIGHT_SYSTEM_PROMPT = (
    "You are a sprint health analyst. Analyze sprint data and provide brief, "
    "actionable trajectory analysis. Only return JSON."
)


def compute_health_score(
    *,
    total: int,
    completed: int,
    in_progress: int,
    underloaded: int,
    engineers: int,
) -> int:
    """Score sprint health in [0, 100]; an empty sprint scores the baseline 50."""

    if total <= 0:
        return 50
    completion_rate = completed / total
    progress_rate = (completed + in_progress) / total
    score = round(completion_rate * 60 + progress_rate * 40)
    if in_progress > 0:
        score += 5
    if underloaded > engineers / 2:
        score -= 15
    return max(0, min(100, score))


def days_remaining(sprint: Sprint, now: datetime) -> int | None:
    if sprint.end_date is None:
        return None
    delta = as_utc(sprint.end_date) - as_utc(now)
    return max(0, math.ceil(delta / timedelta(days=1)))


class SprintHealthCheckModule:
    name = "sprint_health_check"
    auto_approve_types: frozenset[ActionType] = frozenset()

    def __init__(self, insight: TextInsightProvider | None = None, enabled: bool = True) -> None:
        self.insight = insight
        self.enabled = enabled

    def run(self, context: CheckContext) -> list[ProposedAction]:
        storage = context.storage
        sprint = storage.get_active_sprint()
        if sprint is None:
            logger.info("No active sprint found, skipping sprint health check")
            return []

        tickets = [
            ticket
            for ticket in storage.list_tickets()
            if ticket.assignee_id is not None and ticket.sprint_id in {sprint.id, None}
        ]
        members = storage.list_team_members()

        total = len(tickets)
        completed = sum(1 for t in tickets if t.status in TERMINAL_TICKET_STATUSES)
        in_progress = sum(1 for t in tickets if t.status in IN_FLIGHT_TICKET_STATUSES)
        todo = sum(1 for t in tickets if t.status in INITIAL_TICKET_STATUSES)

        loads: list[EngineerLoad] = []
        for member in members:
            own = [t for t in tickets if t.assignee_id == member.id]
            loads.append(
                EngineerLoad(
                    member_id=member.id,
                    name=member.name,
                    assigned=len(own),
                    completed=sum(1 for t in own if t.status in TERMINAL_TICKET_STATUSES),
                    in_progress=sum(1 for t in own if t.status in IN_FLIGHT_TICKET_STATUSES),
                )
            )
        underloaded = [load for load in loads if load.is_underloaded]

        remaining_days = days_remaining(sprint, context.now)
        health_score = compute_health_score(
            total=total,
            completed=completed,
            in_progress=in_progress,
            underloaded=len(underloaded),
            engineers=len(members),
        )

        snapshot = SprintSnapshot(
            id=str(uuid.uuid4()),
            sprint_id=sprint.id,
            sprint_name=sprint.name,
            snapshot_date=as_utc(context.now).date().isoformat(),
            total_tickets=total,
            completed_tickets=completed,
            in_progress_tickets=in_progress,
            todo_tickets=todo,
            per_engineer_data=loads,
            health_score=health_score,
            days_remaining=remaining_days,
        )
        snapshot = snapshot.model_copy(
            update={"ai_analysis": self._trajectory_summary(snapshot, underloaded)}
        )
        storage.create_sprint_snapshot(snapshot)

        backlog = storage.list_unassigned_tickets() if underloaded else []
        pairings = list(zip(underloaded[:MAX_ASSIGN_SUGGESTIONS], backlog))
        paired_keys = {load.member_id: ticket.external_key for load, ticket in pairings}

        actions: list[ProposedAction] = []
        for load in underloaded:
            actions.append(
                ProposedAction(
                    check_module="sprint_health_check",
                    title=f"Sprint gap: {load.name} has {load.remaining} remaining tickets",
                    description=(
                        f"{load.name} has only {load.remaining} remaining tickets and "
                        f"{load.in_progress} in-progress. Consider assigning more work to "
                        "maintain sprint velocity."
                    ),
                    confidence=0.85 if load.remaining == 0 else 0.65,
                    payload=SprintGapWarningPayload(
                        snapshot_id=snapshot.id,
                        team_member_id=load.member_id,
                        member_name=load.name,
                        remaining=load.remaining,
                        in_progress=load.in_progress,
                        days_remaining=remaining_days,
                        external_key=paired_keys.get(load.member_id),
                    ),
                )
            )

        for load, ticket in pairings:
            actions.append(
                ProposedAction(
                    check_module="sprint_health_check",
                    title=f'Assign "{ticket.title}" to {load.name}',
                    description=(
                        f"{load.name} is underloaded with {load.remaining} remaining tickets. "
                        f'Consider assigning "{ticket.title}" to balance sprint workload.'
                    ),
                    confidence=0.55,
                    payload=AssignTicketPayload(
                        team_member_id=load.member_id,
                        member_name=load.name,
                        external_key=ticket.external_key,
                        ticket_id=ticket.id,
                        ticket_title=ticket.title,
                        snapshot_id=snapshot.id,
                    ),
                )
            )

        logger.info(
            'Sprint "%s" health: %d/100, %d actions proposed',
            sprint.name,
            health_score,
            len(actions),
        )
        return actions

    def _trajectory_summary(
        self, snapshot: SprintSnapshot, underloaded: list[EngineerLoad]
    ) -> str | None:
        if self.insight is None:
            return None
        breakdown = "\n".join(
            f"- {load.name}: {load.assigned} assigned, {load.completed} completed, "
            f"{load.in_progress} in-progress"
            for load in snapshot.per_engineer_data
        )
        underloaded_names = "\n".join(f"- {load.name}" for load in underloaded) or "None"
        prompt = (
            "Analyze this sprint health data and provide a brief trajectory analysis "
            "(2-3 sentences):\n\n"
            f"Sprint: {snapshot.sprint_name}\n"
            f"Days remaining: {snapshot.days_remaining if snapshot.days_remaining is not None else 'unknown'}\n"
            f"Total tickets: {snapshot.total_tickets}\n"
            f"Completed: {snapshot.completed_tickets}\n"
            f"In Progress: {snapshot.in_progress_tickets}\n"
            f"To Do: {snapshot.todo_tickets}\n"
            f"Health Score: {snapshot.health_score}/100\n\n"
            f"Per-engineer breakdown:\n{breakdown}\n\n"
            f"Underloaded engineers (< 2 remaining or 0 in-progress):\n{underloaded_names}\n\n"
            'Provide a JSON response: {"analysis": "...", "riskLevel": "low" | "medium" | "high", '
            '"recommendations": ["..."]}\n\nOnly return JSON, no other text.'
        )
        request = InsightRequest(
            system=INSIGHT_SYSTEM_PROMPT,
            prompt=prompt,
            facts={
                "health_score": snapshot.health_score,
                "total_tickets": snapshot.total_tickets,
                "completed_tickets": snapshot.completed_tickets,
                "days_remaining": snapshot.days_remaining,
                "underloaded": [load.name for load in underloaded],
            },
        )
        try:
            return self.insight.run(request).analysis
        except Exception:
            logger.warning("Sprint trajectory analysis failed", exc_info=True)
            return None
