"""Engineer workload health: status classification, alerts, and ticket suggestions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Literal

from pm_autopilot.control_plane.db.storage import AutomationStorage
from pm_autopilot.control_plane.models.work_state_contracts import (
    TERMINAL_TICKET_STATUSES,
    Assignment,
    PMAlert,
    TeamMember,
    Ticket,
    TicketSuggestion,
    as_utc,
)


logger = logging.getLogger(__name__)

EngineerStatusType = Literal["active", "idle", "underutilized", "inactive"]

SUGGESTION_CANDIDATES = 10
SUGGESTION_LIMIT = 5
MIN_SKILL_MATCH = 0.3


@dataclass(frozen=True)
class EngineerStatus:
    member_id: str
    member_name: str
    status: EngineerStatusType
    current_tickets: int
    days_since_last_assignment: int | None
    days_since_last_activity: int | None


def _days_between(earlier: datetime, later: datetime) -> int:
    return (as_utc(later) - as_utc(earlier)) // timedelta(days=1)


def skill_match(member: TeamMember, ticket: Ticket) -> float:
    """Fraction of the ticket's required skills the member has; 0.5 when none are listed."""

    if not ticket.required_skills:
        return 0.5
    member_skills = {skill.lower() for skill in member.skills}
    matching = [skill for skill in ticket.required_skills if skill.lower() in member_skills]
    return len(matching) / len(ticket.required_skills)


class WorkloadService:
    def __init__(
        self,
        *,
        storage: AutomationStorage,
        underutilization_days: int = 2,
        inactivity_days: int = 3,
    ) -> None:
        self.storage = storage
        self.underutilization_days = underutilization_days
        self.inactivity_days = inactivity_days

    def engineer_status(self, member_id: str, now: datetime | None = None) -> EngineerStatus | None:
        member = self.storage.get_team_member(member_id)
        if member is None:
            return None
        now = now or datetime.now(timezone.utc)

        last_assignment = self.storage.get_last_assignment_for_member(member_id)
        days_since_assignment = (
            _days_between(last_assignment.assigned_at, now) if last_assignment else None
        )
        last_activity = self.storage.get_last_activity_for_member(member_id)
        days_since_activity = _days_between(last_activity, now) if last_activity else None

        active_assignments = self.storage.list_active_assignments_for_member(member_id)
        assigned_keys = {a.external_key for a in active_assignments if a.external_key}
        extra_tickets = [
            ticket
            for ticket in self.storage.list_tickets(assignee_id=member_id)
            if ticket.external_key
            and ticket.status not in TERMINAL_TICKET_STATUSES
            and ticket.external_key not in assigned_keys
        ]
        current_tickets = len(active_assignments) + len(extra_tickets)

        return EngineerStatus(
            member_id=member.id,
            member_name=member.name,
            status=self._classify(days_since_assignment, days_since_activity, current_tickets),
            current_tickets=current_tickets,
            days_since_last_assignment=days_since_assignment,
            days_since_last_activity=days_since_activity,
        )

    def all_engineer_statuses(self, now: datetime | None = None) -> list[EngineerStatus]:
        statuses: list[EngineerStatus] = []
        for member in self.storage.list_team_members():
            if member.member_type != "human":
                continue
            status = self.engineer_status(member.id, now=now)
            if status is not None:
                statuses.append(status)
        return statuses

    def detect_underutilized(self, now: datetime | None = None) -> list[EngineerStatus]:
        return [s for s in self.all_engineer_statuses(now=now) if s.status == "underutilized"]

    def create_alerts(self, now: datetime | None = None) -> list[PMAlert]:
        """Open a ``no_assignment``/``no_activity`` alert per engineer, once per type."""

        alerts: list[PMAlert] = []
        for engineer in self.all_engineer_statuses(now=now):
            days = engineer.days_since_last_assignment
            if days is None or days >= self.underutilization_days:
                if not self.storage.has_active_alert_for_member(engineer.member_id, "no_assignment"):
                    message = (
                        f"{engineer.member_name} has never been assigned a ticket"
                        if days is None
                        else f"{engineer.member_name} has not been assigned a ticket in {days} days"
                    )
                    alerts.append(
                        self.storage.create_pm_alert(
                            team_member_id=engineer.member_id,
                            alert_type="no_assignment",
                            severity=self._severity(days, self.underutilization_days),
                            message=message,
                        )
                    )

            days = engineer.days_since_last_activity
            if days is None or days >= self.inactivity_days:
                if not self.storage.has_active_alert_for_member(engineer.member_id, "no_activity"):
                    message = (
                        f"{engineer.member_name} has no recorded activity"
                        if days is None
                        else f"{engineer.member_name} has had no activity in {days} days"
                    )
                    alerts.append(
                        self.storage.create_pm_alert(
                            team_member_id=engineer.member_id,
                            alert_type="no_activity",
                            severity=self._severity(days, self.inactivity_days),
                            message=message,
                        )
                    )
        return alerts

    def generate_suggestions(self, member_id: str) -> list[TicketSuggestion]:
        member = self.storage.get_team_member(member_id)
        if member is None:
            return []
        self.storage.clear_pending_suggestions_for_member(member_id)

        candidates = self.storage.list_unassigned_tickets()[:SUGGESTION_CANDIDATES]
        scored: list[tuple[float, Ticket]] = []
        for ticket in candidates:
            score = skill_match(member, ticket)
            if score > MIN_SKILL_MATCH:
                scored.append((score, ticket))
        scored.sort(key=lambda item: item[0], reverse=True)

        return [
            self.storage.create_suggestion(
                team_member_id=member_id,
                ticket_id=ticket.id,
                external_key=ticket.external_key,
                title=ticket.title,
                reasoning=_suggestion_reasoning(member, ticket, score),
                skill_match_score=score,
            )
            for score, ticket in scored[:SUGGESTION_LIMIT]
        ]

    def record_assignment(
        self,
        *,
        assignee_id: str,
        ticket_id: str | None = None,
        external_key: str | None = None,
        assigned_by: str = "pm",
    ) -> Assignment:
        assignment = self.storage.create_assignment(
            assignee_id=assignee_id,
            ticket_id=ticket_id,
            external_key=external_key,
            assigned_by=assigned_by,
        )
        self.storage.record_engineer_activity(assignee_id)
        self.storage.dismiss_alerts_for_member(assignee_id)
        self.storage.clear_pending_suggestions_for_member(assignee_id)
        return assignment

    def record_completion(self, assignment_id: str) -> Assignment | None:
        assignment = self.storage.complete_assignment(assignment_id)
        if assignment is not None:
            self.storage.record_engineer_activity(assignment.assignee_id)
        return assignment

    def _classify(
        self, days_since_assignment: int | None, days_since_activity: int | None, current: int
    ) -> EngineerStatusType:
        if days_since_activity is not None and days_since_activity >= self.inactivity_days:
            return "inactive"
        if current == 0:
            if days_since_assignment is None or days_since_assignment >= self.underutilization_days:
                return "underutilized"
            return "idle"
        return "active"

    @staticmethod
    def _severity(days: int | None, threshold: int) -> Literal["warning", "critical"]:
        if days is not None and days >= threshold * 2:
            return "critical"
        return "warning"


def _suggestion_reasoning(member: TeamMember, ticket: Ticket, score: float) -> str:
    member_skills = {skill.lower() for skill in member.skills}
    matching = [skill for skill in ticket.required_skills if skill.lower() in member_skills]
    if matching:
        return (
            f"{member.name} has matching skills ({', '.join(matching)}) "
            f"for this ticket ({round(score * 100)}% match)."
        )
    return f"{member.name} is available and this ticket has no specific skill requirements."
