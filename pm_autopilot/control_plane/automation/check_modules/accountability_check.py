"""Record status transitions and flag stalled or overcommitted engineers."""

from __future__ import annotations

from datetime import timedelta

from pm_autopilot.control_plane.automation.check_modules.base import CheckContext
from pm_autopilot.control_plane.models.automation_contracts import (
    AccountabilityFlagPayload,
    ActionType,
    ProposedAction,
)
from pm_autopilot.control_plane.models.work_state_contracts import (
    IN_FLIGHT_TICKET_STATUSES,
    as_utc,
)


NO_COMMIT_WINDOW = timedelta(days=3)
SPRINT_RISK_IN_FLIGHT = 3
SPRINT_RISK_ASSIGNED = 5


class AccountabilityCheckModule:
    name = "accountability_check"
    auto_approve_types: frozenset[ActionType] = frozenset()

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled

    def run(self, context: CheckContext) -> list[ProposedAction]:
        self._record_transitions(context)
        return [*self._no_commit_flags(context), *self._sprint_risk_flags(context)]

    def _record_transitions(self, context: CheckContext) -> None:
        storage = context.storage
        for ticket in storage.list_tickets():
            if not ticket.external_key:
                continue
            history = storage.list_status_history(ticket.external_key)
            last = history[0] if history else None
            if last is None or last.new_status != ticket.status:
                storage.record_status_transition(
                    ticket.external_key,
                    last.new_status if last else None,
                    ticket.status,
                    changed_at=context.now,
                )

    def _no_commit_flags(self, context: CheckContext) -> list[ProposedAction]:
        storage = context.storage
        cutoff = context.now - NO_COMMIT_WINDOW
        committed_keys = {
            commit.external_key
            for commit in storage.list_commits(since=cutoff, limit=500)
            if commit.external_key
        }
        actions: list[ProposedAction] = []
        for status in sorted(IN_FLIGHT_TICKET_STATUSES):
            for ticket in storage.list_tickets(status=status):
                key = ticket.external_key
                if not key or not ticket.assignee_id or key in committed_keys:
                    continue
                history = storage.list_status_history(key)
                if not history or as_utc(history[0].changed_at) >= as_utc(cutoff):
                    continue
                existing = storage.list_accountability_flags(
                    team_member_id=ticket.assignee_id, flag_type="no_commits", status="active"
                )
                if any(flag.external_key == key for flag in existing):
                    continue
                flag = storage.create_accountability_flag(
                    team_member_id=ticket.assignee_id,
                    flag_type="no_commits",
                    severity="medium",
                    message=(
                        f'Ticket {key} "{ticket.title}" has been in progress for >3 days '
                        "with no commits."
                    ),
                    external_key=key,
                )
                actions.append(
                    ProposedAction(
                        check_module="accountability_check",
                        title=f"No commits for {key} in 3+ days",
                        description=(
                            f'{key} "{ticket.title}" has had no commit activity in the last '
                            "3 days despite being in progress."
                        ),
                        confidence=0.70,
                        payload=AccountabilityFlagPayload(
                            flag_id=flag.id,
                            flag_type="no_commits",
                            team_member_id=ticket.assignee_id,
                            external_key=key,
                        ),
                    )
                )
        return actions

    def _sprint_risk_flags(self, context: CheckContext) -> list[ProposedAction]:
        storage = context.storage
        actions: list[ProposedAction] = []
        for member in storage.list_team_members():
            tickets = storage.list_tickets(assignee_id=member.id)
            in_flight = sum(1 for t in tickets if t.status in IN_FLIGHT_TICKET_STATUSES)
            if in_flight <= SPRINT_RISK_IN_FLIGHT or len(tickets) <= SPRINT_RISK_ASSIGNED:
                continue
            if storage.list_accountability_flags(
                team_member_id=member.id, flag_type="sprint_risk", status="active"
            ):
                continue
            flag = storage.create_accountability_flag(
                team_member_id=member.id,
                flag_type="sprint_risk",
                severity="high",
                message=(
                    f"{member.name} has {in_flight} tickets in progress and {len(tickets)} "
                    "total assigned. Sprint completion at risk."
                ),
            )
            actions.append(
                ProposedAction(
                    check_module="accountability_check",
                    title=f"Sprint risk for {member.name}",
                    description=(
                        f"{member.name} has {in_flight} tickets in progress with {len(tickets)} "
                        "total assigned. Sprint completion may be at risk."
                    ),
                    confidence=0.60,
                    payload=AccountabilityFlagPayload(
                        flag_id=flag.id,
                        flag_type="sprint_risk",
                        team_member_id=member.id,
                    ),
                )
            )
        return actions
