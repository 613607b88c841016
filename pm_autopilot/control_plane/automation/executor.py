"""Apply approved automation actions to the issue tracker."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from pm_autopilot.control_plane.automation.workload import WorkloadService
from pm_autopilot.control_plane.db.storage import AutomationStorage
from pm_autopilot.control_plane.models.automation_contracts import (
    AssignTicketPayload,
    AutomationAction,
    SprintGapWarningPayload,
    StaleTicketPayload,
)
from pm_autopilot.control_plane.tracker.tracker_client import IssueTrackerClient


logger = logging.getLogger(__name__)

PR_MERGED_COMMENT = "[Automated] PR merged - transitioning ticket to Done."
STALE_COMMENT = "[Automated] This ticket has been flagged as stale. Please update progress."
REMOTE_PAYLOAD_TYPES = (AssignTicketPayload, SprintGapWarningPayload, StaleTicketPayload)


@dataclass(frozen=True)
class ExecutionResult:
    success: bool
    error: str | None = None


class ActionExecutor:
    def __init__(
        self,
        *,
        storage: AutomationStorage,
        tracker: IssueTrackerClient | None,
        workload: WorkloadService | None = None,
    ) -> None:
        self.storage = storage
        self.tracker = tracker
        self.workload = workload

    def execute(self, action: AutomationAction) -> ExecutionResult:
        """Run the tracker side effect for ``action``; advisory types succeed without one."""

        tracker = self.tracker
        payload = action.payload
        if tracker is None:
            return ExecutionResult(success=True)
        if not isinstance(payload, REMOTE_PAYLOAD_TYPES):
            return ExecutionResult(success=True)

        try:
            if isinstance(payload, StaleTicketPayload):
                self._stale_ticket(tracker, payload)
            else:
                self._assign(tracker, payload)
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            logger.warning("Action %s (%s) failed: %s", action.id, action.type, message)
            self.storage.create_sync_failure(
                entity_type="automation_action",
                entity_id=action.id,
                external_key=payload.external_key,
                error_message=message,
            )
            return ExecutionResult(success=False, error=message)
        return ExecutionResult(success=True)

    def resolve_account_id(self, team_member_id: str) -> str | None:
        """Tracker account id for a team member, or ``None`` when unknown."""

        member = self.storage.get_team_member(team_member_id)
        if member is None or not member.tracker_account_id:
            return None
        return member.tracker_account_id

    def _assign(
        self,
        tracker: IssueTrackerClient,
        payload: AssignTicketPayload | SprintGapWarningPayload,
    ) -> None:
        key = payload.external_key
        if not key:
            return
        account_id = self.resolve_account_id(payload.team_member_id)
        if account_id is None:
            return
        tracker.assign_issue(key, account_id)

        if self.workload is None:
            return
        member_id = payload.team_member_id
        ticket = self.storage.get_ticket_by_key(key)
        if ticket is not None:
            self.storage.upsert_ticket(ticket.model_copy(update={"assignee_id": member_id}))
        active = self.storage.list_active_assignments_for_member(member_id)
        if any(assignment.external_key == key for assignment in active):
            return
        self.workload.record_assignment(
            assignee_id=member_id,
            ticket_id=ticket.id if ticket is not None else None,
            external_key=key,
            assigned_by="automation",
        )

    def _stale_ticket(self, tracker: IssueTrackerClient, payload: StaleTicketPayload) -> None:
        key = payload.external_key
        transitions = tracker.get_transitions(key)

        if payload.reason == "pr_merged":
            done = next((t for t in transitions if t.is_done), None)
            if done is not None:
                tracker.transition_issue(key, done.id)
                tracker.add_comment(key, PR_MERGED_COMMENT)
                self._complete_assignments(key)
            return

        in_progress = next((t for t in transitions if t.is_in_progress), None)
        if in_progress is not None:
            tracker.transition_issue(key, in_progress.id)
        tracker.add_comment(key, STALE_COMMENT)

    def _complete_assignments(self, external_key: str) -> None:
        if self.workload is None:
            return
        for member in self.storage.list_team_members():
            for assignment in self.storage.list_active_assignments_for_member(member.id):
                if assignment.external_key == external_key:
                    self.workload.record_completion(assignment.id)
