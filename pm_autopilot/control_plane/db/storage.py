"""Storage contract the automation engine, check modules, and executor call synchronously."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from pm_autopilot.control_plane.models.automation_contracts import (
    AutomationAction,
    AutomationConfig,
    AutomationRun,
    SprintSnapshot,
    StaleDetection,
    SyncFailure,
)
from pm_autopilot.control_plane.models.work_state_contracts import (
    AccountabilityFlag,
    Assignment,
    Commit,
    Pipeline,
    PMAlert,
    PullRequest,
    Sprint,
    StatusTransition,
    TeamMember,
    Ticket,
    TicketSuggestion,
)


class AutomationStorage(Protocol):
    """Read/write contract for automation state and the work state checks inspect."""

    # automation config, runs, and actions

    def get_automation_config(self) -> AutomationConfig: ...

    def update_automation_config(self, **changes: Any) -> AutomationConfig: ...

    def create_automation_run(
        self, run_id: str, checks_run: list[str], started_at: datetime
    ) -> AutomationRun: ...

    def finalize_automation_run(
        self,
        run_id: str,
        *,
        status: str,
        finished_at: datetime,
        actions_proposed: int,
        actions_auto_approved: int,
        errors: list[str],
    ) -> AutomationRun: ...

    def get_automation_run(self, run_id: str) -> AutomationRun | None: ...

    def list_automation_runs(self, limit: int = 20) -> list[AutomationRun]: ...

    def create_automation_action(self, action: AutomationAction) -> AutomationAction: ...

    def get_automation_action(self, action_id: str) -> AutomationAction | None: ...

    def list_automation_actions(
        self,
        status: str | None = None,
        action_type: str | None = None,
        run_id: str | None = None,
    ) -> list[AutomationAction]: ...

    def find_open_action(self, dedup_key: str) -> AutomationAction | None: ...

    def update_automation_action_status(
        self,
        action_id: str,
        status: str,
        *,
        resolved_by: str | None = None,
        error: str | None = None,
        at: datetime | None = None,
    ) -> AutomationAction: ...

    # detections, snapshots, failures

    def list_stale_detections(
        self,
        external_key: str | None = None,
        detection_type: str | None = None,
        status: str | None = None,
    ) -> list[StaleDetection]: ...

    def create_stale_detection(
        self,
        *,
        external_key: str,
        detection_type: str,
        severity: str,
        evidence: dict[str, Any],
        team_member_id: str | None = None,
    ) -> StaleDetection: ...

    def resolve_stale_detection(self, detection_id: str) -> StaleDetection | None: ...

    def create_sprint_snapshot(self, snapshot: SprintSnapshot) -> SprintSnapshot: ...

    def list_sprint_snapshots(self, sprint_id: str | None = None) -> list[SprintSnapshot]: ...

    def create_sync_failure(
        self,
        *,
        entity_type: str,
        entity_id: str,
        error_message: str,
        external_key: str | None = None,
    ) -> SyncFailure: ...

    def list_sync_failures(self, entity_id: str | None = None) -> list[SyncFailure]: ...

    # work state

    def list_team_members(self) -> list[TeamMember]: ...

    def get_team_member(self, member_id: str) -> TeamMember | None: ...

    def upsert_team_member(self, member: TeamMember) -> TeamMember: ...

    def list_tickets(
        self,
        status: str | None = None,
        assignee_id: str | None = None,
        sprint_id: str | None = None,
    ) -> list[Ticket]: ...

    def get_ticket(self, ticket_id: str) -> Ticket | None: ...

    def get_ticket_by_key(self, external_key: str) -> Ticket | None: ...

    def list_unassigned_tickets(self) -> list[Ticket]: ...

    def upsert_ticket(self, ticket: Ticket) -> Ticket: ...

    def list_status_history(self, external_key: str) -> list[StatusTransition]: ...

    def record_status_transition(
        self,
        external_key: str,
        old_status: str | None,
        new_status: str,
        changed_at: datetime | None = None,
    ) -> StatusTransition: ...

    def list_pull_requests(self, state: str | None = None, limit: int = 100) -> list[PullRequest]: ...

    def upsert_pull_request(self, pull_request: PullRequest) -> PullRequest: ...

    def list_commits(
        self,
        since: datetime | None = None,
        limit: int = 200,
        team_member_id: str | None = None,
    ) -> list[Commit]: ...

    def add_commit(self, commit: Commit) -> Commit: ...

    def list_pipelines(
        self, state: str | None = None, since: datetime | None = None, limit: int = 50
    ) -> list[Pipeline]: ...

    def add_pipeline(self, pipeline: Pipeline) -> Pipeline: ...

    def get_active_sprint(self) -> Sprint | None: ...

    def upsert_sprint(self, sprint: Sprint) -> Sprint: ...

    # workload tracking

    def create_assignment(
        self,
        *,
        assignee_id: str,
        ticket_id: str | None = None,
        external_key: str | None = None,
        assigned_by: str = "pm",
        assigned_at: datetime | None = None,
    ) -> Assignment: ...

    def complete_assignment(
        self, assignment_id: str, completed_at: datetime | None = None
    ) -> Assignment | None: ...

    def get_last_assignment_for_member(self, member_id: str) -> Assignment | None: ...

    def list_active_assignments_for_member(self, member_id: str) -> list[Assignment]: ...

    def record_engineer_activity(self, member_id: str, at: datetime | None = None) -> None: ...

    def get_last_activity_for_member(self, member_id: str) -> datetime | None: ...

    def has_active_alert_for_member(self, member_id: str, alert_type: str) -> bool: ...

    def create_pm_alert(
        self, *, team_member_id: str, alert_type: str, severity: str, message: str
    ) -> PMAlert: ...

    def list_active_pm_alerts(self) -> list[PMAlert]: ...

    def dismiss_alerts_for_member(self, member_id: str) -> int: ...

    def create_suggestion(
        self,
        *,
        team_member_id: str,
        title: str,
        reasoning: str,
        skill_match_score: float,
        ticket_id: str | None = None,
        external_key: str | None = None,
    ) -> TicketSuggestion: ...

    def list_suggestions(
        self, team_member_id: str | None = None, status: str | None = None
    ) -> list[TicketSuggestion]: ...

    def clear_pending_suggestions_for_member(self, member_id: str) -> int: ...

    def list_accountability_flags(
        self,
        team_member_id: str | None = None,
        flag_type: str | None = None,
        status: str | None = None,
    ) -> list[AccountabilityFlag]: ...

    def create_accountability_flag(
        self,
        *,
        team_member_id: str,
        flag_type: str,
        severity: str,
        message: str,
        external_key: str | None = None,
    ) -> AccountabilityFlag: ...
