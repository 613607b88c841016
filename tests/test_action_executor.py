from datetime import datetime, timezone

import requests

from pm_autopilot.control_plane.automation.executor import (
    PR_MERGED_COMMENT,
    STALE_COMMENT,
    ActionExecutor,
)
from pm_autopilot.control_plane.automation.workload import WorkloadService
from pm_autopilot.control_plane.db.db import AutomationDB
from pm_autopilot.control_plane.models.automation_contracts import (
    ActionPayload,
    AssignTicketPayload,
    AutomationAction,
    PMAlertPayload,
    SprintGapWarningPayload,
    StaleTicketPayload,
)
from pm_autopilot.control_plane.models.work_state_contracts import TeamMember, Ticket
from pm_autopilot.control_plane.tracker.tracker_auth import TrackerAuth
from pm_autopilot.control_plane.tracker.tracker_client import TrackerTransition
from pm_autopilot.control_plane.tracker.tracker_client_api import JiraAPIClient
from pm_autopilot.control_plane.tracker.tracker_client_inmemory import InMemoryTrackerClient


def _action(payload: ActionPayload, action_id: str = "act-1") -> AutomationAction:
    return AutomationAction(
        id=action_id,
        run_id="run-1",
        check_module="sprint_health_check",
        title="Action",
        confidence=0.9,
        payload=payload,
        status="approved",
        dedup_key=payload.dedup_key,
        created_at=datetime.now(timezone.utc),
    )


def _db_with_member(account_id: str | None = "acc-ada") -> AutomationDB:
    db = AutomationDB()
    db.upsert_team_member(TeamMember(id="m1", name="Ada", tracker_account_id=account_id))
    return db


def _assign_payload() -> AssignTicketPayload:
    return AssignTicketPayload(team_member_id="m1", member_name="Ada", external_key="ENG-5")


def test_missing_tracker_is_a_successful_no_op() -> None:
    db = _db_with_member()
    executor = ActionExecutor(storage=db, tracker=None)

    result = executor.execute(_action(_assign_payload()))

    assert result.success is True
    assert result.error is None
    assert db.list_sync_failures() == []


def test_assign_ticket_resolves_account_and_assigns() -> None:
    tracker = InMemoryTrackerClient()
    executor = ActionExecutor(storage=_db_with_member(), tracker=tracker)

    assert executor.execute(_action(_assign_payload())).success is True
    assert tracker.assignments == [("ENG-5", "acc-ada")]


def test_assign_without_account_id_skips_remote_call() -> None:
    tracker = InMemoryTrackerClient()
    executor = ActionExecutor(storage=_db_with_member(account_id=None), tracker=tracker)

    assert executor.execute(_action(_assign_payload())).success is True
    assert tracker.assignments == []
    assert executor.resolve_account_id("missing") is None


def test_remote_failure_records_sync_failure_for_the_action() -> None:
    db = _db_with_member()
    tracker = InMemoryTrackerClient(fail_operations={"assign_issue"})
    executor = ActionExecutor(storage=db, tracker=tracker)

    result = executor.execute(_action(_assign_payload(), action_id="act-42"))

    assert result.success is False
    assert result.error is not None and "assign_issue failed" in result.error
    failures = db.list_sync_failures(entity_id="act-42")
    assert len(failures) == 1
    assert failures[0].entity_type == "automation_action"
    assert failures[0].external_key == "ENG-5"


def test_pr_merged_stale_ticket_moves_to_done_and_comments() -> None:
    tracker = InMemoryTrackerClient()
    executor = ActionExecutor(storage=AutomationDB(), tracker=tracker)
    payload = StaleTicketPayload(
        detection_id="d1",
        external_key="ENG-9",
        detection_type="pr_merged_ticket_open",
        reason="pr_merged",
    )

    assert executor.execute(_action(payload)).success is True
    assert tracker.applied_transitions == [("ENG-9", "31")]
    assert tracker.comments == [("ENG-9", PR_MERGED_COMMENT)]


def test_pr_merged_without_done_transition_does_nothing() -> None:
    tracker = InMemoryTrackerClient(
        transitions=[TrackerTransition(id="5", name="Reopen", to_status="Open", to_category="new")]
    )
    executor = ActionExecutor(storage=AutomationDB(), tracker=tracker)
    payload = StaleTicketPayload(
        detection_id="d1",
        external_key="ENG-9",
        detection_type="pr_merged_ticket_open",
        reason="pr_merged",
    )

    assert executor.execute(_action(payload)).success is True
    assert tracker.applied_transitions == []
    assert tracker.comments == []


def test_no_progress_stale_ticket_starts_progress_and_comments() -> None:
    tracker = InMemoryTrackerClient()
    executor = ActionExecutor(storage=AutomationDB(), tracker=tracker)
    payload = StaleTicketPayload(
        detection_id="d2", external_key="ENG-3", detection_type="commits_no_progress"
    )

    assert executor.execute(_action(payload)).success is True
    assert tracker.applied_transitions == [("ENG-3", "21")]
    assert tracker.comments == [("ENG-3", STALE_COMMENT)]


def test_sprint_gap_warning_assigns_only_with_external_key() -> None:
    tracker = InMemoryTrackerClient()
    executor = ActionExecutor(storage=_db_with_member(), tracker=tracker)
    without_key = SprintGapWarningPayload(
        snapshot_id="snap", team_member_id="m1", remaining=1, in_progress=0
    )
    with_key = without_key.model_copy(update={"external_key": "ENG-8"})

    assert executor.execute(_action(without_key)).success is True
    assert executor.execute(_action(with_key)).success is True
    assert tracker.assignments == [("ENG-8", "acc-ada")]


def test_executed_assignment_is_recorded_once_for_workload_tracking() -> None:
    db = _db_with_member()
    db.upsert_ticket(Ticket(id="t5", title="Backlog item", external_key="ENG-5"))
    tracker = InMemoryTrackerClient()
    executor = ActionExecutor(storage=db, tracker=tracker, workload=WorkloadService(storage=db))
    warning = SprintGapWarningPayload(
        snapshot_id="snap", team_member_id="m1", remaining=0, in_progress=0, external_key="ENG-5"
    )

    assert executor.execute(_action(_assign_payload(), action_id="act-a")).success is True
    assert executor.execute(_action(warning, action_id="act-b")).success is True

    active = db.list_active_assignments_for_member("m1")
    assert [(a.ticket_id, a.external_key, a.assigned_by) for a in active] == [
        ("t5", "ENG-5", "automation")
    ]
    ticket = db.get_ticket_by_key("ENG-5")
    assert ticket is not None and ticket.assignee_id == "m1"
    assert db.list_unassigned_tickets() == []
    assert db.get_last_activity_for_member("m1") is not None


def test_merged_ticket_completes_its_active_assignment() -> None:
    db = _db_with_member()
    db.create_assignment(assignee_id="m1", external_key="ENG-9")
    other = db.create_assignment(assignee_id="m1", external_key="ENG-10")
    executor = ActionExecutor(
        storage=db, tracker=InMemoryTrackerClient(), workload=WorkloadService(storage=db)
    )
    payload = StaleTicketPayload(
        detection_id="d1",
        external_key="ENG-9",
        detection_type="pr_merged_ticket_open",
        reason="pr_merged",
    )

    assert executor.execute(_action(payload)).success is True

    assert [a.id for a in db.list_active_assignments_for_member("m1")] == [other.id]


def test_stale_ticket_failure_records_its_ticket_key() -> None:
    db = AutomationDB()
    executor = ActionExecutor(
        storage=db, tracker=InMemoryTrackerClient(fail_operations={"get_transitions"})
    )
    payload = StaleTicketPayload(
        detection_id="d3", external_key="ENG-4", detection_type="ticket_stale_in_status"
    )

    result = executor.execute(_action(payload, action_id="act-stale"))

    assert result.success is False
    assert [(f.entity_id, f.external_key) for f in db.list_sync_failures()] == [
        ("act-stale", "ENG-4")
    ]


def test_advisory_actions_have_no_remote_effect() -> None:
    tracker = InMemoryTrackerClient(fail_operations={"assign_issue", "add_comment"})
    executor = ActionExecutor(storage=AutomationDB(), tracker=tracker)
    payload = PMAlertPayload(
        alert_id="a1", team_member_id="m1", alert_type="no_activity", severity="warning"
    )

    assert executor.execute(_action(payload)).success is True


class DroppedConnectionSession:
    def __init__(self) -> None:
        self.calls = 0

    def request(self, **kwargs: object) -> object:
        self.calls += 1
        raise requests.ConnectionError("connection reset by peer")


def test_network_error_from_jira_client_becomes_sync_failure() -> None:
    db = _db_with_member()
    session = DroppedConnectionSession()
    tracker = JiraAPIClient(
        TrackerAuth("https://acme.atlassian.net", "pm@acme.test", "secret-token"),
        session=session,
        sleep=lambda _: None,
    )
    executor = ActionExecutor(storage=db, tracker=tracker)

    result = executor.execute(_action(_assign_payload(), action_id="act-net"))

    assert result.success is False
    assert result.error is not None and "connection reset by peer" in result.error
    assert session.calls == 3
    assert [f.entity_id for f in db.list_sync_failures()] == ["act-net"]
