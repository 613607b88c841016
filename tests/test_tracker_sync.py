from pm_autopilot.control_plane.db.db import AutomationDB
from pm_autopilot.control_plane.models.work_state_contracts import TeamMember, Ticket
from pm_autopilot.control_plane.tracker.sync_service import TrackerSyncService
from pm_autopilot.control_plane.tracker.tracker_client import TrackerIssue
from pm_autopilot.control_plane.tracker.tracker_client_inmemory import InMemoryTrackerClient


def _issues() -> list[TrackerIssue]:
    return [
        TrackerIssue(
            key="ENG-1",
            summary="Parser bug",
            status="In Progress",
            status_category="indeterminate",
            assignee_account_id="acc-ada",
        ),
        TrackerIssue(key="ENG-2", summary="Docs", status="Code Review", assignee_name="bo.k"),
        TrackerIssue(key="ENG-3", summary="CI", status="To Do", assignee_name="CY", labels=["ci"]),
        TrackerIssue(key="ENG-4", summary="Spike", status="Backlog", assignee_name="Nobody"),
    ]


def _members(db: AutomationDB) -> None:
    db.upsert_team_member(TeamMember(id="ada", name="Ada", tracker_account_id="acc-ada"))
    db.upsert_team_member(TeamMember(id="bo", name="Bo", tracker_username="bo.k"))
    db.upsert_team_member(TeamMember(id="cy", name="Cy"))


def test_sync_without_tracker_reports_not_configured() -> None:
    result = TrackerSyncService(storage=AutomationDB(), tracker=None).sync_active_tickets()

    assert result.synced == 0
    assert result.errors == ["tracker_not_configured"]


def test_sync_upserts_tickets_and_matches_assignees() -> None:
    db = AutomationDB()
    _members(db)
    service = TrackerSyncService(storage=db, tracker=InMemoryTrackerClient(issues=_issues()))

    result = service.sync_active_tickets()

    assert result.synced == 4
    assert result.errors == []
    assert result.synced_at.endswith("Z")
    tickets = {t.external_key: t for t in db.list_tickets()}
    assert (tickets["ENG-1"].status, tickets["ENG-1"].assignee_id) == ("in_progress", "ada")
    assert (tickets["ENG-2"].status, tickets["ENG-2"].assignee_id) == ("in_review", "bo")
    assert (tickets["ENG-3"].status, tickets["ENG-3"].assignee_id) == ("todo", "cy")
    assert (tickets["ENG-4"].status, tickets["ENG-4"].assignee_id) == ("backlog", None)
    assert tickets["ENG-3"].required_skills == ["ci"]


def test_sync_preserves_local_ticket_fields() -> None:
    db = AutomationDB()
    db.upsert_ticket(
        Ticket(
            id="local-1",
            title="Old title",
            external_key="ENG-1",
            sprint_id="s1",
            required_skills=["rust"],
        )
    )
    tracker = InMemoryTrackerClient(issues=[_issues()[0]])

    TrackerSyncService(storage=db, tracker=tracker).sync_active_tickets()

    ticket = db.get_ticket_by_key("ENG-1")
    assert ticket is not None
    assert ticket.id == "local-1"
    assert ticket.title == "Parser bug"
    assert ticket.sprint_id == "s1"
    assert ticket.required_skills == ["rust"]
    assert ticket.assignee_id is None


def test_sync_reports_tracker_failures() -> None:
    tracker = InMemoryTrackerClient(fail_operations={"list_active_issues"})

    result = TrackerSyncService(storage=AutomationDB(), tracker=tracker).sync_active_tickets()

    assert result.synced == 0
    assert result.errors == ["tracker_500"]


def test_overlapping_sync_is_skipped() -> None:
    service = TrackerSyncService(storage=AutomationDB(), tracker=InMemoryTrackerClient())

    with service._lock:
        result = service.sync_active_tickets()

    assert result.errors == ["sync_in_progress"]
